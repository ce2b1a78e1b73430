#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
modules/supervisor.py - Supervisão de processos e limpeza garantida da sessão

- ProcessSupervisor: guarda o PID do filho ativo no sandbox (0 = nenhum)
- kill_sandbox_processes: encerra processos que sobraram dentro do overlay
- SandboxSession: context manager que instala o tratador de SIGINT/SIGTERM
  e garante que o "reaper" (teardown do overlay) rode exatamente uma vez,
  seja no retorno normal, em erro ou por interrupção
"""

import os
import signal
import threading
import time
from typing import Optional

from eobuild.modules import config, log
from eobuild.modules.errors import EobuildError

logger = log.get_logger("supervisor")

OPEN, RELEASING, RELEASED = "open", "releasing", "released"


class ProcessSupervisor:
    def __init__(self):
        self._lock = threading.Lock()
        self._pid = 0

    def set_active_pid(self, pid: int):
        with self._lock:
            self._pid = pid

    @property
    def active_pid(self) -> int:
        with self._lock:
            return self._pid

    def terminate_active(self, grace: Optional[float] = None) -> bool:
        """
        SIGTERM no filho ativo (ou no seu grupo), espera até `grace` segundos
        e então SIGKILL. Retorna False se não havia filho ativo.
        """
        pid = self.active_pid
        if not pid:
            return False
        if grace is None:
            grace = config.get("kill_grace")

        logger.warning("Encerrando processo ativo %d", pid)
        if not _signal_child(pid, signal.SIGTERM):
            return False

        deadline = time.monotonic() + grace
        while time.monotonic() < deadline:
            try:
                done, _ = os.waitpid(pid, os.WNOHANG)
            except ChildProcessError:
                return True
            if done:
                return True
            time.sleep(0.1)

        logger.warning("Processo %d não terminou em %ss, enviando SIGKILL", pid, grace)
        _signal_child(pid, signal.SIGKILL)
        try:
            os.waitpid(pid, 0)
        except ChildProcessError:
            pass
        return True


def _signal_child(pid: int, sig: int) -> bool:
    try:
        if os.getpgid(pid) == pid:
            os.killpg(pid, sig)
        else:
            os.kill(pid, sig)
    except ProcessLookupError:
        return False
    return True


def kill_sandbox_processes(root: str) -> int:
    """Mata processos cuja raiz (/proc/<pid>/root) está dentro de `root`."""
    root = os.path.realpath(root)
    me = os.getpid()
    killed = 0
    for entry in os.listdir("/proc"):
        if not entry.isdigit() or int(entry) == me:
            continue
        try:
            proc_root = os.readlink(f"/proc/{entry}/root")
        except OSError:
            continue
        if proc_root != root and not proc_root.startswith(root + os.sep):
            continue
        try:
            os.kill(int(entry), signal.SIGKILL)
        except ProcessLookupError:
            continue
        logger.debug("Processo %s do sandbox encerrado", entry)
        killed += 1
    if killed:
        logger.warning("%d processo(s) remanescentes no sandbox foram encerrados", killed)
    return killed


class SandboxSession:
    """
    Sessão de sandbox com limpeza garantida.

        with SandboxSession(overlay, supervisor, pman):
            ...  # etapas do build

    release() é o reaper: para o gerenciador de pacotes, mata processos
    remanescentes e desmonta o overlay. Só a primeira chamada faz trabalho.
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self, overlay, supervisor: ProcessSupervisor, package_manager=None,
                 signals=None):
        self.overlay = overlay
        self.supervisor = supervisor
        self.package_manager = package_manager
        self.signals = tuple(signals) if signals is not None else self.SIGNALS
        self.interrupted = None
        self._state = OPEN
        self._lock = threading.Lock()
        self._previous = {}

    @property
    def released(self) -> bool:
        return self._state == RELEASED

    def _claim(self) -> bool:
        # não bloqueante: o tratador de sinal roda na mesma thread
        if not self._lock.acquire(blocking=False):
            return False
        try:
            if self._state != OPEN:
                return False
            self._state = RELEASING
            return True
        finally:
            self._lock.release()

    def release(self) -> bool:
        if not self._claim():
            return False
        try:
            if self.package_manager is not None:
                try:
                    self.package_manager.cleanup()
                except (EobuildError, OSError) as e:
                    logger.error("Falha ao encerrar o gerenciador de pacotes: %s", e)
            try:
                kill_sandbox_processes(self.overlay.mount_point)
            except OSError as e:
                logger.error("Falha ao encerrar processos do sandbox: %s", e)
        finally:
            try:
                self.overlay.teardown()
            finally:
                self._state = RELEASED
        return True

    def handle_interrupt(self, signum, frame):
        logger.warning("Sinal %s recebido, encerrando a sessão", signal.Signals(signum).name)
        self.interrupted = signum
        self.supervisor.terminate_active()
        if self._state == RELEASING:
            # o teardown já está em curso no caminho normal; __exit__ re-entrega o sinal
            return
        self.release()
        self._reraise(signum)

    def _reraise(self, signum):
        signal.signal(signum, signal.SIG_DFL)
        os.kill(os.getpid(), signum)

    def __enter__(self):
        for sig in self.signals:
            self._previous[sig] = signal.signal(sig, self.handle_interrupt)
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            self.release()
        finally:
            for sig, handler in self._previous.items():
                signal.signal(sig, handler)
            self._previous.clear()
        if self.interrupted is not None:
            self._reraise(self.interrupted)
        return False
