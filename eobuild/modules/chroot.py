# chroot.py
"""
Execução de comandos dentro do overlay (chroot).

O PID do filho é registrado no notificador (ProcessSupervisor) antes da
espera e zerado assim que o filho termina, mesmo em erro.
"""

from __future__ import annotations

import os
import subprocess
import sys
from typing import Dict, Optional

from eobuild.modules import config, log
from eobuild.modules.errors import BuildExecError

logger = log.get_logger("chroot")

SANE_PATH = "/usr/bin:/usr/sbin:/bin:/sbin"


def sane_environment(user: str, home: str, shell: Optional[str] = None) -> Dict[str, str]:
    """Ambiente mínimo para o chroot; nada do ambiente do host vaza além de TERM."""
    return {
        "PATH": SANE_PATH,
        "HOME": home,
        "USER": user,
        "LOGNAME": user,
        "SHELL": shell or config.get("build_user_shell"),
        "TERM": os.environ.get("TERM", "linux"),
    }


def chroot_exec(notifier, root: str, command: str, env: Optional[Dict[str, str]] = None,
                stdin: bool = False) -> None:
    """
    Executa `command` (via /bin/sh -c) com a raiz em `root`.
    - stdin=True: shell interativo, herda stdin/stdout/stderr do chamador
    - caso contrário a saída é enviada linha a linha para o log
    Lança BuildExecError se o status for diferente de zero.
    """
    argv = ["chroot", root, "/bin/sh", "-c", command]
    logger.debug("chroot %s: %s", root, command)

    kwargs = {"env": env if env is not None else sane_environment("root", "/root")}
    if stdin:
        kwargs["stdin"] = sys.stdin
    else:
        # grupo próprio: o supervisor sinaliza o grupo inteiro (make, gcc, ...)
        kwargs.update(stdin=subprocess.DEVNULL, stdout=subprocess.PIPE,
                      stderr=subprocess.STDOUT, text=True, bufsize=1,
                      process_group=0)
    try:
        proc = subprocess.Popen(argv, **kwargs)
    except OSError as e:
        raise BuildExecError(command, 127) from e

    notifier.set_active_pid(proc.pid)
    try:
        if proc.stdout is not None:
            for line in proc.stdout:
                logger.info("%s", line.rstrip())
        rc = proc.wait()
    finally:
        notifier.set_active_pid(0)

    if rc != 0:
        raise BuildExecError(command, rc)
