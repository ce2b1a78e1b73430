# mounts.py
"""
Montagens do host via mount(8)/umount(8).

As funções não guardam estado: quem monta (Overlay, ImageRoot) mantém a
própria pilha de alvos e desmonta na ordem inversa.
"""

from __future__ import annotations

import os
import subprocess
from typing import List, Optional

from eobuild.modules import log, utils
from eobuild.modules.errors import MountError

logger = log.get_logger("mounts")

PROC_MOUNTS = "/proc/self/mounts"

# (tipo, origem, destino relativo, opções)
SYSTEM_MOUNTS = [
    ("proc", "proc", "proc", None),
    ("sysfs", "sysfs", "sys", None),
    (None, "/dev", "dev", ["bind"]),
    (None, "/dev/pts", "dev/pts", ["bind"]),
]


def _detail(exc: Exception) -> str:
    if isinstance(exc, subprocess.CalledProcessError):
        out = (exc.output or "").strip()
        return out or f"código {exc.returncode}"
    return str(exc)


def _unescape(field: str) -> str:
    # /proc/mounts escapa espaço, tab, \n e \ em octal
    for code, char in (("\\040", " "), ("\\011", "\t"), ("\\012", "\n"), ("\\134", "\\")):
        field = field.replace(code, char)
    return field


def list_mounts() -> List[str]:
    """Pontos de montagem do namespace atual, na ordem do kernel."""
    targets = []
    with open(PROC_MOUNTS, "r", encoding="utf-8") as f:
        for line in f:
            parts = line.split()
            if len(parts) >= 2:
                targets.append(_unescape(parts[1]))
    return targets


def is_mounted(target: str) -> bool:
    return os.path.normpath(target) in list_mounts()


def mounts_under(prefix: str) -> List[str]:
    """
    Montagens em `prefix` ou abaixo dele, da mais recente para a mais antiga
    (ordem segura para desmontar).
    """
    prefix = os.path.normpath(prefix)
    found = []
    for target in list_mounts():
        if target == prefix or target.startswith(prefix + os.sep):
            found.append(target)
    found.reverse()
    return found


def mount(source: str, target: str, fstype: Optional[str] = None,
          options: Optional[List[str]] = None) -> str:
    """Monta `source` em `target`. Retorna `target` para ser empilhado pelo chamador."""
    cmd = ["mount"]
    if fstype:
        cmd += ["-t", fstype]
    if options:
        cmd += ["-o", ",".join(options)]
    cmd += [source, target]
    try:
        utils.run(cmd)
    except (subprocess.CalledProcessError, OSError) as e:
        raise MountError(f"Falha ao montar {source} em {target}: {_detail(e)}") from e
    logger.debug("Montado %s -> %s", source, target)
    return target


def bind_mount(source: str, target: str, read_only: bool = False) -> str:
    options = ["bind", "ro"] if read_only else ["bind"]
    return mount(source, target, options=options)


def umount(target: str) -> bool:
    """
    Desmonta `target`; se estiver ocupado, tenta desanexar (lazy).
    Retorna False quando não havia nada montado.
    """
    if not is_mounted(target):
        logger.debug("Nada montado em %s", target)
        return False
    try:
        utils.run(["umount", target])
    except subprocess.CalledProcessError as e:
        logger.warning("umount %s falhou (%s), tentando desanexar", target, _detail(e))
        try:
            utils.run(["umount", "-l", target])
        except (subprocess.CalledProcessError, OSError) as e2:
            raise MountError(f"Falha ao desmontar {target}: {_detail(e2)}") from e2
    except OSError as e:
        raise MountError(f"Falha ao desmontar {target}: {e}") from e
    logger.debug("Desmontado %s", target)
    return True


def mount_system_dirs(root: str, into: List[str]) -> List[str]:
    """
    Monta proc, sys, dev e dev/pts dentro de `root`.
    Cada alvo é anexado a `into` assim que montado, para que uma falha no
    meio do caminho ainda deixe o que foi montado registrado para desmontagem.
    """
    for fstype, source, rel, options in SYSTEM_MOUNTS:
        target = os.path.join(root, rel)
        try:
            utils.ensure_dir(target)
        except OSError as e:
            raise MountError(f"Não foi possível criar {target}: {e}") from e
        into.append(mount(source, target, fstype=fstype, options=options))
    return into
