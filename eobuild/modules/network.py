# network.py
"""
Isolamento de rede do sandbox.

Protocolo em duas etapas, sempre nesta ordem:
  1. drop(): o processo entra num namespace de rede novo (sem interfaces
     externas). Filhos criados depois herdam esse namespace.
  2. configure_loopback(root): sobe somente o loopback e grava /etc/hosts
     no overlay, para que serviços locais (dbus) continuem em localhost.

restore() volta o processo ao namespace do host, guardado em drop().
"""

import os
import subprocess

from eobuild.modules import config, log, utils
from eobuild.modules.errors import NetworkConfigError

logger = log.get_logger("network")

HOST_NETNS = "/proc/self/ns/net"


class NetworkIsolation:
    def __init__(self):
        self._host_ns = None

    @property
    def isolated(self) -> bool:
        return self._host_ns is not None

    def drop(self):
        """Remove o acesso à rede externa do processo."""
        if self.isolated:
            return
        try:
            fd = os.open(HOST_NETNS, os.O_RDONLY)
        except OSError as e:
            raise NetworkConfigError(f"Não foi possível abrir {HOST_NETNS}: {e}") from e
        try:
            os.unshare(os.CLONE_NEWNET)
        except OSError as e:
            os.close(fd)
            raise NetworkConfigError(f"Falha ao criar namespace de rede: {e}") from e
        self._host_ns = fd
        logger.debug("Rede externa desativada")

    def configure_loopback(self, root: str):
        """Loopback apenas, dentro do namespace criado por drop()."""
        if not self.isolated:
            raise NetworkConfigError("drop() precisa ser chamado antes de configurar o loopback")
        hosts = os.path.join(root, "etc", "hosts")
        try:
            utils.ensure_dir(os.path.dirname(hosts))
            if os.path.islink(hosts):
                os.unlink(hosts)
            with open(hosts, "w", encoding="utf-8") as f:
                f.write(config.get("hosts_file"))
            for cmd in config.get("loopback_commands") or []:
                utils.run(list(cmd))
        except (OSError, subprocess.CalledProcessError) as e:
            raise NetworkConfigError(f"Falha ao configurar loopback: {e}") from e
        logger.debug("Loopback configurado em %s", root)

    def restore(self) -> bool:
        """Volta ao namespace do host. Sem efeito se drop() não foi chamado."""
        if self._host_ns is None:
            return False
        fd, self._host_ns = self._host_ns, None
        try:
            os.setns(fd, os.CLONE_NEWNET)
        except OSError as e:
            raise NetworkConfigError(f"Falha ao restaurar a rede do host: {e}") from e
        finally:
            os.close(fd)
        logger.debug("Rede do host restaurada")
        return True
