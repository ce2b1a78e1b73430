#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
modules/eopkg.py - Sessão do gerenciador de pacotes dentro do sandbox

Máquina de estados estritamente sequencial:
    init -> start_dbus -> upgrade -> install_component("system.devel")
         -> [build do pacote] -> stop_dbus

Cada etapa é uma chamada bloqueante no chroot (sempre como root). Nenhuma
etapa é repetida automaticamente: a falha sobe para o pipeline, que aborta
e deixa o reaper desmontar tudo.
"""

import os
import shlex
import shutil

from eobuild.modules import chroot, log, utils
from eobuild.modules.errors import (
    BuildExecError,
    ComponentInstallError,
    PackageManagerError,
    PackageManagerInitError,
    ServiceBusError,
    UpgradeError,
)

logger = log.get_logger("eopkg")

HOST_RESOLV = "/etc/resolv.conf"
DBUS_PID = "run/dbus/pid"

# Diretórios que o eopkg espera encontrar (relativos à raiz)
EOPKG_LAYOUT = [
    "var/lib/eopkg",
    "var/cache/eopkg/packages",
    "var/cache/eopkg/archives",
    "var/db/comar",
]

DBUS_DIRS = ["run/dbus", "var/lib/dbus"]


class EopkgManager:
    def __init__(self, notifier, root: str):
        self.notifier = notifier
        self.root = root
        self.env = chroot.sane_environment("root", "/root")
        self.initialised = False
        self.dbus_active = False

    def _path(self, rel: str) -> str:
        return os.path.join(self.root, rel)

    def _exec(self, command: str):
        chroot.chroot_exec(self.notifier, self.root, command, env=self.env)

    # ------------------------------------------------------------------
    # Preparação
    # ------------------------------------------------------------------
    def init(self):
        """Prepara banco/diretórios do eopkg e o DNS do chroot."""
        try:
            self.ensure_layout()
            for rel in DBUS_DIRS:
                utils.ensure_dir(self._path(rel))
            stale = self._path(DBUS_PID)
            if utils.path_exists(stale):
                logger.debug("Removendo pid antigo do dbus: %s", stale)
                os.remove(stale)
            if os.path.exists(HOST_RESOLV):
                dest = self._path("etc/resolv.conf")
                utils.ensure_dir(os.path.dirname(dest))
                # link absoluto seria resolvido no host
                if utils.path_exists(dest):
                    os.remove(dest)
                shutil.copy2(HOST_RESOLV, dest)
        except (OSError, PackageManagerError) as e:
            raise PackageManagerInitError(f"Falha ao inicializar o eopkg em {self.root}: {e}") from e
        self.initialised = True

    def ensure_layout(self):
        """(Re)afirma a estrutura de diretórios do eopkg."""
        for rel in EOPKG_LAYOUT:
            try:
                utils.ensure_dir(self._path(rel))
            except OSError as e:
                raise PackageManagerError(f"Falha ao criar {rel}: {e}") from e

    # ------------------------------------------------------------------
    # Barramento de serviços (dbus)
    # ------------------------------------------------------------------
    def start_dbus(self):
        if self.dbus_active:
            return
        if not self.initialised:
            raise ServiceBusError("init() precisa rodar antes do dbus")
        logger.debug("Iniciando D-BUS")
        try:
            self._exec("dbus-uuidgen --ensure")
            self._exec("dbus-daemon --system")
        except BuildExecError as e:
            raise ServiceBusError(f"Falha ao iniciar o dbus: {e}") from e
        self.dbus_active = True

    def stop_dbus(self):
        if not self.dbus_active:
            return
        logger.debug("Parando D-BUS")
        pid_file = self._path(DBUS_PID)
        if not os.path.exists(pid_file):
            raise ServiceBusError(f"pid do dbus não encontrado: {pid_file}")
        try:
            self._exec(f"kill -TERM $(cat /{DBUS_PID})")
        except BuildExecError as e:
            raise ServiceBusError(f"Falha ao parar o dbus: {e}") from e
        try:
            os.remove(pid_file)
        except FileNotFoundError:
            pass
        self.dbus_active = False

    # ------------------------------------------------------------------
    # Operações de pacotes
    # ------------------------------------------------------------------
    def upgrade(self):
        try:
            self._exec("eopkg upgrade -y")
        except BuildExecError as e:
            raise UpgradeError(f"Falha ao atualizar a base: {e}") from e

    def install_component(self, name: str):
        try:
            self._exec(f"eopkg install -c {shlex.quote(name)} -y")
        except BuildExecError as e:
            raise ComponentInstallError(f"Falha ao instalar o componente {name}: {e}") from e

    def install_build_deps(self, recipe: str):
        """Dependências de build de um package.yml (caminho interno do chroot)."""
        try:
            self._exec(f"ypkg-install-deps -f {shlex.quote(recipe)}")
        except BuildExecError as e:
            raise PackageManagerError(f"Falha ao instalar dependências de {recipe}: {e}") from e

    def cleanup(self):
        """Usado pelo reaper: para o dbus se ainda estiver ativo, sem lançar."""
        try:
            self.stop_dbus()
        except (ServiceBusError, OSError) as e:
            logger.warning("Não foi possível parar o dbus: %s", e)
