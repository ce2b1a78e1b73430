#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
modules/overlay.py - Raiz efêmera do build (OverlayFS sobre a imagem base)

Layout por sessão:
    <overlay_dir>/<perfil>/<pacote>/
        img/    imagem base montada via loop, somente leitura (lowerdir)
        tmp/    camada gravável (upperdir)
        work/   área de trabalho do overlayfs (workdir)
        union/  ponto de montagem final (raiz do chroot)

Ordem de montagem: img -> union -> proc, sys, dev, dev/pts. Montagens extras
(fontes) são registradas em extra_mounts. teardown() desfaz tudo em ordem
inversa, restaura a rede do host e nunca lança exceção.
"""

import os
import shutil
import threading

from eobuild.modules import config, log, mounts, utils
from eobuild.modules.errors import MountCleanupError, MountError, NetworkConfigError
from eobuild.modules.network import NetworkIsolation

logger = log.get_logger("overlay")


class Overlay:
    def __init__(self, back, package, network: NetworkIsolation = None):
        self.back = back
        self.package = package
        self.network = network or NetworkIsolation()

        self.base_dir = os.path.join(config.get("overlay_dir"), back.name, package.name)
        self.img_dir = os.path.join(self.base_dir, "img")
        self.upper_dir = os.path.join(self.base_dir, "tmp")
        self.work_dir = os.path.join(self.base_dir, "work")
        self.mount_point = os.path.join(self.base_dir, "union")

        self.extra_mounts = []
        self._mounts = []
        self._cleaned = False
        self._active = False
        self._torn_down = False
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._active

    def clean_existing(self):
        """Remove restos de uma sessão anterior que tenha caído no meio."""
        if utils.path_exists(self.base_dir):
            for target in mounts.mounts_under(self.base_dir):
                logger.warning("Desmontando resto de sessão anterior: %s", target)
                try:
                    mounts.umount(target)
                except MountError as e:
                    raise MountCleanupError(f"{self.base_dir} está em uso: {e}") from e
            try:
                shutil.rmtree(self.base_dir)
            except OSError as e:
                raise MountCleanupError(f"Falha ao remover {self.base_dir}: {e}") from e
        self._cleaned = True

    def activate(self):
        """Compõe imagem + camada gravável + área de trabalho em mount_point."""
        if self._active:
            raise RuntimeError(f"Overlay em {self.mount_point} já está ativo")
        if not self._cleaned:
            self.clean_existing()
        self._active = True

        for d in (self.img_dir, self.upper_dir, self.work_dir, self.mount_point):
            try:
                utils.ensure_dir(d, mode=0o755)
            except OSError as e:
                raise MountError(f"Falha ao criar {d}: {e}") from e

        logger.debug("Montando imagem base %s", self.back.image_path)
        self._mounts.append(mounts.mount(self.back.image_path, self.img_dir,
                                         options=["loop", "ro"]))

        logger.debug("Montando overlayfs em %s", self.mount_point)
        options = [
            f"lowerdir={self.img_dir}",
            f"upperdir={self.upper_dir}",
            f"workdir={self.work_dir}",
        ]
        self._mounts.append(mounts.mount("overlay", self.mount_point,
                                         fstype="overlay", options=options))

        mounts.mount_system_dirs(self.mount_point, self._mounts)

    def configure_networking(self):
        """Somente loopback dentro do overlay (após NetworkIsolation.drop())."""
        if not self._active:
            raise NetworkConfigError("Overlay inativo, nada para configurar")
        self.network.configure_loopback(self.mount_point)

    def _umount(self, target: str) -> bool:
        try:
            mounts.umount(target)
        except MountError as e:
            logger.error("%s", e)
            return False
        return True

    def teardown(self) -> bool:
        """
        Desmonta extras (LIFO), depois as montagens do overlay (LIFO), e
        restaura a rede. Só a primeira chamada trabalha; retorna se trabalhou.
        """
        with self._lock:
            if self._torn_down:
                return False
            self._torn_down = True

        clean = True
        while self.extra_mounts:
            clean = self._umount(self.extra_mounts.pop()) and clean
        while self._mounts:
            clean = self._umount(self._mounts.pop()) and clean

        try:
            self.network.restore()
        except NetworkConfigError as e:
            logger.error("%s", e)

        # inclui restos que clean_existing() não conseguiu desmontar
        try:
            leftover = mounts.mounts_under(self.base_dir)
        except OSError as e:
            logger.error("Não foi possível ler a tabela de montagens: %s", e)
            clean = False
        else:
            if leftover:
                logger.error("Ainda montado: %s", ", ".join(leftover))
                clean = False

        # com montagens presas, apagar a árvore atravessaria binds do host
        if clean and utils.path_exists(self.base_dir):
            try:
                shutil.rmtree(self.base_dir)
            except OSError as e:
                logger.warning("Falha ao remover %s: %s", self.base_dir, e)
        elif not clean:
            logger.error("Montagens restantes em %s, diretório preservado", self.base_dir)

        self._active = False
        logger.debug("Overlay %s desmontado", self.mount_point)
        return True
