#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
modules/image.py - Imagem base (rootfs somente leitura) de cada perfil

- BackingImage: caminhos, download (.img.xz) e descompressão (.img)
- initialise(): init do perfil (no-op se já inicializado)
- update(): monta a imagem gravável e atualiza a base via eopkg
- lock exclusivo por imagem (fcntl.flock): nunca há duas mutações simultâneas
"""

import contextlib
import fcntl
import lzma
import os
import shutil
import threading

import requests

from eobuild.modules import config, log, mounts, utils
from eobuild.modules import eopkg
from eobuild.modules.errors import ImageError, MountError, ProfileNotInstalledError
from eobuild.modules.supervisor import SandboxSession

logger = log.get_logger("image")


class BackingImage:
    def __init__(self, name: str, images_dir: str = None, base_uri: str = None):
        self.name = name
        self.images_dir = images_dir or config.get("images_dir")
        base_uri = (base_uri or config.get("image_base_uri")).rstrip("/")

        self.image_path = os.path.join(self.images_dir, f"{name}.img")
        self.image_path_xz = f"{self.image_path}.xz"
        self.root_dir = os.path.join(self.images_dir, name)
        self.lock_path = os.path.join(self.images_dir, f"{name}.lock")
        self.uri = f"{base_uri}/{name}.img.xz"

    def __repr__(self):
        return f"BackingImage({self.name!r})"

    def is_installed(self) -> bool:
        return os.path.exists(self.image_path)

    def is_fetched(self) -> bool:
        return os.path.exists(self.image_path_xz)

    def fetch(self):
        """Baixa a imagem comprimida com barra de progresso."""
        logger.info("Baixando imagem base %s", self.uri)
        try:
            utils.download(self.uri, self.image_path_xz, progress=True)
        except (requests.RequestException, OSError) as e:
            raise ImageError(f"Falha ao baixar {self.uri}: {e}") from e

    def decompress(self):
        """Equivalente a unxz: gera .img e remove o .xz."""
        logger.debug("Descomprimindo %s -> %s", self.image_path_xz, self.image_path)
        partial = f"{self.image_path}.partial"
        try:
            with lzma.open(self.image_path_xz, "rb") as src, open(partial, "wb") as dst:
                shutil.copyfileobj(src, dst, 1 << 20)
            os.replace(partial, self.image_path)
            os.remove(self.image_path_xz)
        except (lzma.LZMAError, OSError) as e:
            if os.path.exists(partial):
                os.remove(partial)
            raise ImageError(f"Falha ao descomprimir {self.image_path_xz}: {e}") from e

    @contextlib.contextmanager
    def locked(self):
        utils.ensure_dir(self.images_dir)
        with open(self.lock_path, "w", encoding="utf-8") as f:
            logger.debug("Aguardando lock de %s", self.lock_path)
            fcntl.flock(f, fcntl.LOCK_EX)
            try:
                yield self
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)


class ImageRoot:
    """A imagem montada diretamente (gravável) em root_dir, para update()."""

    def __init__(self, image: BackingImage):
        self.image = image
        self.mount_point = image.root_dir
        self._mounts = []
        self._torn_down = False
        self._lock = threading.Lock()

    def activate(self):
        try:
            utils.ensure_dir(self.mount_point)
        except OSError as e:
            raise MountError(f"Falha ao criar {self.mount_point}: {e}") from e
        self._mounts.append(mounts.mount(self.image.image_path, self.mount_point,
                                         options=["loop", "rw"]))
        mounts.mount_system_dirs(self.mount_point, self._mounts)

    def teardown(self) -> bool:
        with self._lock:
            if self._torn_down:
                return False
            self._torn_down = True
        while self._mounts:
            target = self._mounts.pop()
            try:
                mounts.umount(target)
            except MountError as e:
                logger.error("%s", e)
        return True


def initialise(image: BackingImage) -> bool:
    """
    Prepara a imagem de um perfil: diretório, download e descompressão.
    Retorna False se já estava inicializada.
    """
    if image.is_installed():
        logger.info("'%s' já foi inicializado", image.name)
        return False

    if not os.path.isdir(image.images_dir):
        utils.ensure_dir(image.images_dir)
        logger.debug("Diretório de imagens criado: %s", image.images_dir)

    with image.locked():
        if not image.is_fetched():
            image.fetch()
        image.decompress()

    logger.info("Perfil '%s' inicializado", image.name)
    return True


def update(image: BackingImage, supervisor) -> None:
    """Atualiza a imagem base: init -> dbus -> upgrade -> componente -> stop."""
    if not image.is_installed():
        raise ProfileNotInstalledError(f"Imagem '{image.name}' não instalada")

    with image.locked():
        root = ImageRoot(image)
        pman = eopkg.EopkgManager(supervisor, root.mount_point)
        with SandboxSession(root, supervisor, pman):
            logger.info("Atualizando imagem base %s", image.name)
            root.activate()
            pman.init()
            pman.start_dbus()
            pman.upgrade()
            pman.install_component(config.get("dev_component"))
            pman.stop_dbus()
    logger.info("Imagem '%s' atualizada", image.name)
