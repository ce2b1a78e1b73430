# sources.py
"""
Fontes das receitas: cache local endereçado pelo hash esperado.

    <sources_dir>/<hash>/<arquivo>

A mesma fonte declarada em receitas diferentes reaproveita a entrada do
cache. Dentro do sandbox cada fonte aparece via bind mount somente leitura.
"""

from __future__ import annotations

import os
import posixpath
from typing import List
from urllib.parse import urlparse

import requests

from eobuild.modules import config, log, mounts, utils
from eobuild.modules.errors import MountError, SourceFetchError, SourceStageError

logger = log.get_logger("sources")


def file_from_uri(uri: str) -> str:
    return posixpath.basename(urlparse(uri).path.rstrip("/"))


class Source:
    def __init__(self, uri: str, expected_hash: str, algo: str = "sha256", file: str | None = None):
        self.uri = uri
        self.expected_hash = expected_hash.strip().lower()
        self.algo = algo
        self.file = file or file_from_uri(uri)

    def __repr__(self):
        return f"Source({self.uri!r}, {self.algo}={self.expected_hash[:12]})"

    def cache_dir(self) -> str:
        return os.path.join(config.get("sources_dir"), self.expected_hash)

    def path(self) -> str:
        """Caminho local da entrada de cache."""
        return os.path.join(self.cache_dir(), self.file)

    def is_fetched(self) -> bool:
        local = self.path()
        if not os.path.isfile(local):
            return False
        return utils.file_hash(local, self.algo) == self.expected_hash

    def fetch(self):
        """Baixa, confere o hash e só então publica no cache."""
        dest = self.path()
        partial = os.path.join(self.cache_dir(), f".{self.file}.download")
        try:
            utils.ensure_dir(self.cache_dir())
            utils.download(self.uri, partial)
        except (requests.RequestException, OSError) as e:
            raise SourceFetchError(f"Falha ao baixar {self.uri}: {e}") from e

        got = utils.file_hash(partial, self.algo)
        if got != self.expected_hash:
            os.remove(partial)
            raise SourceFetchError(
                f"Hash inválido para {self.uri}: esperado {self.expected_hash}, obtido {got}")
        os.replace(partial, dest)
        logger.debug("Fonte em cache: %s", dest)


def fetch_sources(package) -> List[Source]:
    """
    Garante cada fonte no cache. Falhas são registradas e não interrompem as
    demais; a ausência aparece depois, em bind_sources. Retorna as que falharam.
    """
    failed = []
    for source in package.sources:
        if source.is_fetched():
            logger.debug("Fonte já presente: %s", source.uri)
            continue
        logger.info("Baixando fonte %s", source.uri)
        try:
            source.fetch()
        except SourceFetchError as e:
            logger.error("%s", e)
            failed.append(source)
    return failed


def bind_sources(package, overlay):
    """Expõe as fontes no sandbox e as registra em overlay.extra_mounts."""
    source_dir = package.source_dir(overlay)
    for source in package.sources:
        local = source.path()
        if not os.path.isfile(local):
            raise SourceStageError(f"Fonte ausente no cache: {source.uri} ({local})")
        if not source.is_fetched():
            raise SourceStageError(f"Fonte em cache com hash divergente: {source.uri} ({local})")

        target = os.path.join(source_dir, source.file)
        logger.debug("Expondo fonte no sandbox: %s", target)
        try:
            utils.ensure_dir(source_dir)
            utils.touch_file(target)
        except OSError as e:
            raise SourceStageError(f"Falha ao criar alvo do bind mount {target}: {e}") from e

        try:
            mounts.bind_mount(local, target, read_only=True)
        except MountError as e:
            raise SourceStageError(f"Falha no bind mount de {source.file}: {e}") from e
        overlay.extra_mounts.append(target)
