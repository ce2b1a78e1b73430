#!/usr/bin/env python3
# -*- coding: utf-8

"""
recipe.py - Leitura das receitas de pacote

Dois formatos, cada um com um conjunto fixo de capacidades (RecipeKind):
  - pspec.xml (legado): roda como root, hash sha1, sem sandbox completo
  - package.yml (ypkg): usuário de build sem privilégios, sha256, sandbox completo
"""

import os
import xml.etree.ElementTree as ET
from typing import List, NamedTuple, Tuple

import yaml

from eobuild.modules import config, log, utils
from eobuild.modules.chroot import sane_environment
from eobuild.modules.errors import RecipeParseError
from eobuild.modules.sources import Source, file_from_uri

LIKELY_RECIPES = ["package.yml", "pspec.xml"]

# Assets copiados para o diretório de trabalho, além da própria receita
COMMON_ASSETS = ["files", "comar", "component.xml"]


class RecipeKind(NamedTuple):
    name: str
    user: str
    home: str
    work_dir: str
    source_dir: str
    hash_algo: str
    full_sandbox: bool
    assets: Tuple[str, ...] = ()

    def environment(self):
        return sane_environment(self.user, self.home)


BUILD_USER = config.get("build_user")
BUILD_USER_HOME = config.get("build_user_home")

LEGACY = RecipeKind(
    name="xml",
    user="root",
    home="/root",
    work_dir="/WORK",
    source_dir="/var/cache/eopkg/archives",
    hash_algo="sha1",
    full_sandbox=False,
    assets=("actions.py",),
)

MODERN = RecipeKind(
    name="ypkg",
    user=BUILD_USER,
    home=BUILD_USER_HOME,
    work_dir=os.path.join(BUILD_USER_HOME, "work"),
    source_dir=os.path.join(BUILD_USER_HOME, "YPKG", "sources"),
    hash_algo="sha256",
    full_sandbox=True,
)


class Package:
    def __init__(self, name: str, version: str, release: int, kind: RecipeKind,
                 path: str, sources: List[Source], can_network: bool = False):
        self.name = name
        self.version = version
        self.release = release
        self.kind = kind
        self.path = path
        self.sources = sources
        self.can_network = can_network

    def __repr__(self):
        return f"Package({self.name}-{self.version}-{self.release}, {self.kind.name})"

    @property
    def ident(self) -> str:
        return f"{self.name}-{self.version}-{self.release}"

    # caminhos (vistos do host) -------------------------------------------
    def work_dir(self, overlay) -> str:
        return os.path.join(overlay.mount_point, self.kind.work_dir.lstrip("/"))

    def source_dir(self, overlay) -> str:
        return os.path.join(overlay.mount_point, self.kind.source_dir.lstrip("/"))

    def recipe_internal(self) -> str:
        """Caminho da receita dentro do chroot."""
        return os.path.join(self.kind.work_dir, os.path.basename(self.path))

    def create_dirs(self, overlay):
        for d in (self.work_dir(overlay), self.source_dir(overlay)):
            utils.ensure_dir(d)

    def copy_assets(self, overlay):
        """Copia receita e diretórios auxiliares para o diretório de trabalho."""
        base_dir = os.path.dirname(os.path.abspath(self.path))
        dest = self.work_dir(overlay)
        names = [os.path.basename(self.path)] + COMMON_ASSETS + list(self.kind.assets)
        for name in names:
            utils.copy_all(os.path.join(base_dir, name), dest)


# -------------------------
# Parsers
# -------------------------
def _required(data: dict, field: str, path: str):
    value = data.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise RecipeParseError(f"Campo obrigatório '{field}' ausente em {path}")
    return value


def _release(value, path: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise RecipeParseError(f"release inválido em {path}: {value!r}") from None


def _source(uri: str, digest, kind: RecipeKind, path: str) -> Source:
    if not uri or not digest:
        raise RecipeParseError(f"Fonte sem uri ou hash em {path}")
    if not file_from_uri(uri):
        raise RecipeParseError(f"Não foi possível deduzir o nome do arquivo de {uri}")
    return Source(uri, str(digest), algo=kind.hash_algo)


def parse_ypkg(path: str) -> Package:
    try:
        data = utils.load_yaml(path)
    except (OSError, yaml.YAMLError) as e:
        raise RecipeParseError(f"Falha ao ler {path}: {e}") from e
    if not isinstance(data, dict):
        raise RecipeParseError(f"{path} não é um mapeamento YAML")

    name = str(_required(data, "name", path))
    version = str(_required(data, "version", path))
    release = _release(_required(data, "release", path), path)

    sources = []
    for entry in data.get("source") or []:
        if not isinstance(entry, dict) or len(entry) != 1:
            raise RecipeParseError(f"Cada source deve ser '- uri : sha256' em {path}")
        (uri, digest), = entry.items()
        sources.append(_source(str(uri), digest, MODERN, path))

    return Package(name, version, release, MODERN, path, sources,
                   can_network=bool(data.get("networking", False)))


def parse_pspec(path: str) -> Package:
    try:
        root = ET.parse(path).getroot()
    except (OSError, ET.ParseError) as e:
        raise RecipeParseError(f"Falha ao ler {path}: {e}") from e

    name = (root.findtext("Source/Name") or "").strip()
    if not name:
        raise RecipeParseError(f"Source/Name ausente em {path}")

    update = root.find("History/Update")
    if update is None:
        raise RecipeParseError(f"History/Update ausente em {path}")
    version = (update.findtext("Version") or "").strip()
    if not version:
        raise RecipeParseError(f"Version ausente em {path}")
    release = _release(update.get("release"), path)

    sources = []
    for archive in root.findall("Source/Archive"):
        sources.append(_source((archive.text or "").strip(), archive.get("sha1sum"), LEGACY, path))

    return Package(name, version, release, LEGACY, path, sources)


def load_recipe(path: str) -> Package:
    """RecipeLoader: escolhe o parser pelo nome do arquivo."""
    if not os.path.isfile(path):
        raise RecipeParseError(f"Receita não encontrada: {path}")
    if path.endswith(".xml"):
        pkg = parse_pspec(path)
    else:
        pkg = parse_ypkg(path)
    log.debug("Receita carregada: %r", pkg)
    return pkg


def find_recipe(cwd: str = ".") -> str:
    """Receita provável no diretório atual ("" se nenhuma)."""
    for name in LIKELY_RECIPES:
        candidate = os.path.join(cwd, name)
        if os.path.isfile(candidate):
            return candidate
    return ""
