import os
import shutil
import hashlib
import tempfile
import subprocess

import requests
import yaml
from tqdm import tqdm

from eobuild.modules import log, config


# -------------------------
# Sistema de arquivos
# -------------------------
def ensure_dir(path: str, mode: int = 0o755):
    """Cria diretório se não existir"""
    os.makedirs(path, mode=mode, exist_ok=True)


def path_exists(path: str) -> bool:
    """Existe (inclusive links quebrados)"""
    return os.path.lexists(path)


def touch_file(path: str):
    """Cria arquivo vazio (alvo de bind mount) sem truncar um existente"""
    ensure_dir(os.path.dirname(path))
    with open(path, "a", encoding="utf-8"):
        pass


def copy_all(src: str, dest_dir: str):
    """
    Copia arquivo ou árvore `src` para dentro de `dest_dir`, preservando metadados.
    Caminhos ausentes são ignorados (assets opcionais das receitas).
    """
    if not path_exists(src):
        log.debug("Asset ausente, ignorando: %s", src)
        return
    ensure_dir(dest_dir)
    target = os.path.join(dest_dir, os.path.basename(src.rstrip("/")))
    if os.path.isdir(src) and not os.path.islink(src):
        shutil.copytree(src, target, symlinks=True, dirs_exist_ok=True)
    else:
        shutil.copy2(src, target, follow_symlinks=False)


# -------------------------
# Execução de comandos
# -------------------------
def run(cmd: list[str], cwd: str | None = None, env: dict | None = None, check=True):
    """Wrapper para rodar comandos no host com log"""
    rc, out = log.run_cmd(cmd, cwd=cwd, env=env)
    if check and rc != 0:
        raise subprocess.CalledProcessError(rc, cmd, out)
    return rc, out


# -------------------------
# Download e hashes
# -------------------------
def file_hash(path: str, algo: str = "sha256") -> str:
    """Calcula o hash (hex) de um arquivo"""
    h = hashlib.new(algo)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            h.update(chunk)
    return h.hexdigest()


def download(url: str, dest: str, progress: bool = False):
    """
    Baixa `url` para `dest` via arquivo temporário no mesmo diretório.
    Em falha o arquivo parcial é removido e a exceção propagada.
    """
    dest_dir = os.path.dirname(dest) or "."
    ensure_dir(dest_dir)
    fd, tmp = tempfile.mkstemp(prefix=".partial-", dir=dest_dir)
    log.debug("Baixando %s -> %s", url, dest)
    try:
        with os.fdopen(fd, "wb") as f, \
                requests.get(url, stream=True, timeout=config.get("http_timeout")) as r:
            r.raise_for_status()
            total = int(r.headers.get("content-length", 0)) or None
            bar = tqdm(total=total, unit="B", unit_scale=True,
                       desc=os.path.basename(dest), disable=not progress)
            with bar:
                for chunk in r.iter_content(chunk_size=32 * 1024):
                    f.write(chunk)
                    bar.update(len(chunk))
        os.replace(tmp, dest)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise
    return dest


# -------------------------
# Leitura de configs
# -------------------------
def load_yaml(path: str) -> dict:
    """Carrega YAML em dict"""
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}
