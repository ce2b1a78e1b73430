#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
config.py - Módulo de configuração do eobuild

- Suporta $EOBUILD_CONFIG > ~/.config/eobuild/config.yml > /etc/eobuild/config.yml > defaults
- Configuração em YAML
- Permite leitura, escrita, reset e listagem completa da config
- Inclui perfis de build, usuário de build e política de rede do sandbox
"""

import os
import logging

import yaml

logger = logging.getLogger("eobuild.config")

# Caminhos padrão
USER_CONFIG = os.path.expanduser("~/.config/eobuild/config.yml")
SYSTEM_CONFIG = "/etc/eobuild/config.yml"

# Valores padrão (completo)
DEFAULTS = {
    # Diretórios principais
    "images_dir": "/var/lib/eobuild/images",
    "sources_dir": "/var/lib/eobuild/sources",
    "overlay_dir": "/var/cache/eobuild",
    "log_dir": "/var/log/eobuild",

    # Imagens base
    "image_base_uri": "https://packages.getsol.us/image_root",
    "default_profile": "main-x86_64",
    "profiles": {
        "main-x86_64": {"image": "main-x86_64"},
        "unstable-x86_64": {"image": "unstable-x86_64"},
    },

    # Usuário de build (receitas package.yml)
    "build_user": "build",
    "build_user_home": "/home/build",
    "build_user_shell": "/bin/bash",

    # Gerenciador de pacotes
    "dev_component": "system.devel",

    # Rede dentro do sandbox (somente loopback)
    "loopback_commands": [["ip", "link", "set", "lo", "up"]],
    "hosts_file": "127.0.0.1\tlocalhost\n::1\tlocalhost ip6-localhost ip6-loopback\n",

    # Downloads
    "http_timeout": 30,

    # Processos
    "kill_grace": 5,

    # Saída
    "disable_colors": False,
}

_config = DEFAULTS.copy()

def _load_from(path: str) -> dict:
    """Carrega configuração de um arquivo YAML se existir."""
    if not os.path.isfile(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignorando configuração ilegível %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignorando configuração %s: esperado um mapeamento", path)
        return {}
    return data

def load_config() -> dict:
    """Carrega config seguindo a hierarquia: env > user > system > defaults"""
    global _config

    # 1. Variável de ambiente
    env_path = os.getenv("EOBUILD_CONFIG")
    if env_path and os.path.exists(env_path):
        _config = {**DEFAULTS, **_load_from(env_path)}
        return _config

    # 2. Configuração do usuário
    if os.path.exists(USER_CONFIG):
        _config = {**DEFAULTS, **_load_from(USER_CONFIG)}
        return _config

    # 3. Configuração global
    if os.path.exists(SYSTEM_CONFIG):
        _config = {**DEFAULTS, **_load_from(SYSTEM_CONFIG)}
        return _config

    # 4. Defaults
    _config = DEFAULTS.copy()
    return _config

def _save(cfg: dict, system: bool = False) -> None:
    """Salva configuração em YAML (usuário ou sistema)."""
    path = SYSTEM_CONFIG if system else USER_CONFIG
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(cfg, f, default_flow_style=False, allow_unicode=True)

def get(key: str, default=None):
    """Obtém valor de uma chave da configuração (com fallback)."""
    if not _config:
        load_config()
    return _config.get(key, DEFAULTS.get(key, default))

def set(key: str, value, system: bool = False):
    """Define valor para uma chave e salva em config.yml."""
    cfg = load_config()
    cfg[key] = value
    _save(cfg, system=system)
    _config.update(cfg)

def all() -> dict:
    """Retorna configuração completa (merge de defaults + arquivo carregado)."""
    return load_config()

def reset(system: bool = False):
    """Restaura configuração para os valores padrão."""
    _save(DEFAULTS.copy(), system=system)
    load_config()

def ensure_dirs():
    """Garante que diretórios essenciais existem."""
    for key in ["images_dir", "sources_dir", "overlay_dir"]:
        os.makedirs(get(key), exist_ok=True)

# Carrega config logo no import
load_config()
