#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
cli.py - CLI do eobuild

    eobuild [-p PERFIL] [-d] [-n] build  [package.yml|pspec.xml]
    eobuild [-p PERFIL] [-d] [-n] chroot [package.yml|pspec.xml]
    eobuild [-d] [-n] init   [perfil] [-u]
    eobuild [-d] [-n] update [perfil]
"""

from __future__ import annotations
import argparse
import os
import sys

from eobuild import __version__
from eobuild.modules import (
    config as config_mod,
    image as image_mod,
    log as log_mod,
    pipeline as pipeline_mod,
    profiles as profiles_mod,
    recipe as recipe_mod,
)
from eobuild.modules.errors import EobuildError, PrivilegeError, ProfileNotInstalledError
from eobuild.modules.supervisor import ProcessSupervisor

# ANSI colors simples
C = {
    "reset": "\033[0m",
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "bold": "\033[1m",
}

_use_colors = True

def color(text: str, col: str) -> str:
    if not _use_colors:
        return text
    return f"{C.get(col, '')}{text}{C['reset']}"

logger = log_mod.get_logger("cli")

def _setup_logging(debug: bool, no_color: bool) -> None:
    global _use_colors
    log_mod.set_level("debug" if debug else "info")
    if no_color or config_mod.get("disable_colors"):
        _use_colors = False
        log_mod.disable_colors()
    log_mod.enable_file_log(config_mod.get("log_dir"))

def _require_root(action: str) -> None:
    if os.geteuid() != 0:
        raise PrivilegeError(f"Você precisa ser root para usar {action}")

def _report(e: Exception) -> int:
    print(color(f"[ERRO] {e}", "red"), file=sys.stderr)
    if isinstance(e, ProfileNotInstalledError) or isinstance(e.__cause__, ProfileNotInstalledError):
        print(f"{e}: Você esqueceu de rodar 'eobuild init'?", file=sys.stderr)
    return 1

def _resolve_recipe(args) -> str:
    path = (getattr(args, "recipe", None) or recipe_mod.find_recipe(os.getcwd())).strip()
    if not path:
        raise EobuildError("Informe a receita (package.yml ou pspec.xml)")
    return path

def _context(args) -> pipeline_mod.BuildContext:
    profile = profiles_mod.load_profile(args.profile)
    image = profiles_mod.require_installed(profile)
    package = recipe_mod.load_recipe(_resolve_recipe(args))
    return pipeline_mod.BuildContext(profile, package, image=image,
                                     output_dir=getattr(args, "output", None))

# ---------------------------
# Command handlers
# ---------------------------

def cmd_build(args):
    """
    eobuild build [receita] [-o DIR]
    """
    _require_root("build")
    ctx = _context(args)
    artifacts = pipeline_mod.build_package(ctx)
    print(color("[OK] Build concluída", "green"))
    for path in artifacts:
        print(path)
    return 0

def cmd_chroot(args):
    """
    eobuild chroot [receita]
    """
    _require_root("chroot")
    ctx = _context(args)
    pipeline_mod.chroot_package(ctx)
    logger.info("Chroot concluído")
    return 0

def cmd_init(args):
    """
    eobuild init [perfil] [--update]
    """
    _require_root("init")
    config_mod.ensure_dirs()
    profile = profiles_mod.load_profile(args.target_profile or args.profile)
    bk = profile.backing_image()
    if not image_mod.initialise(bk):
        print(f"'{profile.name}' já foi inicializado")
    if args.update:
        image_mod.update(bk, ProcessSupervisor())
    return 0

def cmd_update(args):
    """
    eobuild update [perfil]
    """
    _require_root("update")
    profile = profiles_mod.load_profile(args.target_profile or args.profile)
    image_mod.update(profiles_mod.require_installed(profile), ProcessSupervisor())
    print(color(f"[OK] Perfil '{profile.name}' atualizado", "green"))
    return 0

# -----------------------------------------------------------------------------
# Build argument parser and connect commands
# -----------------------------------------------------------------------------

def build_parser():
    p = argparse.ArgumentParser(prog="eobuild", description="eobuild - builds eopkg em sandbox efêmero")
    p.add_argument("--profile", "-p", default=None, help="Perfil de build")
    p.add_argument("--debug", "-d", action="store_true", help="Mensagens de depuração")
    p.add_argument("--no-color", "-n", action="store_true", help="Desativa cores")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = p.add_subparsers(dest="command")

    # build
    sb = sub.add_parser("build", help="Construir pacote no sandbox")
    sb.add_argument("recipe", nargs="?", help="package.yml ou pspec.xml")
    sb.add_argument("--output", "-o", default=None, help="Diretório para os .eopkg")
    sb.set_defaults(func=cmd_build)

    # chroot
    sc = sub.add_parser("chroot", help="Shell interativo no ambiente de build do pacote")
    sc.add_argument("recipe", nargs="?", help="package.yml ou pspec.xml")
    sc.set_defaults(func=cmd_chroot)

    # init
    si = sub.add_parser("init", help="Inicializar um perfil")
    si.add_argument("target_profile", nargs="?", metavar="profile")
    si.add_argument("--update", "-u", action="store_true", help="Atualizar a imagem logo após o init")
    si.set_defaults(func=cmd_init)

    # update
    su = sub.add_parser("update", aliases=["up"], help="Atualizar a imagem base de um perfil")
    su.add_argument("target_profile", nargs="?", metavar="profile")
    su.set_defaults(func=cmd_update)

    return p

def run(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    _setup_logging(args.debug, args.no_color)

    try:
        return args.func(args)
    except (EobuildError, OSError) as e:
        if args.debug:
            log_mod.exception(f"Falha em {args.command}")
        return _report(e)

def main(argv=None):
    sys.exit(run(argv))

if __name__ == "__main__":
    main()
