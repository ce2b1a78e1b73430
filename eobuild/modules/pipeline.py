# pipeline.py
"""
Orquestrador de build do eobuild.

Fluxo (build):
- limpa restos e ativa o overlay
- copia receita e assets para o diretório de trabalho
- garante as fontes no cache (falhas por fonte não abortam)
- eopkg: init, dbus, upgrade, componente de desenvolvimento
- cria diretórios de trabalho/fontes
- ypkg: deps de build, para o dbus, chown da home, isola a rede, bind das
  fontes, reafirma o layout do eopkg e roda o build como usuário de build
- legado (pspec.xml): sem sandbox de rede/usuário, build como root
- coleta os .eopkg gerados

Qualquer falha interrompe as etapas seguintes; o reaper da SandboxSession
desmonta tudo em todos os caminhos de saída.
"""

from __future__ import annotations

import glob
import os
import shlex
import shutil
from typing import Callable, List, NamedTuple, Optional

from eobuild.modules import config, chroot, log, sources
from eobuild.modules.eopkg import EopkgManager
from eobuild.modules.errors import EobuildError, StageError
from eobuild.modules.network import NetworkIsolation
from eobuild.modules.overlay import Overlay
from eobuild.modules.supervisor import ProcessSupervisor, SandboxSession

logger = log.get_logger("pipeline")


class BuildContext:
    """Estado de uma sessão, criado uma vez por invocação."""

    def __init__(self, profile, package, image=None, supervisor: ProcessSupervisor = None,
                 network: NetworkIsolation = None, output_dir: Optional[str] = None):
        self.profile = profile
        self.package = package
        self.image = image or profile.backing_image()
        self.supervisor = supervisor or ProcessSupervisor()
        self.network = network or NetworkIsolation()
        self.overlay = Overlay(self.image, package, network=self.network)
        self.package_manager = EopkgManager(self.supervisor, self.overlay.mount_point)
        self.output_dir = output_dir or os.getcwd()
        self.artifacts: List[str] = []

    def exec(self, command: str, stdin: bool = False):
        """Roda no chroot com o ambiente da identidade do tipo de receita."""
        chroot.chroot_exec(self.supervisor, self.overlay.mount_point, command,
                           env=self.package.kind.environment(), stdin=stdin)


class Stage(NamedTuple):
    name: str
    func: Callable[[BuildContext], None]


# Etapas -----------------------------------------------------------------------
def activate_root(ctx: BuildContext):
    ctx.overlay.clean_existing()
    ctx.overlay.activate()


def copy_assets(ctx: BuildContext):
    ctx.package.copy_assets(ctx.overlay)


def fetch_sources(ctx: BuildContext):
    logger.info("Validando fontes")
    failed = sources.fetch_sources(ctx.package)
    if failed:
        logger.warning("%d fonte(s) não puderam ser baixadas", len(failed))


def init_package_manager(ctx: BuildContext):
    ctx.package_manager.init()
    ctx.package_manager.start_dbus()


def upgrade_system(ctx: BuildContext):
    logger.info("Atualizando a base do sistema")
    ctx.package_manager.upgrade()
    component = config.get("dev_component")
    logger.info("Garantindo o componente %s", component)
    ctx.package_manager.install_component(component)


def create_dirs(ctx: BuildContext):
    ctx.package.create_dirs(ctx.overlay)


def install_build_deps(ctx: BuildContext):
    logger.info("Instalando dependências de build")
    ctx.package_manager.install_build_deps(ctx.package.recipe_internal())


def stop_service_bus(ctx: BuildContext):
    ctx.package_manager.stop_dbus()


def fix_ownership(ctx: BuildContext):
    kind = ctx.package.kind
    user = shlex.quote(kind.user)
    chroot.chroot_exec(ctx.supervisor, ctx.overlay.mount_point,
                       f"chown -R {user}:{user} {shlex.quote(kind.home)}",
                       env=ctx.package_manager.env)


def isolate_network(ctx: BuildContext):
    apply_network_isolation(ctx)


def bind_sources(ctx: BuildContext):
    sources.bind_sources(ctx.package, ctx.overlay)


def ensure_layout(ctx: BuildContext):
    ctx.package_manager.ensure_layout()


def build_ypkg(ctx: BuildContext):
    kind = ctx.package.kind
    logger.info("Iniciando build de %s", ctx.package.name)
    ctx.exec(f"/bin/su - {shlex.quote(kind.user)} -- fakeroot ypkg-build -D "
             f"{shlex.quote(kind.work_dir)} {shlex.quote(ctx.package.recipe_internal())}")


def build_legacy(ctx: BuildContext):
    logger.warning("Sandbox completo não é possível com o formato legado")
    logger.info("Iniciando build de %s", ctx.package.name)
    ctx.exec(f"eopkg build --ignore-safety --skip-signing -O {shlex.quote(ctx.package.kind.work_dir)} "
             f"{shlex.quote(ctx.package.recipe_internal())}")


def collect_artifacts(ctx: BuildContext):
    found = sorted(glob.glob(os.path.join(ctx.package.work_dir(ctx.overlay), "*.eopkg")))
    if not found:
        logger.warning("Nenhum .eopkg gerado para %s", ctx.package.name)
        return
    os.makedirs(ctx.output_dir, exist_ok=True)
    for path in found:
        dest = os.path.join(ctx.output_dir, os.path.basename(path))
        shutil.copy2(path, dest)
        ctx.artifacts.append(dest)
        logger.info("Pacote gerado: %s", dest)


def login_shell(ctx: BuildContext):
    kind = ctx.package.kind
    logger.debug("Abrindo shell de login")
    ctx.exec(f"/bin/su - {shlex.quote(kind.user)} -s {shlex.quote(config.get('build_user_shell'))}",
             stdin=True)


def apply_network_isolation(ctx: BuildContext) -> bool:
    """drop -> loopback; pulado (com aviso) se a receita pede rede."""
    if ctx.package.can_network:
        logger.warning("%s pediu acesso à rede explicitamente, sandbox de rede desativado",
                       ctx.package.name)
        return False
    ctx.network.drop()
    ctx.overlay.configure_networking()
    return True


COMMON_STAGES = [
    Stage("activate-root", activate_root),
    Stage("copy-assets", copy_assets),
    Stage("fetch-sources", fetch_sources),
    Stage("init-package-manager", init_package_manager),
    Stage("upgrade-system", upgrade_system),
    Stage("create-dirs", create_dirs),
]

MODERN_STAGES = [
    Stage("install-build-deps", install_build_deps),
    Stage("stop-service-bus", stop_service_bus),
    Stage("fix-ownership", fix_ownership),
    Stage("isolate-network", isolate_network),
    Stage("bind-sources", bind_sources),
    Stage("ensure-layout", ensure_layout),
    Stage("build", build_ypkg),
    Stage("collect-artifacts", collect_artifacts),
]

LEGACY_STAGES = [
    Stage("build", build_legacy),
    Stage("stop-service-bus", stop_service_bus),
    Stage("collect-artifacts", collect_artifacts),
]


def build_stages(kind) -> List[Stage]:
    return COMMON_STAGES + (MODERN_STAGES if kind.full_sandbox else LEGACY_STAGES)


def chroot_stages(kind) -> List[Stage]:
    stages = [Stage("activate-root", activate_root)]
    if kind.full_sandbox:
        stages.append(Stage("isolate-network", isolate_network))
    stages.append(Stage("login-shell", login_shell))
    return stages


# Orquestra --------------------------------------------------------------------
def run_stages(ctx: BuildContext, stages: List[Stage]):
    """Executa as etapas em ordem e para na primeira falha."""
    for stage in stages:
        logger.debug("Etapa: %s", stage.name)
        try:
            stage.func(ctx)
        except (EobuildError, OSError) as e:
            logger.error("%s: etapa '%s' falhou: %s", ctx.package.ident, stage.name, e)
            raise StageError(stage.name, ctx.package.ident, e) from e


def build_package(ctx: BuildContext) -> List[str]:
    """Pipeline completo. Retorna os .eopkg copiados para output_dir."""
    logger.info("Construindo %s (perfil %s, tipo %s)", ctx.package.ident,
                ctx.image.name, ctx.package.kind.name)
    with SandboxSession(ctx.overlay, ctx.supervisor, ctx.package_manager):
        run_stages(ctx, build_stages(ctx.package.kind))
    logger.info("Build finalizado com sucesso: %s", ctx.package.ident)
    return ctx.artifacts


def chroot_package(ctx: BuildContext):
    """Shell interativo no ambiente de build do pacote."""
    logger.debug("Iniciando chroot de %s (perfil %s)", ctx.package.ident, ctx.image.name)
    with SandboxSession(ctx.overlay, ctx.supervisor, ctx.package_manager):
        run_stages(ctx, chroot_stages(ctx.package.kind))
