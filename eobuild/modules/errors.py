# errors.py
"""
Exceções do eobuild.

Toda falha do núcleo herda de EobuildError; a CLI trata essa raiz
(e OSError) como falha com status 1.
"""


class EobuildError(Exception):
    pass


class PrivilegeError(EobuildError):
    """O comando exige superusuário no host."""


# Perfis / imagens -----------------------------------------------------------
class ProfileError(EobuildError):
    pass

class ProfileNotInstalledError(ProfileError):
    """O perfil existe, mas a imagem base ainda não foi inicializada (init)."""

class ImageError(EobuildError):
    pass


# Receitas -------------------------------------------------------------------
class RecipeParseError(EobuildError):
    pass


# Montagens / rede -----------------------------------------------------------
class MountError(EobuildError):
    pass

class MountCleanupError(MountError):
    pass

class NetworkConfigError(EobuildError):
    pass


# Gerenciador de pacotes -----------------------------------------------------
class PackageManagerError(EobuildError):
    pass

class PackageManagerInitError(PackageManagerError):
    pass

class ServiceBusError(PackageManagerError):
    pass

class UpgradeError(PackageManagerError):
    pass

class ComponentInstallError(PackageManagerError):
    pass


# Fontes ---------------------------------------------------------------------
class SourceFetchError(EobuildError):
    pass

class SourceStageError(EobuildError):
    pass


# Execução -------------------------------------------------------------------
class BuildExecError(EobuildError):
    """Comando no chroot terminou com status diferente de zero."""

    def __init__(self, command: str, status: int):
        self.command = command
        self.status = status
        if status < 0:
            detail = f"terminado pelo sinal {-status}"
        else:
            detail = f"status {status}"
        super().__init__(f"'{command}' falhou ({detail})")


class StageError(EobuildError):
    """Falha de uma etapa do pipeline, com o contexto do pacote."""

    def __init__(self, stage: str, package: str, error: Exception):
        self.stage = stage
        self.package = package
        self.error = error
        super().__init__(f"{package}: etapa '{stage}' falhou: {error}")
