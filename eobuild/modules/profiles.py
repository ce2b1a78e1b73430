# profiles.py
"""Perfis de build (ProfileStore): nome -> imagem base."""

from typing import Dict, Optional

from eobuild.modules import config
from eobuild.modules.errors import ProfileError, ProfileNotInstalledError
from eobuild.modules.image import BackingImage


class Profile:
    def __init__(self, name: str, image: str):
        self.name = name
        self.image = image

    def __repr__(self):
        return f"Profile({self.name!r}, image={self.image!r})"

    def backing_image(self) -> BackingImage:
        return BackingImage(self.image)


def list_profiles() -> Dict[str, dict]:
    return dict(config.get("profiles") or {})


def load_profile(name: Optional[str] = None) -> Profile:
    name = (name or config.get("default_profile") or "").strip()
    profiles = list_profiles()
    if name not in profiles:
        known = ", ".join(sorted(profiles)) or "nenhum"
        raise ProfileError(f"Perfil desconhecido '{name}' (disponíveis: {known})")
    entry = profiles[name] or {}
    return Profile(name, entry.get("image", name))


def require_installed(profile: Profile) -> BackingImage:
    image = profile.backing_image()
    if not image.is_installed():
        raise ProfileNotInstalledError(f"Perfil '{profile.name}' não foi inicializado")
    return image
