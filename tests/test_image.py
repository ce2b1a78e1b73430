import lzma
import os

import pytest
import requests

from eobuild.modules import eopkg, image, utils
from eobuild.modules.errors import ImageError, ProfileNotInstalledError, UpgradeError
from eobuild.modules.image import BackingImage
from eobuild.modules.supervisor import ProcessSupervisor

PAYLOAD = b"ext4 image" * 64


@pytest.fixture
def image_server(monkeypatch):
    calls = []

    def download(url, dest, progress=False):
        calls.append((url, progress))
        with open(dest, "wb") as f:
            f.write(lzma.compress(PAYLOAD))
        return dest

    monkeypatch.setattr(utils, "download", download)
    return calls


def test_paths(dirs):
    bk = BackingImage("main-x86_64")
    assert bk.image_path == str(dirs["images_dir"] / "main-x86_64.img")
    assert bk.image_path_xz == bk.image_path + ".xz"
    assert bk.root_dir == str(dirs["images_dir"] / "main-x86_64")
    assert bk.uri == "https://images.example.org/root/main-x86_64.img.xz"


def test_initialise_twice(dirs, image_server):
    bk = BackingImage("main-x86_64")
    assert image.initialise(bk) is True
    assert bk.is_installed()
    assert not bk.is_fetched()
    with open(bk.image_path, "rb") as f:
        assert f.read() == PAYLOAD
    assert image_server == [(bk.uri, True)]

    assert image.initialise(bk) is False
    assert len(image_server) == 1


def test_initialise_resumes_from_fetched_archive(dirs, image_server):
    bk = BackingImage("unstable-x86_64")
    with open(bk.image_path_xz, "wb") as f:
        f.write(lzma.compress(PAYLOAD))
    assert image.initialise(bk) is True
    assert image_server == []


def test_fetch_error(dirs, monkeypatch):
    def offline(url, dest, progress=False):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(utils, "download", offline)
    bk = BackingImage("main-x86_64")
    with pytest.raises(ImageError, match="Falha ao baixar"):
        image.initialise(bk)
    assert not bk.is_installed()


def test_corrupt_archive(dirs):
    bk = BackingImage("main-x86_64")
    with open(bk.image_path_xz, "wb") as f:
        f.write(b"not xz at all")
    with pytest.raises(ImageError, match="descomprimir"):
        bk.decompress()
    assert not bk.is_installed()
    assert not os.path.exists(bk.image_path + ".partial")


def test_update_requires_install(dirs):
    with pytest.raises(ProfileNotInstalledError):
        image.update(BackingImage("main-x86_64"), ProcessSupervisor())


@pytest.fixture
def no_resolv(monkeypatch, tmp_path):
    monkeypatch.setattr(eopkg, "HOST_RESOLV", str(tmp_path / "missing-resolv.conf"))


def test_update_sequence(installed_image, host, fake_chroot, no_resolv):
    image.update(installed_image, ProcessSupervisor())

    root = installed_image.root_dir
    assert host.commands[0] == ["mount", "-o", "loop,rw", installed_image.image_path, root]
    assert fake_chroot.commands() == [
        "dbus-uuidgen --ensure",
        "dbus-daemon --system",
        "eopkg upgrade -y",
        "eopkg install -c system.devel -y",
        "kill -TERM $(cat /run/dbus/pid)",
    ]
    assert host.umounts()[-1] == root
    assert host.mounted == []


def test_update_failure_still_unmounts(installed_image, host, fake_chroot, no_resolv):
    fake_chroot.fail = lambda c: c == "eopkg upgrade -y"
    with pytest.raises(UpgradeError):
        image.update(installed_image, ProcessSupervisor())
    assert fake_chroot.commands()[-1] == "kill -TERM $(cat /run/dbus/pid)"
    assert host.mounted == []
