"""
Fixtures comuns: diretórios isolados e dublês para o host.

Nenhum teste precisa de root ou rede: mount/umount/ip passam por FakeHost,
execuções no chroot por FakeChroot e a rede do processo por FakeNetwork.
"""

import hashlib
import os
import subprocess
import textwrap

import pytest

from eobuild.modules import chroot, config, mounts, supervisor, utils
from eobuild.modules.errors import BuildExecError


@pytest.fixture
def dirs(tmp_path, monkeypatch):
    paths = {}
    for key in ("images_dir", "sources_dir", "overlay_dir", "log_dir"):
        path = tmp_path / key.replace("_dir", "")
        path.mkdir()
        paths[key] = path
        monkeypatch.setitem(config._config, key, str(path))
    monkeypatch.setitem(config._config, "kill_grace", 0)
    monkeypatch.setitem(config._config, "image_base_uri", "https://images.example.org/root")
    paths["root"] = tmp_path
    return paths


class FakeHost:
    """Registra comandos do host e simula a tabela de montagens."""

    def __init__(self, events):
        self.events = events
        self.commands = []
        self.mounted = []
        self.fail = lambda cmd: False

    def run(self, cmd, cwd=None, env=None, check=True):
        cmd = list(cmd)
        self.commands.append(cmd)
        self.events.append(("host", cmd))
        rc = 32 if self.fail(cmd) else 0
        if rc == 0 and cmd[0] == "mount":
            self.mounted.append(os.path.normpath(cmd[-1]))
        elif rc == 0 and cmd[0] == "umount":
            target = os.path.normpath(cmd[-1])
            if target in self.mounted:
                self.mounted.remove(target)
            else:
                rc = 32
        if check and rc != 0:
            raise subprocess.CalledProcessError(rc, cmd, "simulated failure")
        return rc, ""

    def list_mounts(self):
        return list(self.mounted)

    def umounts(self):
        return [c[-1] for c in self.commands if c[0] == "umount"]


class FakeChroot:
    """Dublê de chroot.chroot_exec; simula o pid do dbus e artefatos do build."""

    def __init__(self, events):
        self.events = events
        self.calls = []
        self.fail = lambda command: False
        self.on_call = None

    def __call__(self, notifier, root, command, env=None, stdin=False):
        self.calls.append({"root": root, "command": command, "env": env, "stdin": stdin})
        self.events.append(("chroot", command))
        notifier.set_active_pid(4242)
        try:
            if self.on_call is not None:
                self.on_call(root, command)
            if command == "dbus-daemon --system":
                pid = os.path.join(root, "run", "dbus", "pid")
                os.makedirs(os.path.dirname(pid), exist_ok=True)
                with open(pid, "w") as f:
                    f.write("4243\n")
            if self.fail(command):
                raise BuildExecError(command, 1)
        finally:
            notifier.set_active_pid(0)

    def commands(self):
        return [c["command"] for c in self.calls]


class FakeNetwork:
    def __init__(self, events):
        self.events = events
        self._isolated = False
        self.restored = 0

    @property
    def isolated(self):
        return self._isolated

    def drop(self):
        self.events.append(("network", "drop"))
        self._isolated = True

    def configure_loopback(self, root):
        self.events.append(("network", "loopback"))

    def restore(self):
        if not self._isolated:
            return False
        self._isolated = False
        self.restored += 1
        self.events.append(("network", "restore"))
        return True


@pytest.fixture
def events():
    return []


@pytest.fixture
def host(monkeypatch, events):
    fake = FakeHost(events)
    monkeypatch.setattr(utils, "run", fake.run)
    monkeypatch.setattr(mounts, "list_mounts", fake.list_mounts)
    return fake


@pytest.fixture
def fake_chroot(monkeypatch, events):
    fake = FakeChroot(events)
    monkeypatch.setattr(chroot, "chroot_exec", fake)
    return fake


@pytest.fixture
def network(events):
    return FakeNetwork(events)


@pytest.fixture(autouse=True)
def no_process_sweep(monkeypatch):
    monkeypatch.setattr(supervisor, "kill_sandbox_processes", lambda root: 0)


@pytest.fixture
def no_downloads(monkeypatch):
    def forbidden(*args, **kwargs):
        raise AssertionError("download inesperado")
    monkeypatch.setattr(utils, "download", forbidden)


@pytest.fixture
def installed_image(dirs):
    from eobuild.modules.image import BackingImage
    bk = BackingImage("main-x86_64")
    with open(bk.image_path, "wb") as f:
        f.write(b"\0" * 16)
    return bk


def write_cached_source(dirs, name, payload, algo="sha256"):
    digest = hashlib.new(algo, payload).hexdigest()
    cache = dirs["sources_dir"] / digest
    cache.mkdir(parents=True, exist_ok=True)
    (cache / name).write_bytes(payload)
    return digest


@pytest.fixture
def ypkg_recipe(tmp_path, dirs):
    payload = b"nano source tarball"
    digest = write_cached_source(dirs, "nano-7.2.tar.xz", payload)
    recipe_dir = tmp_path / "recipes" / "nano"
    (recipe_dir / "files").mkdir(parents=True)
    (recipe_dir / "files" / "fix.patch").write_text("--- a\n+++ b\n")
    path = recipe_dir / "package.yml"
    path.write_text(textwrap.dedent(f"""\
        name       : nano
        version    : '7.2'
        release    : 12
        source     :
            - https://www.nano-editor.org/dist/v7/nano-7.2.tar.xz : {digest}
        license    : GPL-3.0-or-later
        component  : system.devel
        summary    : Small, friendly text editor
        setup      : |
            %configure
        build      : |
            %make
        install    : |
            %make_install
        """))
    return path


@pytest.fixture
def pspec_recipe(tmp_path, dirs):
    payload = b"legacy source tarball"
    digest = write_cached_source(dirs, "zlib-1.3.tar.gz", payload, algo="sha1")
    recipe_dir = tmp_path / "recipes" / "zlib"
    recipe_dir.mkdir(parents=True)
    (recipe_dir / "actions.py").write_text("def build():\n    pass\n")
    path = recipe_dir / "pspec.xml"
    path.write_text(textwrap.dedent(f"""\
        <?xml version="1.0" ?>
        <!DOCTYPE PISI SYSTEM "https://solus-project.com/standard/pisi-spec.dtd">
        <PISI>
            <Source>
                <Name>zlib</Name>
                <Archive sha1sum="{digest}" type="targz">https://zlib.net/zlib-1.3.tar.gz</Archive>
            </Source>
            <History>
                <Update release="4">
                    <Date>2023-08-20</Date>
                    <Version>1.3</Version>
                </Update>
                <Update release="3">
                    <Date>2022-10-14</Date>
                    <Version>1.2.13</Version>
                </Update>
            </History>
        </PISI>
        """))
    return path
