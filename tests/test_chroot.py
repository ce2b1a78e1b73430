import io
import sys

import pytest

from eobuild.modules import chroot
from eobuild.modules.errors import BuildExecError


class Notifier:
    def __init__(self):
        self.pids = []

    def set_active_pid(self, pid):
        self.pids.append(pid)


class FakePopen:
    instances = []

    def __init__(self, argv, rc=0, lines=("linha 1\n", "linha 2\n"), **kwargs):
        self.argv = argv
        self.kwargs = kwargs
        self.pid = 777
        self._rc = rc
        self.stdout = io.StringIO("".join(lines)) if kwargs.get("stdout") is not None else None
        FakePopen.instances.append(self)

    def wait(self):
        return self._rc


@pytest.fixture
def popen(monkeypatch):
    FakePopen.instances = []
    state = {"rc": 0}

    def factory(argv, **kwargs):
        return FakePopen(argv, rc=state["rc"], **kwargs)

    monkeypatch.setattr(chroot.subprocess, "Popen", factory)
    return state


def test_sane_environment_is_minimal(monkeypatch):
    monkeypatch.setenv("SECRET_TOKEN", "x")
    env = chroot.sane_environment("build", "/home/build", "/bin/bash")
    assert env["HOME"] == "/home/build"
    assert env["USER"] == "build"
    assert env["SHELL"] == "/bin/bash"
    assert env["PATH"] == chroot.SANE_PATH
    assert "SECRET_TOKEN" not in env
    assert set(env) == {"PATH", "HOME", "USER", "LOGNAME", "SHELL", "TERM"}


def test_exec_registers_and_clears_pid(popen):
    notifier = Notifier()
    chroot.chroot_exec(notifier, "/srv/union", "eopkg upgrade -y")

    proc = FakePopen.instances[-1]
    assert proc.argv == ["chroot", "/srv/union", "/bin/sh", "-c", "eopkg upgrade -y"]
    assert proc.kwargs["env"]["USER"] == "root"
    assert notifier.pids == [777, 0]


def test_exec_failure_reports_command_and_status(popen):
    popen["rc"] = 2
    notifier = Notifier()
    with pytest.raises(BuildExecError) as info:
        chroot.chroot_exec(notifier, "/srv/union", "ypkg-build package.yml")
    assert info.value.command == "ypkg-build package.yml"
    assert info.value.status == 2
    assert notifier.pids == [777, 0]


def test_exec_signal_status_message(popen):
    popen["rc"] = -15
    with pytest.raises(BuildExecError, match="sinal 15"):
        chroot.chroot_exec(Notifier(), "/srv/union", "make")


def test_interactive_exec_attaches_stdin(popen):
    chroot.chroot_exec(Notifier(), "/srv/union", "/bin/su - build -s /bin/bash", stdin=True)
    proc = FakePopen.instances[-1]
    assert proc.kwargs["stdin"] is sys.stdin
    assert "stdout" not in proc.kwargs


def test_spawn_error_is_exec_error(monkeypatch):
    def boom(argv, **kwargs):
        raise FileNotFoundError("chroot")

    monkeypatch.setattr(chroot.subprocess, "Popen", boom)
    notifier = Notifier()
    with pytest.raises(BuildExecError) as info:
        chroot.chroot_exec(notifier, "/srv/union", "true")
    assert info.value.status == 127
    assert notifier.pids == []
