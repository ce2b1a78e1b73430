import os

import pytest

from eobuild.modules import config, network
from eobuild.modules.errors import NetworkConfigError
from eobuild.modules.network import NetworkIsolation


@pytest.fixture
def namespaces(tmp_path, monkeypatch):
    ns = tmp_path / "net"
    ns.write_text("")
    monkeypatch.setattr(network, "HOST_NETNS", str(ns))
    calls = []
    monkeypatch.setattr(os, "unshare", lambda flags: calls.append(("unshare", flags)), raising=False)
    monkeypatch.setattr(os, "setns", lambda fd, flags: calls.append(("setns", flags)), raising=False)
    return calls


def test_drop_then_restore(namespaces):
    net = NetworkIsolation()
    assert not net.isolated
    net.drop()
    assert net.isolated
    net.drop()  # já isolado
    assert net.restore() is True
    assert not net.isolated
    assert net.restore() is False
    assert namespaces == [("unshare", os.CLONE_NEWNET), ("setns", os.CLONE_NEWNET)]


def test_drop_failure(namespaces, monkeypatch):
    def denied(flags):
        raise PermissionError(1, "Operation not permitted")

    monkeypatch.setattr(os, "unshare", denied, raising=False)
    net = NetworkIsolation()
    with pytest.raises(NetworkConfigError):
        net.drop()
    assert not net.isolated


def test_loopback_requires_drop(tmp_path):
    with pytest.raises(NetworkConfigError):
        NetworkIsolation().configure_loopback(str(tmp_path))


def test_loopback_writes_hosts_and_brings_lo_up(namespaces, host, tmp_path):
    net = NetworkIsolation()
    net.drop()
    net.configure_loopback(str(tmp_path))
    assert (tmp_path / "etc" / "hosts").read_text() == config.get("hosts_file")
    assert host.commands == [["ip", "link", "set", "lo", "up"]]


def test_loopback_command_failure(namespaces, host, tmp_path, monkeypatch):
    monkeypatch.setitem(config._config, "loopback_commands", [["ip", "link", "set", "lo0", "up"]])
    host.fail = lambda cmd: cmd[0] == "ip"
    net = NetworkIsolation()
    net.drop()
    with pytest.raises(NetworkConfigError):
        net.configure_loopback(str(tmp_path))
