"""
Unit tests for shared helpers.
"""

import logging
import subprocess

import pytest

from gre_tunnels.exceptions import KernelProgrammingFailure
from gre_tunnels.portfwd.iptables_cmd import iptables, iptables_command
from gre_tunnels.tunnels.iproute import IpRoute
from gre_tunnels.utils import (
    atomic_write, enable_ip_forwarding, load_gre_module, run, run_silent, setup_logging,
    validate_ipv4, validate_port,
)


class TestValidation:
    """Tests for address and port validation."""

    @pytest.mark.parametrize("ip, valid", [
        ("10.10.1.1", True),
        ("0.0.0.0", True),
        ("256.1.1.1", False),
        ("10.10.1", False),
        ("::1", False),
        ("", False),
    ])
    def test_ipv4(self, ip, valid):
        assert validate_ipv4(ip) is valid

    @pytest.mark.parametrize("port, valid", [(1, True), (65535, True), (0, False), (65536, False)])
    def test_port(self, port, valid):
        assert validate_port(port) is valid


def test_atomic_write(tmp_path):
    path = tmp_path / "sub" / "file.conf"

    atomic_write(path, "one\n")
    atomic_write(path, "two\n")

    assert path.read_text() == "two\n"
    assert not (tmp_path / "sub" / "file.conf.tmp").exists()


def test_enable_ip_forwarding_persists_once(host, tmp_path):
    conf = tmp_path / "sysctl.conf"

    enable_ip_forwarding(conf)
    enable_ip_forwarding(conf)

    assert conf.read_text() == "net.ipv4.ip_forward=1\n"


def test_enable_ip_forwarding_without_sysctl(host, tmp_path, caplog):
    host.tools.discard("sysctl")
    conf = tmp_path / "sysctl.conf"

    enable_ip_forwarding(conf)

    assert conf.read_text() == "net.ipv4.ip_forward=1\n"
    assert "Could not enable IP forwarding" in caplog.text


def test_load_gre_module_without_modprobe(host, caplog):
    host.tools.discard("modprobe")

    assert load_gre_module() is False
    assert "Failed to load ip_gre module" in caplog.text


class TestRunSilent:
    """Tests for the non-raising command wrapper."""

    def test_success(self, host):
        host.add_interface("gre1")

        assert run_silent(["ip", "link", "show", "gre1"]) == (True, "gre1: <UP>\n")

    def test_failure_returns_stderr(self, host):
        host.fail_when("ip", "link")

        assert run_silent(["ip", "link", "show", "gre1"]) == (False, "ip: simulated failure")

    def test_missing_binary(self, host):
        ok, output = run_silent(["wg", "show"])

        assert not ok
        assert "No such file" in output


def test_run_raises_on_failure(host):
    host.fail_when("ip", "link")

    with pytest.raises(subprocess.CalledProcessError):
        run(["ip", "link", "show", "gre1"])
    assert run(["ip", "link", "show", "gre1"], check=False).returncode == 2


def test_kernel_failure_carries_command(host):
    host.fail_when("ip", "tunnel", "add")

    with pytest.raises(KernelProgrammingFailure) as exc:
        IpRoute().add_gre_tunnel("gre1", "1.1.1.1", "2.2.2.2")

    assert exc.value.command[:3] == ["ip", "tunnel", "add"]
    assert "simulated failure" in exc.value.stderr


def test_missing_binary_is_kernel_failure(host):
    host.tools.discard("ip")

    with pytest.raises(KernelProgrammingFailure):
        IpRoute().set_up("gre1")


class TestIptablesCommand:
    """Tests for iptables binary resolution."""

    def test_prefers_iptables(self, host):
        assert iptables_command() == "/usr/sbin/iptables"

    def test_falls_back_to_nft(self, host):
        host.tools.discard("iptables")
        host.tools.add("iptables-nft")

        assert iptables_command() == "/usr/sbin/iptables-nft"

    def test_env_override(self, host, monkeypatch):
        host.tools.add("iptables-legacy")
        monkeypatch.setenv("GRE_TUNNELS_IPTABLES_BIN", "iptables-legacy")

        assert iptables_command() == "/usr/sbin/iptables-legacy"

    def test_none_installed(self, host):
        host.tools.discard("iptables")

        assert iptables_command() == ""
        with pytest.raises(KernelProgrammingFailure):
            iptables(["-L"])


def test_setup_logging_falls_back_to_stderr(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")

    setup_logging(logging.INFO, str(blocker / "gre.log"))

    root = logging.getLogger()
    assert not any(isinstance(h, logging.FileHandler) for h in root.handlers)
