"""
Pytest configuration and fixtures for gre-tunnels tests.

`host` replaces subprocess.run and shutil.which with an in-memory emulation
of the commands the package drives (ip, iptables, systemctl, service,
sysctl, modprobe, ping, iptables-save, netfilter-persistent), so reconcile
and backend tests run without root and without touching the real kernel.
"""

import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Set, Tuple

import pytest

# Add project root to path for imports
PROJECT_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_DIR))

from gre_tunnels.config import Settings  # noqa: E402


BUILTIN_CHAINS = {
    "nat": ("PREROUTING", "INPUT", "OUTPUT", "POSTROUTING"),
    "filter": ("INPUT", "FORWARD", "OUTPUT"),
}

DEFAULT_TOOLS = {
    "ip", "iptables", "iptables-save", "systemctl", "service",
    "sysctl", "modprobe", "ping", "rinetd",
}


class FakeHost:
    """In-memory stand-in for the host's networking and service commands."""

    def __init__(self):
        self.commands: List[List[str]] = []
        self.tools: Set[str] = set(DEFAULT_TOOLS)
        # name -> {"local", "remote", "up", "addrs", "routes"}
        self.interfaces: Dict[str, dict] = {}
        self.tables: Dict[str, Dict[str, List[Tuple[str, ...]]]] = {
            table: {chain: [] for chain in chains} for table, chains in BUILTIN_CHAINS.items()
        }
        self.services: Dict[str, Dict[str, bool]] = {}
        self.reachable: Set[str] = set()
        self._failures: List[Set[str]] = []

    # ---- test helpers -------------------------------------------------

    def fail_when(self, *tokens: str) -> None:
        """Make any command containing all `tokens` exit non-zero."""
        self._failures.append(set(tokens))

    def add_interface(self, name: str, local: str = "1.1.1.1", remote: str = "2.2.2.2") -> None:
        self.interfaces[name] = {"local": local, "remote": remote, "up": False, "addrs": [], "routes": []}

    def gre_names(self) -> List[str]:
        return sorted(self.interfaces)

    def chain(self, table: str, chain: str) -> List[Tuple[str, ...]]:
        return self.tables[table][chain]

    def has_chain(self, table: str, chain: str) -> bool:
        return chain in self.tables[table]

    def service(self, unit: str) -> Dict[str, bool]:
        return self.services.setdefault(unit, {"active": False, "enabled": False})

    def ran(self, *tokens: str) -> bool:
        wanted = set(tokens)
        return any(wanted <= set(self._tokens(cmd)) for cmd in self.commands)

    # ---- patched entry points -----------------------------------------

    def which(self, name, mode=os.F_OK | os.X_OK, path=None):
        base = os.path.basename(name)
        return f"/usr/sbin/{base}" if base in self.tools else None

    def run(self, cmd, input=None, capture_output=False, text=False, timeout=None, check=False, **kwargs):
        cmd = [str(c) for c in cmd]
        self.commands.append(cmd)
        base = os.path.basename(cmd[0])
        if base not in self.tools:
            raise FileNotFoundError(2, "No such file or directory", cmd[0])

        if any(tokens <= set(self._tokens(cmd)) for tokens in self._failures):
            rc, out, err = 2, "", f"{base}: simulated failure"
        else:
            handler = getattr(self, "_" + base.replace("-", "_"), None)
            rc, out, err = handler(cmd[1:]) if handler else (0, "", "")

        if check and rc != 0:
            raise subprocess.CalledProcessError(rc, cmd, output=out, stderr=err)
        return subprocess.CompletedProcess(cmd, rc, out, err)

    @staticmethod
    def _tokens(cmd: List[str]) -> List[str]:
        return [os.path.basename(cmd[0])] + list(cmd[1:])

    # ---- ip -----------------------------------------------------------

    def _ip(self, args):
        if args[:5] == ["-o", "link", "show", "type", "gre"]:
            lines = [
                f"{i}: {name}@NONE: <POINTOPOINT,NOARP,UP> mtu 1476 qdisc noqueue state UNKNOWN"
                for i, name in enumerate(self.gre_names(), start=4)
            ]
            return 0, "\n".join(lines) + ("\n" if lines else ""), ""

        if args[:2] == ["link", "show"]:
            ok = args[2] in self.interfaces
            return (0, f"{args[2]}: <UP>\n", "") if ok else (1, "", f'Device "{args[2]}" does not exist.')

        if args[:2] == ["tunnel", "add"]:
            name = args[2]
            if name in self.interfaces:
                return 1, "", "add tunnel \"gre0\" failed: File exists"
            opts = dict(zip(args[3::2], args[4::2]))
            self.add_interface(name, opts.get("local"), opts.get("remote"))
            return 0, "", ""

        if args[:2] == ["tunnel", "del"]:
            name = args[2]
            if name == "gre0" or name not in self.interfaces:
                return 1, "", "delete tunnel failed: Operation not permitted"
            del self.interfaces[name]
            return 0, "", ""

        if args[:2] == ["link", "set"]:
            iface = self.interfaces.get(args[2])
            if iface is None:
                return 1, "", "Cannot find device"
            iface["up"] = args[3] == "up"
            return 0, "", ""

        if args[:2] == ["addr", "add"]:
            iface = self.interfaces.get(args[4])
            if iface is None:
                return 1, "", "Cannot find device"
            iface["addrs"].append(args[2])
            return 0, "", ""

        if args[:2] == ["route", "add"]:
            dest, dev = args[2], args[4]
            if dev not in self.interfaces:
                return 1, "", "Cannot find device"
            if any(dest in i["routes"] for i in self.interfaces.values()):
                return 2, "", "RTNETLINK answers: File exists"
            self.interfaces[dev]["routes"].append(dest)
            return 0, "", ""

        return 1, "", f"unsupported ip command: {args}"

    # ---- iptables -----------------------------------------------------

    def _iptables(self, args):
        table = "filter"
        if args[:1] == ["-t"]:
            table, args = args[1], args[2:]
        chains = self.tables[table]
        op, chain, rule = args[0], args[1] if len(args) > 1 else None, tuple(args[2:])

        if op == "-N":
            if chain in chains:
                return 1, "", "iptables: Chain already exists."
            chains[chain] = []
            return 0, "", ""
        if chain not in chains:
            return 1, "", "iptables: No chain/target/match by that name."

        if op == "-L":
            return 0, "\n".join(" ".join(r) for r in chains[chain]), ""
        if op == "-F":
            chains[chain] = []
            return 0, "", ""
        if op == "-X":
            referenced = any(("-j", chain) == r[-2:] for rules in chains.values() for r in rules)
            if referenced or chains[chain]:
                return 1, "", "iptables: Directory not empty."
            del chains[chain]
            return 0, "", ""
        if op == "-C":
            return (0, "", "") if rule in chains[chain] else (1, "", "iptables: Bad rule.")
        if op == "-A":
            target = rule[rule.index("-j") + 1] if "-j" in rule else None
            if target and target.isupper() and target.startswith("GRE") and target not in chains:
                return 2, "", f"iptables: Couldn't load target `{target}'"
            chains[chain].append(rule)
            return 0, "", ""
        if op == "-D":
            if rule not in chains[chain]:
                return 1, "", "iptables: Bad rule (does a matching rule exist in that chain?)."
            chains[chain].remove(rule)
            return 0, "", ""

        return 2, "", f"unsupported iptables op {op}"

    def _iptables_save(self, args):
        lines = []
        for table, chains in self.tables.items():
            lines.append(f"*{table}")
            lines.extend(f":{chain} - [0:0]" for chain in chains)
            for chain, rules in chains.items():
                lines.extend(f"-A {chain} {' '.join(r)}" for r in rules)
            lines.append("COMMIT")
        return 0, "\n".join(lines) + "\n", ""

    # ---- services -----------------------------------------------------

    def _systemctl(self, args):
        action = args[0]
        if action == "daemon-reload":
            return 0, "", ""
        if action == "is-active":
            unit = args[-1]
            return (0, "active\n", "") if self.service(unit)["active"] else (3, "inactive\n", "")
        unit = args[1]
        state = self.service(unit)
        if action in ("start", "restart"):
            state["active"] = True
        elif action == "stop":
            state["active"] = False
        elif action == "enable":
            state["enabled"] = True
        elif action == "disable":
            state["enabled"] = False
        elif action == "status":
            return 0, f"{unit} - {'active' if state['active'] else 'inactive'}\n", ""
        return 0, "", ""

    def _service(self, args):
        return self._systemctl([args[1], args[0]])

    def _ping(self, args):
        return (0, "2 received\n", "") if args[-1] in self.reachable else (1, "0 received\n", "")


@pytest.fixture
def host(monkeypatch) -> FakeHost:
    """Fake host with subprocess.run and shutil.which redirected to it."""
    fake = FakeHost()
    monkeypatch.setattr(subprocess, "run", fake.run)
    monkeypatch.setattr(shutil, "which", fake.which)
    monkeypatch.delenv("GRE_TUNNELS_IPTABLES_BIN", raising=False)
    return fake


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with every path under a temporary directory."""
    config_dir = tmp_path / "etc" / "gre-tunnels"
    config_dir.mkdir(parents=True)
    (tmp_path / "etc" / "iptables").mkdir()
    return Settings(
        config_dir=str(config_dir),
        topology_file=str(config_dir / "tunnels.conf"),
        node_file=str(config_dir / "node"),
        port_forwards_file=str(config_dir / "port-forwards.conf"),
        port_forward_method_file=str(config_dir / "port-forward-method"),
        rinetd_conf=str(tmp_path / "etc" / "rinetd.conf"),
        iptables_rules_file=str(tmp_path / "etc" / "iptables" / "rules.v4"),
        sysctl_conf=str(tmp_path / "etc" / "sysctl.conf"),
        systemd_dir=str(tmp_path / "etc" / "systemd" / "system"),
        log_file=str(tmp_path / "gre-tunnels.log"),
    )


MESH_TOPOLOGY = """\
# test mesh
[irans]
iran1=1.1.1.1
iran2=2.2.2.2

[externals]
ext1=5.5.5.5
ext2=6.6.6.6

[tunnels]
iran1,ext1
iran2,ext1
iran1,ext2
"""


@pytest.fixture
def topology_file(settings: Settings) -> Path:
    """Topology file with two irans, two externals and three tunnels."""
    path = Path(settings.topology_file)
    path.write_text(MESH_TOPOLOGY)
    return path
