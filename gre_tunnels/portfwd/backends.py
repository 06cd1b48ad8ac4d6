"""Port forward enforcement backends.

Two interchangeable backends enforce the same rule list:

- NatRulesBackend ("iptables"): DNAT/MASQUERADE/ACCEPT rules in dedicated
  chains. Re-applying flushes and rebuilds only those chains.
- ProxyDaemonBackend ("rinetd"): a generated rinetd.conf and a restart of
  the daemon.

At most one backend's state exists at a time. `apply()` tears down every
other backend before enforcing its own rules.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Tuple

from ..config import Settings
from ..exceptions import BackendUnavailable, KernelProgrammingFailure
from ..models import Outcome, PortForwardResult, PortForwardRule, SkippedEntry
from ..service.control import systemctl
from ..utils import atomic_write, command_exists, enable_ip_forwarding, run_silent
from .iptables_cmd import iptables, iptables_available, iptables_check
from .method import IPTABLES, RINETD

logger = logging.getLogger(__name__)

NAT_CHAIN = "GRE_FWD"
MASQ_CHAIN = "GRE_FWD_MASQ"
FORWARD_CHAIN = "GRE_FWD_FWD"

# (table, chain, global entry points that jump into it)
MANAGED_CHAINS = (
    ("nat", NAT_CHAIN, ("PREROUTING", "OUTPUT")),
    ("nat", MASQ_CHAIN, ("POSTROUTING",)),
    ("filter", FORWARD_CHAIN, ("FORWARD",)),
)

PROXY_SERVICE = "rinetd"


class PortForwardBackend(ABC):
    """A mechanism that enforces a list of port forward rules."""

    name = ""
    tool = ""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    def is_available(self) -> bool:
        return command_exists(self.tool)

    @abstractmethod
    def teardown(self) -> None:
        """Remove all state this backend enforces. Safe to call when absent."""

    @abstractmethod
    def _enforce(self, rules: List[PortForwardRule]) -> Tuple[List[PortForwardRule], List[SkippedEntry]]:
        """Install rules; return (applied, skipped)."""

    def others(self) -> List["PortForwardBackend"]:
        return [cls(self.settings) for key, cls in BACKENDS.items() if key != self.name]

    def apply(self, rules: List[PortForwardRule]) -> PortForwardResult:
        """
        Tear down the other backends, then enforce `rules` with this one.

        Args:
            rules: Ordered port forward rules

        Returns:
            PortForwardResult: UNAVAILABLE if the tool is missing, FAILED if
            the backend itself could not be set up, APPLIED otherwise (with
            per-rule failures listed in `skipped`)
        """
        result = PortForwardResult(outcome=Outcome.FAILED, backend=self.name)

        if not self.is_available():
            error = BackendUnavailable(self.name, self.tool)
            logger.error(str(error))
            result.outcome = Outcome.UNAVAILABLE
            result.message = str(error)
            return result

        for other in self.others():
            other.teardown()

        try:
            applied, skipped = self._enforce(rules)
        except KernelProgrammingFailure as e:
            logger.error(f"Port forwards not applied ({self.name}): {e}")
            result.message = str(e)
            return result

        result.applied = applied
        result.skipped = skipped
        result.outcome = Outcome.APPLIED
        result.message = f"Port forwards applied ({self.name}): {len(applied)} rule(s)"
        if skipped:
            result.message += f", {len(skipped)} skipped"
        return result


def _rule_reference(number: int, rule: PortForwardRule) -> str:
    return f"#{number} '{rule.to_line()}'"


class NatRulesBackend(PortForwardBackend):
    """Kernel NAT port forwarding in dedicated iptables chains."""

    name = IPTABLES
    tool = "iptables"

    def is_available(self) -> bool:
        return iptables_available()

    def _timeout(self) -> int:
        return self.settings.command_timeout

    def _ensure_chains(self) -> None:
        for table, chain, _ in MANAGED_CHAINS:
            if not iptables_check(["-t", table, "-L", chain, "-n"], timeout=self._timeout()):
                iptables(["-t", table, "-N", chain], timeout=self._timeout())
            iptables(["-t", table, "-F", chain], timeout=self._timeout())

    def _ensure_jumps(self) -> None:
        for table, chain, parents in MANAGED_CHAINS:
            for parent in parents:
                if not iptables_check(["-t", table, "-C", parent, "-j", chain], timeout=self._timeout()):
                    iptables(["-t", table, "-A", parent, "-j", chain], timeout=self._timeout())

    @staticmethod
    def rule_specs(rule: PortForwardRule) -> List[List[str]]:
        """iptables append arguments for one rule, in install order."""
        dnat = ["-t", "nat", "-A", NAT_CHAIN, "-p", "tcp"]
        if rule.listen_address != "0.0.0.0":
            dnat += ["-d", rule.listen_address]
        dnat += ["--dport", str(rule.listen_port), "-j", "DNAT", "--to-destination", rule.destination]

        return [
            dnat,
            ["-t", "nat", "-A", MASQ_CHAIN, "-p", "tcp", "-d", rule.dest_address,
             "--dport", str(rule.dest_port), "-j", "MASQUERADE"],
            ["-t", "filter", "-A", FORWARD_CHAIN, "-p", "tcp", "-d", rule.dest_address,
             "--dport", str(rule.dest_port), "-j", "ACCEPT"],
            ["-t", "filter", "-A", FORWARD_CHAIN, "-p", "tcp", "-s", rule.dest_address,
             "-j", "ACCEPT"],
        ]

    def _install_rule(self, rule: PortForwardRule) -> None:
        installed = []
        try:
            for spec in self.rule_specs(rule):
                iptables(spec, timeout=self._timeout())
                installed.append(spec)
        except KernelProgrammingFailure:
            for spec in installed:
                delete = list(spec)
                delete[delete.index("-A")] = "-D"
                iptables_check(delete, timeout=self._timeout())
            raise

    def _enforce(self, rules):
        enable_ip_forwarding(Path(self.settings.sysctl_conf))
        self._ensure_chains()

        applied, skipped = [], []
        for number, rule in enumerate(rules, start=1):
            try:
                self._install_rule(rule)
            except KernelProgrammingFailure as e:
                logger.error(f"Port forward {_rule_reference(number, rule)} failed: {e}")
                skipped.append(SkippedEntry("rule", _rule_reference(number, rule), str(e)))
                continue
            applied.append(rule)
            logger.info(f"Port forward {number}: {rule}")

        self._ensure_jumps()
        self.persist()
        return applied, skipped

    def teardown(self) -> None:
        if not self.is_available():
            return
        timeout = self._timeout()
        for table, chain, parents in MANAGED_CHAINS:
            for parent in parents:
                while iptables_check(["-t", table, "-D", parent, "-j", chain], timeout=timeout):
                    pass
            iptables_check(["-t", table, "-F", chain], timeout=timeout)
            iptables_check(["-t", table, "-X", chain], timeout=timeout)
        logger.info("Removed iptables port forward chains")
        self.persist()

    def persist(self) -> None:
        """Save the live ruleset so it survives a reboot."""
        rules_file = Path(self.settings.iptables_rules_file)

        if command_exists("iptables-save") and rules_file.parent.is_dir():
            ok, output = run_silent(["iptables-save"], timeout=self._timeout())
            if ok:
                atomic_write(rules_file, output)
            else:
                logger.warning(f"iptables-save failed: {output}")

        if command_exists("netfilter-persistent"):
            ok, output = run_silent(["netfilter-persistent", "save"], timeout=self._timeout())
            if not ok:
                logger.warning(f"netfilter-persistent save failed: {output}")


class ProxyDaemonBackend(PortForwardBackend):
    """User-space forwarding through rinetd."""

    name = RINETD
    tool = "rinetd"

    @property
    def conf_path(self) -> Path:
        return Path(self.settings.rinetd_conf)

    @staticmethod
    def render_config(rules: List[PortForwardRule]) -> str:
        """rinetd format: bindaddress bindport connectaddress connectport."""
        return "".join(f"{rule.to_line()}\n" for rule in rules)

    def _enforce(self, rules):
        systemctl("stop", PROXY_SERVICE, check=False)
        atomic_write(self.conf_path, self.render_config(rules))

        if not systemctl("start", PROXY_SERVICE):
            raise KernelProgrammingFailure(["systemctl", "start", PROXY_SERVICE])
        systemctl("enable", PROXY_SERVICE, check=False)

        for number, rule in enumerate(rules, start=1):
            logger.info(f"Port forward {number}: {rule}")
        return list(rules), []

    def teardown(self) -> None:
        systemctl("stop", PROXY_SERVICE, check=False)
        systemctl("disable", PROXY_SERVICE, check=False)
        if self.conf_path.exists():
            atomic_write(self.conf_path, "")
            logger.info(f"Cleared {self.conf_path}")


BACKENDS = {
    IPTABLES: NatRulesBackend,
    RINETD: ProxyDaemonBackend,
}


def get_backend(method: str, settings: Optional[Settings] = None) -> PortForwardBackend:
    """
    Instantiate the backend for a persisted method name.

    Raises:
        ValueError: For an unknown method
    """
    try:
        return BACKENDS[method](settings)
    except KeyError:
        raise ValueError(f"Unknown port forward method '{method}'") from None
