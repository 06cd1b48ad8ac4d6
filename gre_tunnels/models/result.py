"""Result models returned by the service entry points."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .port_forward import PortForwardRule
from .topology import TunnelInstance


class Outcome(Enum):
    APPLIED = "applied"
    NOTHING_TO_DO = "nothing_to_do"
    NOT_CONFIGURED = "not_configured"
    UNAVAILABLE = "unavailable"
    FAILED = "failed"


# Outcomes that count as success for the service boundary.
SUCCESS_OUTCOMES = (Outcome.APPLIED, Outcome.NOTHING_TO_DO, Outcome.NOT_CONFIGURED)


@dataclass
class SkippedEntry:
    """A link or rule that was skipped, with enough detail to find it."""

    kind: str  # 'link' or 'rule'
    reference: str
    reason: str

    def __str__(self) -> str:
        return f"{self.kind} {self.reference}: {self.reason}"


@dataclass
class _Result:
    outcome: Outcome
    skipped: List[SkippedEntry] = field(default_factory=list)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome in SUCCESS_OUTCOMES

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


@dataclass
class ReconcileResult(_Result):
    """Outcome of setup/teardown for one node."""

    node: Optional[str] = None
    applied: List[TunnelInstance] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)


@dataclass
class PortForwardResult(_Result):
    """Outcome of applying port forwards."""

    backend: Optional[str] = None
    applied: List[PortForwardRule] = field(default_factory=list)
