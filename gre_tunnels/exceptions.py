"""Error taxonomy for the reconciliation engine and port-forward backends."""

from typing import Optional


class GreTunnelError(Exception):
    """Base class for all gre-tunnels errors."""


class MalformedTopology(GreTunnelError):
    """Topology description is unreadable or structurally invalid.

    Fatal: the whole reconcile is aborted before any kernel state changes.
    """


class UnresolvedEndpoint(GreTunnelError):
    """A link references a node name with no known public address."""

    def __init__(self, link_id: int, name: str, iran_name: str, external_name: str):
        self.link_id = link_id
        self.name = name
        self.iran_name = iran_name
        self.external_name = external_name
        super().__init__(
            f"tunnel {link_id} ({iran_name},{external_name}): "
            f"no address for node '{name}'"
        )


class KernelProgrammingFailure(GreTunnelError):
    """An interface, address, route or firewall command failed."""

    def __init__(self, command: list, stderr: Optional[str] = None):
        self.command = list(command)
        self.stderr = (stderr or "").strip()
        message = f"command failed: {' '.join(self.command)}"
        if self.stderr:
            message += f" ({self.stderr})"
        super().__init__(message)


class BackendUnavailable(GreTunnelError):
    """The selected port-forward backend's tooling is not installed."""

    def __init__(self, backend: str, tool: str):
        self.backend = backend
        self.tool = tool
        super().__init__(f"{backend} backend unavailable: '{tool}' not found")


class NotConfigured(GreTunnelError):
    """An operation was requested before its prerequisite state exists."""
