"""Data models package."""

from .topology import NodeClass, Node, LinkDeclaration, LinkIdentity, Topology, Role, TunnelInstance
from .port_forward import PortForwardRule
from .result import Outcome, SkippedEntry, ReconcileResult, PortForwardResult

__all__ = [
    'NodeClass', 'Node', 'LinkDeclaration', 'LinkIdentity', 'Topology', 'Role',
    'TunnelInstance', 'PortForwardRule', 'Outcome', 'SkippedEntry',
    'ReconcileResult', 'PortForwardResult',
]
