"""Topology data models: nodes, link declarations and tunnel instances."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class NodeClass(Enum):
    """The two endpoint classes of every link."""

    IRAN = "irans"
    EXTERNAL = "externals"

    @property
    def section(self) -> str:
        return self.value


class Role(Enum):
    """Role a host plays in one link."""

    IRAN = "iran"
    EXTERNAL = "external"
    NONE = "none"

    @property
    def is_participant(self) -> bool:
        return self is not Role.NONE


@dataclass(frozen=True)
class Node:
    """A server declared in [irans] or [externals]."""

    name: str
    public_address: str
    node_class: NodeClass


@dataclass(frozen=True)
class LinkDeclaration:
    """One `iran,external` line from the [tunnels] section."""

    iran_name: str
    external_name: str

    def __str__(self) -> str:
        return f"{self.iran_name},{self.external_name}"

    @property
    def is_self_loop(self) -> bool:
        return self.iran_name == self.external_name


@dataclass(frozen=True)
class LinkIdentity:
    """A link declaration with its 1-based positional id."""

    id: int
    link: LinkDeclaration


@dataclass
class Topology:
    """Parsed topology: three ordered collections."""

    irans: List[Node] = field(default_factory=list)
    externals: List[Node] = field(default_factory=list)
    links: List[LinkDeclaration] = field(default_factory=list)

    def nodes(self, node_class: NodeClass) -> List[Node]:
        if node_class is NodeClass.IRAN:
            return self.irans
        return self.externals

    def find_node(self, node_class: NodeClass, name: str) -> Optional[Node]:
        for node in self.nodes(node_class):
            if node.name == name:
                return node
        return None

    def resolve_address(self, name: str) -> Optional[str]:
        """
        Look up a node's public address.

        Irans are searched before externals; the first match wins.

        Args:
            name: Node name

        Returns:
            Public IPv4 address, or None if the name is unknown
        """
        for node_class in (NodeClass.IRAN, NodeClass.EXTERNAL):
            node = self.find_node(node_class, name)
            if node is not None:
                return node.public_address
        return None


@dataclass(frozen=True)
class TunnelInstance:
    """Host-local realization of a link."""

    link_id: int
    interface_name: str
    role: Role
    local_address: str
    remote_address: str
    local_public_ip: str
    remote_public_ip: str
    link: LinkDeclaration

    @property
    def local_cidr(self) -> str:
        return f"{self.local_address}/30"

    @property
    def remote_host_route(self) -> str:
        return f"{self.remote_address}/32"
