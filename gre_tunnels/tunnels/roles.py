"""Decide which side of a link the local host is on."""

from typing import Tuple

from ..exceptions import UnresolvedEndpoint
from ..models import LinkIdentity, Role, Topology


def resolve_role(node: str, identity: LinkIdentity) -> Role:
    """
    Return the role `node` plays in a link.

    Matching is exact. When a name is on both sides of the same link the
    iran side wins.
    """
    link = identity.link
    if node == link.iran_name:
        return Role.IRAN
    if node == link.external_name:
        return Role.EXTERNAL
    return Role.NONE


def resolve_endpoints(topology: Topology, role: Role, identity: LinkIdentity) -> Tuple[str, str]:
    """
    Resolve (local_public_ip, remote_public_ip) for a participant role.

    Args:
        topology: Parsed topology used for name lookup
        role: Role.IRAN or Role.EXTERNAL
        identity: The link

    Returns:
        Tuple of local and remote public addresses

    Raises:
        UnresolvedEndpoint: If either node has no known address
    """
    link = identity.link
    iran_ip = topology.resolve_address(link.iran_name)
    if iran_ip is None:
        raise UnresolvedEndpoint(identity.id, link.iran_name, link.iran_name, link.external_name)

    external_ip = topology.resolve_address(link.external_name)
    if external_ip is None:
        raise UnresolvedEndpoint(identity.id, link.external_name, link.iran_name, link.external_name)

    if role is Role.IRAN:
        return iran_ip, external_ip
    return external_ip, iran_ip
