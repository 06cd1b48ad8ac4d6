"""Link ids and the 10.10.<id>.0/30 address scheme."""

import ipaddress
from typing import Iterable, List

from ..models import LinkDeclaration, LinkIdentity, Role

ADDRESS_PREFIX = "10.10"
PREFIX_LEN = 30
MAX_LINK_ID = 255
INTERFACE_PREFIX = "gre"


def assign_link_ids(links: Iterable[LinkDeclaration]) -> List[LinkIdentity]:
    """
    Number link declarations 1, 2, 3, ... in declaration order.

    Ids depend only on position in the current topology, so every host
    derives the same id for the same link.

    Args:
        links: Link declarations in file order

    Returns:
        List of LinkIdentity
    """
    return [LinkIdentity(id=i, link=link) for i, link in enumerate(links, start=1)]


def _check_id(link_id: int) -> None:
    if not 1 <= link_id <= MAX_LINK_ID:
        raise ValueError(f"tunnel id {link_id} outside 1-{MAX_LINK_ID}, no /30 block available")


def block_network(link_id: int) -> ipaddress.IPv4Network:
    """The /30 block reserved for a link."""
    _check_id(link_id)
    return ipaddress.IPv4Network(f"{ADDRESS_PREFIX}.{link_id}.0/{PREFIX_LEN}")


def iran_side(link_id: int) -> str:
    _check_id(link_id)
    return f"{ADDRESS_PREFIX}.{link_id}.1"


def external_side(link_id: int) -> str:
    _check_id(link_id)
    return f"{ADDRESS_PREFIX}.{link_id}.2"


def endpoint_addresses(link_id: int, role: Role):
    """
    Return (local, remote) private addresses for a role.

    Raises:
        ValueError: For Role.NONE or an id outside the scheme
    """
    if role is Role.IRAN:
        return iran_side(link_id), external_side(link_id)
    if role is Role.EXTERNAL:
        return external_side(link_id), iran_side(link_id)
    raise ValueError("host does not participate in this tunnel")


def interface_name(ordinal: int) -> str:
    """Interface name for the Nth tunnel created on this host."""
    return f"{INTERFACE_PREFIX}{ordinal}"
