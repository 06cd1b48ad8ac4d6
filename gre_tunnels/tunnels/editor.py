"""Edit the topology file in place.

Edits work on the raw lines so comments, unknown sections and ordering are
kept. Every write goes through a temporary file.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

from ..models import LinkDeclaration, NodeClass
from ..utils import atomic_write, validate_ipv4
from .parser import (
    SECTION_RE, TUNNELS, load_topology, parse_link_line, parse_node_line, strip_comment,
)

logger = logging.getLogger(__name__)

DEFAULT_TOPOLOGY = """\
#===============================================================================
# GRE Tunnel Configuration File
#===============================================================================
#
# This file defines all nodes and tunnel connections.
#
# Sections:
#   [irans]     - Iran server nodes (name=public_ip)
#   [externals] - External server nodes (name=public_ip)
#   [tunnels]   - Tunnel connections (iran_name,external_name)
#
#===============================================================================

[irans]
# Format: name=public_ip
# iran1=1.2.3.4

[externals]
# Format: name=public_ip
# germany1=9.10.11.12

[tunnels]
# Format: iran_name,external_name
# Each tunnel gets an id from its position (1, 2, 3...)
# Iran side gets IP: 10.10.<id>.1
# External side gets IP: 10.10.<id>.2
# iran1,germany1
"""


def create_default_topology(path: Path) -> bool:
    """
    Write the commented template topology.

    Returns:
        False if the file already exists
    """
    path = Path(path)
    if path.exists():
        logger.warning(f"Config file already exists: {path}")
        return False
    atomic_write(path, DEFAULT_TOPOLOGY)
    logger.info(f"Created default config: {path}")
    return True


def _read_lines(path: Path) -> List[str]:
    return Path(path).read_text().splitlines()


def _write_lines(path: Path, lines: List[str]) -> None:
    atomic_write(Path(path), "\n".join(lines) + "\n")


def _section_of(line: str) -> Optional[str]:
    match = SECTION_RE.match(strip_comment(line))
    return match.group(1).strip() if match else None


def _insert_after_header(lines: List[str], section: str, entry: str) -> List[str]:
    for i, line in enumerate(lines):
        if _section_of(line) == section:
            return lines[:i + 1] + [entry] + lines[i + 1:]
    return lines + [f"[{section}]", entry]


def add_node(path: Path, node_class: NodeClass, name: str, address: str) -> None:
    """
    Add a node to [irans] or [externals].

    Raises:
        ValueError: On an empty/reserved name, invalid IPv4 or duplicate
    """
    name, address = name.strip(), address.strip()
    if not name or any(ch in name for ch in "=,#[]") or any(ch.isspace() for ch in name):
        raise ValueError(f"Invalid node name: '{name}'")
    if not validate_ipv4(address):
        raise ValueError(f"Invalid IP format: {address}")

    if not Path(path).exists():
        create_default_topology(path)
    topology = load_topology(path)
    if topology.find_node(node_class, name) is not None:
        raise ValueError(f"{node_class.section} node '{name}' already exists")

    lines = _insert_after_header(_read_lines(path), node_class.section, f"{name}={address}")
    _write_lines(path, lines)
    logger.info(f"Added {node_class.section} node: {name} = {address}")


def remove_node(path: Path, node_class: NodeClass, name: str) -> int:
    """
    Remove a node and every tunnel that names it on that side.

    Returns:
        Number of lines removed
    """
    kept = []
    removed = 0
    section = None

    for line in _read_lines(path):
        header = _section_of(line)
        if header is not None:
            section = header
            kept.append(line)
            continue

        content = strip_comment(line)
        if section == node_class.section:
            parsed = parse_node_line(content)
            if parsed and parsed[0] == name:
                removed += 1
                continue
        elif section == TUNNELS:
            link = parse_link_line(content)
            side = None
            if link is not None:
                side = link.iran_name if node_class is NodeClass.IRAN else link.external_name
            if side == name:
                removed += 1
                continue
        kept.append(line)

    if removed:
        _write_lines(path, kept)
        logger.info(f"Removed {node_class.section} node '{name}' ({removed} line(s))")
    return removed


def add_link(path: Path, iran_name: str, external_name: str) -> LinkDeclaration:
    """
    Declare a tunnel between an existing iran and external node.

    New tunnels are appended to the end of [tunnels] so existing
    tunnels keep their ids.

    Raises:
        ValueError: If a node is unknown or the tunnel already exists
    """
    topology = load_topology(path)
    link = LinkDeclaration(iran_name.strip(), external_name.strip())

    if topology.find_node(NodeClass.IRAN, link.iran_name) is None:
        raise ValueError(f"Invalid Iran node: {link.iran_name}")
    if topology.find_node(NodeClass.EXTERNAL, link.external_name) is None:
        raise ValueError(f"Invalid External node: {link.external_name}")
    if link in topology.links:
        raise ValueError(f"Tunnel already exists: {link.iran_name} -> {link.external_name}")

    lines = _read_lines(path)
    insert_at = None
    section = None
    for i, line in enumerate(lines):
        header = _section_of(line)
        if header is not None:
            section = header
            if section == TUNNELS:
                insert_at = i + 1
            continue
        if section == TUNNELS and parse_link_line(strip_comment(line)) is not None:
            insert_at = i + 1

    if insert_at is None:
        lines += [f"[{TUNNELS}]", str(link)]
    else:
        lines.insert(insert_at, str(link))

    _write_lines(path, lines)
    logger.info(f"Added tunnel: {link.iran_name} -> {link.external_name}")
    return link


def remove_link(path: Path, reference: Union[int, str]) -> LinkDeclaration:
    """
    Remove a tunnel by 1-based number or exact `iran,external` text.

    Later tunnels shift down one id.

    Raises:
        ValueError: If no tunnel matches
    """
    target: Optional[LinkDeclaration] = None
    topology = load_topology(path)

    if isinstance(reference, int) or str(reference).strip().isdigit():
        index = int(reference)
        if not 1 <= index <= len(topology.links):
            raise ValueError(f"No tunnel number {index}")
        target = topology.links[index - 1]
    else:
        target = parse_link_line(str(reference))
        if target is None or target not in topology.links:
            raise ValueError(f"No tunnel '{reference}'")

    kept = []
    section = None
    for line in _read_lines(path):
        header = _section_of(line)
        if header is not None:
            section = header
        elif section == TUNNELS and parse_link_line(strip_comment(line)) == target:
            continue
        kept.append(line)

    _write_lines(path, kept)
    logger.info(f"Removed tunnel: {target}")
    return target
