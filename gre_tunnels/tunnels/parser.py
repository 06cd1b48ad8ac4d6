"""Topology file parsing.

The topology file is sectioned text::

    [irans]
    iran1=1.2.3.4
    [externals]
    germany1=9.10.11.12
    [tunnels]
    iran1,germany1

Parsing walks the lines once, tracking the current section and handing each
line to that section's handler. Unknown sections are skipped so newer files
still load.
"""

import logging
import re
from pathlib import Path
from typing import Callable, Dict, Optional, Set, Tuple

from ..exceptions import MalformedTopology
from ..models import LinkDeclaration, Node, NodeClass, Topology
from ..utils import validate_ipv4

logger = logging.getLogger(__name__)

SECTION_RE = re.compile(r"^\[([^\[\]]+)\]$")

IRANS = "irans"
EXTERNALS = "externals"
TUNNELS = "tunnels"


def strip_comment(line: str) -> str:
    """Drop everything after '#' and trim whitespace."""
    return line.split("#", 1)[0].strip()


def parse_node_line(line: str) -> Optional[Tuple[str, str]]:
    """Parse `name=value`, returning None if either side is empty."""
    if "=" not in line:
        return None
    name, value = line.split("=", 1)
    name, value = name.strip(), value.strip()
    if not name or not value:
        return None
    return name, value


def parse_link_line(line: str) -> Optional[LinkDeclaration]:
    """Parse `iranName,externalName`, split on the first comma."""
    if "," not in line:
        return None
    iran, external = line.split(",", 1)
    iran, external = iran.strip(), external.strip()
    if not iran or not external:
        return None
    return LinkDeclaration(iran_name=iran, external_name=external)


class _TopologyBuilder:
    """Line state machine that accumulates a Topology."""

    def __init__(self, source: str):
        self.source = source
        self.topology = Topology()
        self.section: Optional[str] = None
        self._names: Dict[NodeClass, Set[str]] = {NodeClass.IRAN: set(), NodeClass.EXTERNAL: set()}
        self._links: Set[LinkDeclaration] = set()
        self._handlers: Dict[str, Callable[[int, str], None]] = {
            IRANS: lambda n, line: self._node(n, line, NodeClass.IRAN),
            EXTERNALS: lambda n, line: self._node(n, line, NodeClass.EXTERNAL),
            TUNNELS: self._link,
        }

    def feed(self, lineno: int, raw: str) -> None:
        line = strip_comment(raw)
        if not line:
            return

        header = SECTION_RE.match(line)
        if header:
            self.section = header.group(1).strip()
            return

        handler = self._handlers.get(self.section)
        if handler is not None:
            handler(lineno, line)

    def _node(self, lineno: int, line: str, node_class: NodeClass) -> None:
        parsed = parse_node_line(line)
        if parsed is None:
            return
        name, address = parsed

        if not validate_ipv4(address):
            logger.warning(
                f"{self.source}:{lineno}: skipping {node_class.section} node "
                f"'{name}': invalid IPv4 address '{address}'"
            )
            return

        if name in self._names[node_class]:
            raise MalformedTopology(
                f"{self.source}:{lineno}: duplicate {node_class.section} node '{name}'"
            )

        self._names[node_class].add(name)
        self.nodes(node_class).append(Node(name, address, node_class))

    def _link(self, lineno: int, line: str) -> None:
        link = parse_link_line(line)
        if link is None:
            return

        if link in self._links:
            raise MalformedTopology(f"{self.source}:{lineno}: duplicate tunnel '{link}'")
        if link.is_self_loop:
            logger.warning(
                f"{self.source}:{lineno}: tunnel '{link}' uses the same name on both sides; "
                f"a host with that name takes the iran side"
            )

        self._links.add(link)
        self.topology.links.append(link)

    def nodes(self, node_class: NodeClass):
        return self.topology.nodes(node_class)


def parse_topology(text: str, source: str = "<topology>") -> Topology:
    """
    Parse topology text into irans, externals and link declarations.

    Args:
        text: Raw topology description
        source: Name used in log and error messages

    Returns:
        Parsed Topology

    Raises:
        MalformedTopology: On duplicate links or duplicate node names
    """
    builder = _TopologyBuilder(source)
    for lineno, raw in enumerate(text.splitlines(), start=1):
        builder.feed(lineno, raw)
    return builder.topology


def load_topology(path) -> Topology:
    """
    Read and parse a topology file.

    Raises:
        MalformedTopology: If the file is missing, unreadable or invalid
    """
    path = Path(path)
    try:
        text = path.read_text()
    except (OSError, UnicodeDecodeError) as e:
        raise MalformedTopology(f"Cannot read topology file {path}: {e}") from e
    return parse_topology(text, source=str(path))
