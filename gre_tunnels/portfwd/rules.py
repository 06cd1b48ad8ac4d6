"""Port forward rule file management.

One rule per line: `listen_ip listen_port dest_ip dest_port`. Blank lines
and lines starting with '#' are ignored. Rules are numbered from 1 in file
order for display and for edit/delete references.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from ..models import PortForwardRule, SkippedEntry
from ..utils import atomic_write, validate_ipv4, validate_port

logger = logging.getLogger(__name__)


def _is_entry(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and not stripped.startswith("#")


def parse_rule(line: str) -> PortForwardRule:
    """
    Parse one rule line.

    Raises:
        ValueError: On missing fields, bad IPv4 or out-of-range ports
    """
    fields = line.split()
    if len(fields) < 4:
        raise ValueError("expected 'listen_ip listen_port dest_ip dest_port'")

    listen_ip, listen_port, dest_ip, dest_port = fields[:4]
    for ip in (listen_ip, dest_ip):
        if not validate_ipv4(ip):
            raise ValueError(f"invalid IPv4 address '{ip}'")
    for port in (listen_port, dest_port):
        if not port.isdigit() or not validate_port(int(port)):
            raise ValueError(f"invalid port '{port}'")

    return PortForwardRule(listen_ip, int(listen_port), dest_ip, int(dest_port))


def parse_rules(text: str) -> Tuple[List[PortForwardRule], List[SkippedEntry]]:
    """
    Parse rule file text.

    Returns:
        (valid rules, skipped entries) - entries are numbered by position
        among non-comment lines
    """
    rules = []
    skipped = []
    number = 0

    for line in text.splitlines():
        if not _is_entry(line):
            continue
        number += 1
        try:
            rules.append(parse_rule(line))
        except ValueError as e:
            logger.warning(f"Skipping port forward {number} '{line.strip()}': {e}")
            skipped.append(SkippedEntry("rule", f"#{number} '{line.strip()}'", str(e)))

    return rules, skipped


def load_rules(path: Path) -> Tuple[List[PortForwardRule], List[SkippedEntry]]:
    """Load rules from file; a missing file means no rules."""
    path = Path(path)
    if not path.exists():
        return [], []
    return parse_rules(path.read_text())


def _entry_line_index(lines: List[str], number: int) -> Optional[int]:
    count = 0
    for i, line in enumerate(lines):
        if _is_entry(line):
            count += 1
            if count == number:
                return i
    return None


def add_rule(path: Path, rule: PortForwardRule) -> None:
    """Append a rule to the file."""
    path = Path(path)
    content = path.read_text() if path.exists() else ""
    if content and not content.endswith("\n"):
        content += "\n"
    atomic_write(path, content + rule.to_line() + "\n")
    logger.info(f"Added port forward: {rule}")


def delete_rule(path: Path, number: int) -> str:
    """
    Delete the Nth rule.

    Returns:
        The removed line

    Raises:
        ValueError: If there is no such entry
    """
    path = Path(path)
    lines = path.read_text().splitlines() if path.exists() else []
    index = _entry_line_index(lines, number)
    if index is None:
        raise ValueError(f"Entry {number} not found")

    removed = lines.pop(index)
    atomic_write(path, "\n".join(lines) + "\n" if lines else "")
    logger.info(f"Removed port forward {number}: {removed.strip()}")
    return removed


def edit_rule(
    path: Path,
    number: int,
    listen_address: Optional[str] = None,
    listen_port: Optional[int] = None,
    dest_address: Optional[str] = None,
    dest_port: Optional[int] = None,
) -> PortForwardRule:
    """
    Replace fields of the Nth rule; unset fields keep their value.

    Raises:
        ValueError: If there is no such entry or the result is invalid
    """
    path = Path(path)
    lines = path.read_text().splitlines() if path.exists() else []
    index = _entry_line_index(lines, number)
    if index is None:
        raise ValueError(f"Entry {number} not found")

    fields = lines[index].split() + ["", "", "", ""]
    updated = " ".join([
        listen_address or fields[0] or "0.0.0.0",
        str(listen_port) if listen_port is not None else fields[1],
        dest_address or fields[2],
        str(dest_port) if dest_port is not None else fields[3],
    ])
    rule = parse_rule(updated)

    lines[index] = rule.to_line()
    atomic_write(path, "\n".join(lines) + "\n")
    logger.info(f"Updated port forward {number}: {rule}")
    return rule
