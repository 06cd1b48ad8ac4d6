"""Persisted port forward backend selector."""

from pathlib import Path
from typing import Optional

from ..exceptions import NotConfigured
from ..utils import atomic_write

IPTABLES = "iptables"
RINETD = "rinetd"
METHODS = (IPTABLES, RINETD)


def get_method(path: Path) -> Optional[str]:
    """Read the selected backend, or None when unset or unrecognized."""
    path = Path(path)
    if not path.exists():
        return None
    method = path.read_text().strip()
    return method if method in METHODS else None


def set_method(path: Path, method: str) -> None:
    """
    Persist the selected backend.

    Raises:
        ValueError: If method is not 'iptables' or 'rinetd'
    """
    if method not in METHODS:
        raise ValueError(f"Unknown port forward method '{method}' (expected {' or '.join(METHODS)})")
    atomic_write(Path(path), f"{method}\n")


def require_method(path: Path) -> str:
    """
    Return the selected backend.

    Raises:
        NotConfigured: If no backend has been chosen
    """
    method = get_method(path)
    if method is None:
        raise NotConfigured("Port forward method not set. Choose iptables or rinetd.")
    return method
