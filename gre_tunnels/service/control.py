"""systemd control for the per-node tunnel service and helper daemons."""

import logging
import subprocess

from ..config import SERVICE_NAME, Settings, save_node
from ..utils import run, run_silent

logger = logging.getLogger(__name__)


def unit_for(node: str) -> str:
    """Instance unit name for a node, e.g. gre-tunnels@iran1."""
    return f"{SERVICE_NAME}@{node}"


def systemctl(action: str, unit: str, check: bool = True) -> bool:
    """
    Run `systemctl <action> <unit>`, falling back to `service`.

    Args:
        action: start, stop, restart, enable, disable, ...
        unit: Unit name
        check: Log failures at error level instead of debug

    Returns:
        True if successful
    """
    try:
        result = run(["systemctl", action, unit], check=False)
        if result.returncode == 0:
            return True
        detail = (result.stderr or "").strip()
    except (OSError, subprocess.SubprocessError) as e:
        detail = str(e)

    if action in ("start", "stop", "restart"):
        try:
            fallback = run(["service", unit, action], check=False)
            if fallback.returncode == 0:
                return True
        except (OSError, subprocess.SubprocessError) as e:
            detail = f"{detail}; service: {e}"

    log = logger.error if check else logger.debug
    log(f"Failed to {action} {unit}: {detail}")
    return False


def is_active(node: str) -> bool:
    """Check if the tunnel service for a node is active."""
    ok, _ = run_silent(["systemctl", "is-active", "--quiet", unit_for(node)])
    return ok


def start(node: str) -> bool:
    """Start the tunnel service for a node."""
    ok = systemctl("start", unit_for(node))
    if ok:
        logger.info(f"Service started for node: {node}")
    return ok


def stop(node: str) -> bool:
    """Stop the tunnel service for a node."""
    ok = systemctl("stop", unit_for(node), check=False)
    if ok:
        logger.info(f"Service stopped for node: {node}")
    return ok


def restart(node: str) -> bool:
    """Restart the tunnel service for a node."""
    ok = systemctl("restart", unit_for(node))
    if ok:
        logger.info(f"Service restarted for node: {node}")
    return ok


def enable(node: str) -> bool:
    """Enable the tunnel service for a node at boot."""
    ok = systemctl("enable", unit_for(node))
    if ok:
        logger.info(f"Service enabled for node: {node}")
    return ok


def disable(node: str) -> bool:
    """Disable the tunnel service for a node at boot."""
    return systemctl("disable", unit_for(node), check=False)


def status_text(node: str) -> str:
    """Return `systemctl status` output for the node's service."""
    _, output = run_silent(["systemctl", "status", unit_for(node), "--no-pager"])
    return output


def set_node_and_start(settings: Settings, node: str, previous: str = None) -> bool:
    """
    Switch this host to `node`: persist it, then enable and restart its service.

    Args:
        settings: Settings holding the node file path
        node: New node identity
        previous: Node whose service should be stopped first, if any

    Returns:
        True if the service was restarted
    """
    if previous and previous != node:
        stop(previous)
        disable(previous)

    save_node(settings, node)
    enable(node)
    return restart(node)
