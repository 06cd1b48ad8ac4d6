"""systemd unit files for the tunnel and port forward services."""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..config import PORT_FORWARD_SERVICE_NAME, SERVICE_NAME, Settings
from ..utils import run_silent

logger = logging.getLogger(__name__)


def tunnel_unit_path(settings: Settings) -> Path:
    return Path(settings.systemd_dir) / f"{SERVICE_NAME}@.service"


def port_forward_unit_path(settings: Settings) -> Path:
    return Path(settings.systemd_dir) / f"{PORT_FORWARD_SERVICE_NAME}.service"


def render_tunnel_unit(command: str) -> str:
    """Template unit; the instance name is the node identity."""
    return f"""[Unit]
Description=GRE Tunnels for node %i
# Generated: {datetime.now()}
After=network-online.target
Wants=network-online.target

[Service]
Type=oneshot
RemainAfterExit=yes
ExecStart={command} setup %i
ExecReload={command} setup %i
ExecStop={command} teardown %i

[Install]
WantedBy=multi-user.target
"""


def render_port_forward_unit(command: str) -> str:
    return f"""[Unit]
Description=GRE Tunnels port forwarding
# Generated: {datetime.now()}
After=network-online.target
Wants=network-online.target

[Service]
Type=oneshot
RemainAfterExit=yes
ExecStart={command} apply-portfw

[Install]
WantedBy=multi-user.target
"""


def _daemon_reload() -> None:
    ok, output = run_silent(["systemctl", "daemon-reload"])
    if not ok:
        logger.warning(f"systemctl daemon-reload failed: {output}")


def install_units(settings: Optional[Settings] = None) -> List[Path]:
    """
    Write both unit files and reload systemd.

    Args:
        settings: Settings providing the systemd directory and command path

    Returns:
        Paths of the written unit files
    """
    settings = settings or Settings()
    Path(settings.systemd_dir).mkdir(parents=True, exist_ok=True)

    written = []
    for path, content in (
        (tunnel_unit_path(settings), render_tunnel_unit(settings.command_path)),
        (port_forward_unit_path(settings), render_port_forward_unit(settings.command_path)),
    ):
        path.write_text(content)
        written.append(path)
        logger.info(f"Wrote {path}")

    _daemon_reload()
    return written


def remove_units(settings: Optional[Settings] = None) -> List[Path]:
    """Delete both unit files if present and reload systemd."""
    settings = settings or Settings()
    removed = []
    for path in (tunnel_unit_path(settings), port_forward_unit_path(settings)):
        if path.exists():
            path.unlink()
            removed.append(path)
            logger.info(f"Removed {path}")

    _daemon_reload()
    return removed


def units_installed(settings: Optional[Settings] = None) -> bool:
    settings = settings or Settings()
    return tunnel_unit_path(settings).exists()
