"""Configuration and paths for GRE Tunnel Manager."""

import os
import yaml
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Dict, Any, Optional

# Paths
CONFIG_DIR = Path("/etc/gre-tunnels")
SETTINGS_FILE = CONFIG_DIR / "settings.yaml"
SYSTEMD_DIR = Path("/etc/systemd/system")

# Service names
SERVICE_NAME = "gre-tunnels"
PORT_FORWARD_SERVICE_NAME = "gre-tunnels-portfw"

# Environment variable prefix for overrides (GRE_TUNNELS_LOG_FILE, ...)
ENV_PREFIX = "GRE_TUNNELS_"


@dataclass
class Settings:
    """Runtime settings; every path can be overridden from YAML or env."""

    config_dir: str = str(CONFIG_DIR)
    topology_file: str = str(CONFIG_DIR / "tunnels.conf")
    node_file: str = str(CONFIG_DIR / "node")
    port_forwards_file: str = str(CONFIG_DIR / "port-forwards.conf")
    port_forward_method_file: str = str(CONFIG_DIR / "port-forward-method")
    rinetd_conf: str = "/etc/rinetd.conf"
    iptables_rules_file: str = "/etc/iptables/rules.v4"
    sysctl_conf: str = "/etc/sysctl.conf"
    systemd_dir: str = str(SYSTEMD_DIR)
    log_file: str = "/var/log/gre-tunnels.log"
    install_dir: str = "/usr/local/bin"
    install_cmd: str = "gretunnel"
    command_timeout: int = 30

    @property
    def command_path(self) -> str:
        return os.path.join(self.install_dir, self.install_cmd)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def get_version() -> str:
    """Get application version."""
    version_file = Path(__file__).parent.parent / "VERSION"
    if version_file.exists():
        return version_file.read_text().strip()
    return "1.4.0"


def _coerce(name: str, raw: Any) -> Any:
    if name == "command_timeout":
        return int(raw)
    return str(raw)


def load_settings(
    path: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Settings:
    """
    Load settings from defaults, the YAML settings file and the environment.

    Later sources win: defaults < YAML file < GRE_TUNNELS_* variables.
    GRE_TUNNELS_CONFIG is accepted as an alias for the topology file.

    Args:
        path: YAML settings file (defaults to /etc/gre-tunnels/settings.yaml)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Settings instance
    """
    if path is None:
        path = Path(os.environ.get(f"{ENV_PREFIX}SETTINGS", str(SETTINGS_FILE)))
    if environ is None:
        environ = dict(os.environ)

    values: Dict[str, Any] = {}
    known = {f.name for f in fields(Settings)}

    if path.exists():
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        for key, value in data.items():
            if key in known and value is not None:
                values[key] = _coerce(key, value)

    if environ.get(f"{ENV_PREFIX}CONFIG"):
        values["topology_file"] = environ[f"{ENV_PREFIX}CONFIG"]
    for name in known:
        env_value = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if env_value:
            values[name] = _coerce(name, env_value)

    return Settings(**values)


def save_settings(settings: Settings, path: Optional[Path] = None) -> None:
    """Save settings to YAML file."""
    if path is None:
        path = Path(settings.config_dir) / "settings.yaml"

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        yaml.dump(settings.to_dict(), f, default_flow_style=False)


def load_node(settings: Settings) -> Optional[str]:
    """Read the persisted node identity, or None if unset."""
    node_file = Path(settings.node_file)
    if not node_file.exists():
        return None
    node = node_file.read_text().strip()
    return node or None


def save_node(settings: Settings, node: str) -> None:
    """Persist the node identity for later service invocations."""
    node_file = Path(settings.node_file)
    node_file.parent.mkdir(parents=True, exist_ok=True)
    node_file.write_text(f"{node.strip()}\n")


def clear_node(settings: Settings) -> None:
    Path(settings.node_file).unlink(missing_ok=True)
