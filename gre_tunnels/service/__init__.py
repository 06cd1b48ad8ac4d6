"""systemd integration and the service entry points."""

from .control import start, stop, restart, enable, disable, is_active, systemctl, set_node_and_start
from .units import install_units, remove_units, units_installed
