"""Port forwarding: rule file, backend selector and enforcement backends."""

from .method import IPTABLES, RINETD, METHODS, get_method, set_method, require_method
from .rules import parse_rule, parse_rules, load_rules, add_rule, delete_rule, edit_rule
from .backends import (
    BACKENDS, PortForwardBackend, NatRulesBackend, ProxyDaemonBackend, get_backend,
)
