"""Tunnel topology parsing and kernel reconciliation."""

from .parser import parse_topology, load_topology
from .addressing import assign_link_ids, block_network, iran_side, external_side
from .roles import resolve_role, resolve_endpoints
from .reconcile import TunnelPlan, Reconciler, plan_tunnels
from .iproute import IpRoute
