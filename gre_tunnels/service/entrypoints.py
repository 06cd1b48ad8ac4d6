"""Entry points invoked by the service manager.

The node identity is always passed in by the caller; nothing here reads the
persisted node file.
"""

import logging
from pathlib import Path
from typing import Optional

from ..config import Settings
from ..exceptions import NotConfigured
from ..models import Outcome, PortForwardResult, ReconcileResult
from ..portfwd.backends import get_backend
from ..portfwd.method import require_method
from ..portfwd.rules import load_rules
from ..tunnels.iproute import IpRoute
from ..tunnels.parser import load_topology
from ..tunnels.reconcile import Reconciler

logger = logging.getLogger(__name__)


def _reconciler(settings: Settings, strict: bool = False) -> Reconciler:
    return Reconciler(
        iproute=IpRoute(timeout=settings.command_timeout),
        strict=strict,
        sysctl_conf=Path(settings.sysctl_conf),
    )


def setup(node: str, settings: Optional[Settings] = None, strict: bool = False) -> ReconcileResult:
    """
    Reconcile the host's GRE interfaces for `node`.

    Raises:
        MalformedTopology: If the topology file is missing or invalid; no
            kernel state has been touched in that case
    """
    settings = settings or Settings()
    topology = load_topology(Path(settings.topology_file))

    logger.info(f"Setting up GRE tunnels for node: {node}")
    result = _reconciler(settings, strict=strict).reconcile(topology, node)
    log = logger.info if result.ok else logger.error
    log(result.message)
    return result


def teardown(node: str, settings: Optional[Settings] = None) -> ReconcileResult:
    """Remove every GRE interface on the host."""
    settings = settings or Settings()

    logger.info(f"Tearing down GRE tunnels for node: {node}")
    removed = _reconciler(settings).teardown()
    if removed:
        message = f"Removed {len(removed)} tunnel(s) for node: {node}"
        outcome = Outcome.APPLIED
    else:
        message = "No GRE tunnels to remove"
        outcome = Outcome.NOTHING_TO_DO

    logger.info(message)
    return ReconcileResult(outcome=outcome, node=node, removed=removed, message=message)


def apply_port_forwards(settings: Optional[Settings] = None) -> PortForwardResult:
    """
    Enforce the rule file with the selected backend.

    Returns:
        PortForwardResult: NOT_CONFIGURED when no backend has been chosen,
        otherwise the backend's result with unparseable rule lines added to
        `skipped`
    """
    settings = settings or Settings()

    try:
        method = require_method(Path(settings.port_forward_method_file))
    except NotConfigured as e:
        logger.info(str(e))
        return PortForwardResult(outcome=Outcome.NOT_CONFIGURED, message=str(e))

    rules, invalid = load_rules(Path(settings.port_forwards_file))
    result = get_backend(method, settings).apply(rules)
    result.skipped = invalid + result.skipped
    return result
