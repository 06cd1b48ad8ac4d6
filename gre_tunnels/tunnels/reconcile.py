"""Bring the host's GRE interfaces in line with the topology.

Every reconcile is a full reset: all GRE interfaces are removed, then the
tunnels this host participates in are created again. This costs a short
connectivity gap per run, and in exchange nothing left over from an older
topology survives.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..exceptions import KernelProgrammingFailure, UnresolvedEndpoint
from ..models import (
    Outcome, ReconcileResult, SkippedEntry, Topology, TunnelInstance,
)
from ..utils import enable_ip_forwarding, load_gre_module
from .addressing import assign_link_ids, endpoint_addresses, interface_name
from .iproute import FALLBACK_DEVICE, IpRoute
from .roles import resolve_endpoints, resolve_role

logger = logging.getLogger(__name__)

TUNNEL_TTL = 255


@dataclass
class TunnelPlan:
    """Tunnels a host should own, plus links that could not be planned."""

    node: str
    instances: List[TunnelInstance] = field(default_factory=list)
    skipped: List[SkippedEntry] = field(default_factory=list)
    participant_links: int = 0


def _link_reference(link_id: int, link) -> str:
    return f"#{link_id} ({link.iran_name},{link.external_name})"


def plan_tunnels(topology: Topology, node: str, strict: bool = False) -> TunnelPlan:
    """
    Work out the tunnel instances `node` must own.

    Links are visited in ascending id order. Interfaces are numbered by
    their position among this host's instances (gre1, gre2, ...), so the
    name differs from the link id when earlier links don't involve the host.

    Args:
        topology: Parsed topology
        node: Host identity
        strict: Raise on the first unresolved endpoint instead of skipping

    Returns:
        TunnelPlan

    Raises:
        UnresolvedEndpoint: Only when strict is set
    """
    plan = TunnelPlan(node=node)

    for identity in assign_link_ids(topology.links):
        role = resolve_role(node, identity)
        if not role.is_participant:
            continue

        plan.participant_links += 1
        reference = _link_reference(identity.id, identity.link)

        try:
            local_ip, remote_ip = resolve_endpoints(topology, role, identity)
            local_addr, remote_addr = endpoint_addresses(identity.id, role)
        except UnresolvedEndpoint as e:
            if strict:
                raise
            logger.warning(f"Skipping tunnel {reference}: {e}")
            plan.skipped.append(SkippedEntry("link", reference, str(e)))
            continue
        except ValueError as e:
            logger.warning(f"Skipping tunnel {reference}: {e}")
            plan.skipped.append(SkippedEntry("link", reference, str(e)))
            continue

        plan.instances.append(TunnelInstance(
            link_id=identity.id,
            interface_name=interface_name(len(plan.instances) + 1),
            role=role,
            local_address=local_addr,
            remote_address=remote_addr,
            local_public_ip=local_ip,
            remote_public_ip=remote_ip,
            link=identity.link,
        ))

    return plan


class Reconciler:
    """Applies or removes a host's tunnels."""

    def __init__(
        self,
        iproute: Optional[IpRoute] = None,
        strict: bool = False,
        sysctl_conf: Optional[Path] = None,
    ):
        self.iproute = iproute or IpRoute()
        self.strict = strict
        self.sysctl_conf = sysctl_conf or Path("/etc/sysctl.conf")

    def teardown(self) -> List[str]:
        """
        Delete every GRE interface on the host.

        Returns:
            Names of the interfaces removed
        """
        removed = []
        for name in self.iproute.list_gre_interfaces():
            if name == FALLBACK_DEVICE:
                continue
            try:
                self.iproute.delete_tunnel(name)
                removed.append(name)
            except KernelProgrammingFailure as e:
                logger.warning(f"Could not remove {name}: {e}")
        if removed:
            logger.info(f"Removed {len(removed)} GRE interface(s): {', '.join(removed)}")
        return removed

    def _apply_instance(self, instance: TunnelInstance) -> None:
        name = instance.interface_name
        self.iproute.add_gre_tunnel(
            name, instance.local_public_ip, instance.remote_public_ip, ttl=TUNNEL_TTL
        )
        try:
            self.iproute.set_up(name)
            self.iproute.add_address(name, instance.local_cidr)
            self.iproute.add_route(instance.remote_host_route, name)
        except KernelProgrammingFailure:
            try:
                self.iproute.delete_tunnel(name)
            except KernelProgrammingFailure as e:
                logger.warning(f"Could not remove half-configured {name}: {e}")
            raise

    def reconcile(self, topology: Topology, node: str) -> ReconcileResult:
        """
        Tear down all GRE interfaces and recreate the ones `node` owns.

        Args:
            topology: Parsed topology
            node: Host identity

        Returns:
            ReconcileResult: APPLIED if at least one tunnel came up,
            NOTHING_TO_DO if the host is in no link, FAILED otherwise
        """
        plan = plan_tunnels(topology, node, strict=self.strict)
        result = ReconcileResult(outcome=Outcome.FAILED, node=node, skipped=list(plan.skipped))

        if plan.instances:
            enable_ip_forwarding(self.sysctl_conf)
            load_gre_module()

        result.removed = self.teardown()

        for instance in plan.instances:
            reference = _link_reference(instance.link_id, instance.link)
            try:
                self._apply_instance(instance)
            except KernelProgrammingFailure as e:
                logger.error(f"Tunnel {reference} on {instance.interface_name} failed: {e}")
                result.skipped.append(SkippedEntry("link", reference, str(e)))
                continue

            result.applied.append(instance)
            logger.info(
                f"Tunnel {instance.link_id} ({instance.interface_name}): "
                f"{instance.local_address} <-> {instance.remote_address} ({instance.remote_public_ip})"
            )

        if result.applied:
            result.outcome = Outcome.APPLIED
            result.message = f"{len(result.applied)} tunnel(s) configured for node: {node}"
        elif plan.participant_links == 0:
            result.outcome = Outcome.NOTHING_TO_DO
            result.message = f"No tunnels defined for node: {node}"
        else:
            result.message = f"None of {plan.participant_links} tunnel(s) for node {node} could be configured"

        if result.skipped:
            result.message += f" ({len(result.skipped)} skipped)"
        return result
