"""Tunnel status and one-shot reachability checks."""

from typing import List, Dict, Optional

from rich.console import Console
from rich.table import Table
from rich import box

from ..models import Role, Topology
from ..utils import run
from .iproute import IpRoute
from .reconcile import plan_tunnels

console = Console()


def tunnel_status(topology: Topology, node: str, iproute: Optional[IpRoute] = None) -> List[Dict]:
    """
    Describe each tunnel planned for `node`.

    Interface names come from the same planner the reconciler uses, so
    they match what setup created.

    Returns:
        List of dicts with id, interface, addresses, endpoints and 'up'
    """
    iproute = iproute or IpRoute()
    plan = plan_tunnels(topology, node)
    rows = []

    for instance in plan.instances:
        link = instance.link
        if instance.role is Role.IRAN:
            iran_ip, external_ip = instance.local_public_ip, instance.remote_public_ip
        else:
            iran_ip, external_ip = instance.remote_public_ip, instance.local_public_ip
        rows.append({
            'id': instance.link_id,
            'interface': instance.interface_name,
            'role': instance.role.value,
            'local': instance.local_address,
            'remote': instance.remote_address,
            'iran': link.iran_name,
            'iran_ip': iran_ip,
            'external': link.external_name,
            'external_ip': external_ip,
            'up': iproute.link_exists(instance.interface_name),
        })

    return rows


def count_active_tunnels(topology: Topology, node: str, iproute: Optional[IpRoute] = None) -> int:
    """Count planned tunnels whose interface currently exists."""
    return sum(1 for row in tunnel_status(topology, node, iproute) if row['up'])


def ping(address: str, count: int = 2, wait: int = 2) -> bool:
    """Return True if `address` answers ICMP echo."""
    result = run(["ping", "-c", str(count), "-W", str(wait), address], check=False,
                 timeout=count * wait + 5)
    return result.returncode == 0


def health_check(topology: Topology, node: str) -> List[Dict]:
    """
    Ping the remote private address of every planned tunnel once.

    Returns:
        List of dicts with id, interface, remote and 'reachable'
    """
    results = []
    for instance in plan_tunnels(topology, node).instances:
        results.append({
            'id': instance.link_id,
            'interface': instance.interface_name,
            'remote': instance.remote_address,
            'reachable': ping(instance.remote_address),
        })
    return results


def print_status(topology: Topology, node: str) -> None:
    """Print tunnel status table."""
    rows = tunnel_status(topology, node)

    if not rows:
        console.print(f"[yellow]No tunnels defined for node: {node}[/yellow]")
        return

    table = Table(title=f"Tunnel Status for Node: {node}", box=box.SIMPLE)
    table.add_column("Tunnel", style="bold")
    table.add_column("Interface")
    table.add_column("Status")
    table.add_column("Local", style="cyan")
    table.add_column("Remote", style="cyan")
    table.add_column("Iran (name IP)", style="green")
    table.add_column("External (name IP)", style="magenta")

    for row in rows:
        status = "[green]UP[/green]" if row['up'] else "[red]DOWN[/red]"
        table.add_row(
            str(row['id']), row['interface'], status, row['local'], row['remote'],
            f"{row['iran']} {row['iran_ip']}", f"{row['external']} {row['external_ip']}",
        )

    console.print(table)
    active = sum(1 for row in rows if row['up'])
    console.print(f"Active: {active}/{len(rows)}")


def print_health(topology: Topology, node: str) -> List[Dict]:
    """Print reachability of each tunnel's remote end and return the results."""
    results = health_check(topology, node)

    if not results:
        console.print(f"[yellow]No tunnels defined for node: {node}[/yellow]")
        return results

    console.print(f"\n[bold cyan]Health Check for Node: {node}[/bold cyan]")
    for r in results:
        state = "[green]REACHABLE[/green]" if r['reachable'] else "[red]UNREACHABLE[/red]"
        console.print(f"  Tunnel {r['id']} ({r['interface']}, {r['remote']}): {state}")
    return results
