"""
GRE Tunnel Manager CLI

Builds a mesh of GRE tunnels between "iran" and "external" servers from one
shared topology file, and manages port forwarding on top of it.

Usage:
    sudo gretunnel <command> [options]

Examples:
    sudo gretunnel config add-iran iran1 1.2.3.4
    sudo gretunnel config add-external ext1 5.6.7.8
    sudo gretunnel config add-tunnel iran1 ext1
    sudo gretunnel node set iran1
    sudo gretunnel status
    sudo gretunnel portfw add 8443 10.10.1.2 443
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table
from rich import box

from .config import (
    PORT_FORWARD_SERVICE_NAME, Settings, clear_node, get_version, load_node, load_settings,
)
from .exceptions import GreTunnelError, NotConfigured
from .models import NodeClass
from .utils import require_root, setup_logging

logger = logging.getLogger(__name__)

console = Console()


def _print_result(result) -> int:
    color = "green" if result.ok else "red"
    if result.message:
        console.print(f"[{color}]{result.message}[/{color}]")
    for entry in result.skipped:
        console.print(f"  [yellow]skipped {entry}[/yellow]")
    return result.exit_code


def _current_node(settings: Settings, explicit: Optional[str] = None) -> str:
    node = explicit or load_node(settings)
    if not node:
        raise NotConfigured("No node set. Run 'gretunnel node set <name>' first.")
    return node


def cmd_setup(args, settings: Settings) -> int:
    """Handle setup (called by the tunnel service)."""
    from .service.entrypoints import setup

    return _print_result(setup(args.node, settings, strict=args.strict))


def cmd_teardown(args, settings: Settings) -> int:
    """Handle teardown (called by the tunnel service)."""
    from .service.entrypoints import teardown

    return _print_result(teardown(args.node, settings))


def cmd_apply_portfw(args, settings: Settings) -> int:
    """Handle apply-portfw (called by the port forward service)."""
    from .service.entrypoints import apply_port_forwards

    return _print_result(apply_port_forwards(settings))


def cmd_status(args, settings: Settings) -> int:
    """Show tunnel status for the current node."""
    from .tunnels.parser import load_topology
    from .tunnels.status import print_status

    node = _current_node(settings, args.node)
    print_status(load_topology(Path(settings.topology_file)), node)
    return 0


def cmd_health(args, settings: Settings) -> int:
    """Ping the remote end of each tunnel."""
    from .tunnels.parser import load_topology
    from .tunnels.status import print_health

    node = _current_node(settings, args.node)
    results = print_health(load_topology(Path(settings.topology_file)), node)
    return 0 if all(r['reachable'] for r in results) else 1


def cmd_node(args, settings: Settings) -> int:
    """Handle node commands."""
    from .service import control
    from .tunnels.parser import load_topology

    if args.node_action == "set":
        topology = load_topology(Path(settings.topology_file))
        if topology.resolve_address(args.name) is None:
            console.print(f"[yellow]Warning: node '{args.name}' is not defined in {settings.topology_file}[/yellow]")
        previous = load_node(settings)
        if control.set_node_and_start(settings, args.name, previous):
            console.print(f"[green]Node set to {args.name}; service restarted[/green]")
            return 0
        console.print(f"[red]Node set to {args.name}, but the service failed to start[/red]")
        return 1

    node = load_node(settings)
    console.print(node if node else "[yellow](not set)[/yellow]")
    return 0


def cmd_config(args, settings: Settings) -> int:
    """Handle topology file commands."""
    from .tunnels import editor
    from .tunnels.parser import load_topology

    path = Path(settings.topology_file)

    if args.config_action == "init":
        if editor.create_default_topology(path):
            console.print(f"[green]Created {path}[/green]")
        else:
            console.print(f"[yellow]{path} already exists[/yellow]")

    elif args.config_action == "show":
        topology = load_topology(path)
        _print_topology(topology)

    elif args.config_action in ("add-iran", "add-external"):
        node_class = NodeClass.IRAN if args.config_action == "add-iran" else NodeClass.EXTERNAL
        editor.add_node(path, node_class, args.name, args.ip)
        console.print(f"[green]Added {node_class.section[:-1]} node {args.name}={args.ip}[/green]")

    elif args.config_action in ("remove-iran", "remove-external"):
        node_class = NodeClass.IRAN if args.config_action == "remove-iran" else NodeClass.EXTERNAL
        removed = editor.remove_node(path, node_class, args.name)
        if not removed:
            console.print(f"[red]Node '{args.name}' not found in {node_class.section}[/red]")
            return 1
        console.print(f"[green]Removed {args.name}[/green]")
        if removed > 1:
            console.print(f"  also removed {removed - 1} tunnel(s) using it")

    elif args.config_action == "add-tunnel":
        link = editor.add_link(path, args.iran, args.external)
        console.print(f"[green]Added tunnel {link}[/green]")

    elif args.config_action == "remove-tunnel":
        reference = int(args.tunnel) if args.tunnel.isdigit() else args.tunnel
        link = editor.remove_link(path, reference)
        console.print(f"[green]Removed tunnel {link}[/green]")

    return 0


def _print_topology(topology) -> None:
    from .tunnels.addressing import assign_link_ids, block_network

    for node_class in NodeClass:
        table = Table(title=node_class.section.capitalize(), box=box.SIMPLE)
        table.add_column("Name", style="bold")
        table.add_column("Public IP", style="cyan")
        for node in topology.nodes(node_class):
            table.add_row(node.name, node.public_address)
        console.print(table)

    table = Table(title="Tunnels", box=box.SIMPLE)
    table.add_column("#", style="bold")
    table.add_column("Iran", style="green")
    table.add_column("External", style="magenta")
    table.add_column("Subnet", style="cyan")
    for identity in assign_link_ids(topology.links):
        try:
            subnet = str(block_network(identity.id))
        except ValueError:
            subnet = "[red]out of range[/red]"
        table.add_row(str(identity.id), identity.link.iran_name, identity.link.external_name, subnet)
    console.print(table)


def _apply_after_change(args, settings: Settings) -> int:
    if getattr(args, "no_apply", False):
        return 0
    from .service.entrypoints import apply_port_forwards

    return _print_result(apply_port_forwards(settings))


def cmd_portfw(args, settings: Settings) -> int:
    """Handle port forward commands."""
    from .portfwd import method as pf_method
    from .portfwd import rules as pf_rules
    from .service.control import systemctl
    from .service.units import units_installed

    rules_path = Path(settings.port_forwards_file)

    if args.pf_action == "method":
        method_path = Path(settings.port_forward_method_file)
        if not args.method:
            console.print(pf_method.get_method(method_path) or "[yellow](not set)[/yellow]")
            return 0
        pf_method.set_method(method_path, args.method)
        console.print(f"[green]Method set to {args.method}[/green]")
        if units_installed(settings):
            systemctl("enable", PORT_FORWARD_SERVICE_NAME, check=False)
        return _apply_after_change(args, settings)

    if args.pf_action == "list":
        rules, skipped = pf_rules.load_rules(rules_path)
        _print_rules(rules)
        for entry in skipped:
            console.print(f"  [yellow]invalid {entry}[/yellow]")
        return 0

    if args.pf_action == "add":
        rule = pf_rules.parse_rule(
            f"{args.listen} {args.listen_port} {args.dest} {args.dest_port}"
        )
        pf_rules.add_rule(rules_path, rule)
        console.print(f"[green]Added: {rule}[/green]")
        return _apply_after_change(args, settings)

    if args.pf_action == "edit":
        rule = pf_rules.edit_rule(
            rules_path, args.number,
            listen_address=args.listen, listen_port=args.listen_port,
            dest_address=args.dest, dest_port=args.dest_port,
        )
        console.print(f"[green]Updated entry {args.number}: {rule}[/green]")
        return _apply_after_change(args, settings)

    if args.pf_action == "delete":
        pf_rules.delete_rule(rules_path, args.number)
        console.print(f"[green]Removed entry {args.number}[/green]")
        return _apply_after_change(args, settings)

    if args.pf_action == "apply":
        return _apply_after_change(args, settings)

    return 0


def _print_rules(rules) -> None:
    if not rules:
        console.print("[yellow]No port forwards defined.[/yellow]")
        return

    table = Table(title="Port Forwards", box=box.SIMPLE)
    table.add_column("#", style="bold")
    table.add_column("Listen IP", style="cyan")
    table.add_column("Port")
    table.add_column("Dest IP", style="green")
    table.add_column("Port")
    for number, rule in enumerate(rules, start=1):
        table.add_row(str(number), rule.listen_address, str(rule.listen_port),
                      rule.dest_address, str(rule.dest_port))
    console.print(table)


def cmd_service(args, settings: Settings) -> int:
    """Handle service commands."""
    from .service import control, units
    from .tunnels import editor

    if args.service_action == "install":
        editor.create_default_topology(Path(settings.topology_file))
        for path in units.install_units(settings):
            console.print(f"  Unit: {path}")
        control.systemctl("enable", PORT_FORWARD_SERVICE_NAME, check=False)
        console.print("[green]Services installed[/green]")
        return 0

    if args.service_action == "uninstall":
        from .service.entrypoints import teardown

        if not args.yes and not Confirm.ask("Stop services, remove tunnels and unit files?", default=False):
            console.print("Uninstall cancelled")
            return 0

        node = load_node(settings)
        if node:
            control.stop(node)
            control.disable(node)
            teardown(node, settings)
        control.systemctl("disable", PORT_FORWARD_SERVICE_NAME, check=False)
        units.remove_units(settings)
        clear_node(settings)
        console.print("[green]Services removed[/green]")
        return 0

    node = _current_node(settings, args.node)

    if args.service_action == "start":
        ok = control.start(node)
    elif args.service_action == "stop":
        ok = control.stop(node)
    elif args.service_action == "restart":
        ok = control.restart(node)
    else:
        state = "[green]active[/green]" if control.is_active(node) else "[red]inactive[/red]"
        console.print(f"Service {control.unit_for(node)}: {state}")
        console.print(control.status_text(node))
        return 0

    return 0 if ok else 1


def cmd_version(args, settings: Settings) -> int:
    console.print(f"GRE Tunnel Manager v{get_version()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gretunnel",
        description="GRE Tunnel Manager CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s config init
  %(prog)s config add-iran iran1 1.2.3.4
  %(prog)s config add-tunnel iran1 ext1
  %(prog)s node set iran1
  %(prog)s status
  %(prog)s portfw method iptables
  %(prog)s portfw add 8443 10.10.1.2 443
"""
    )

    parser.add_argument("--version", action="version", version=f"gretunnel {get_version()}")
    parser.add_argument("--settings", help="Settings YAML file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # ============ SERVICE BOUNDARY ============
    p = subparsers.add_parser("setup", help="Reconcile tunnels for a node")
    p.add_argument("node", help="Node name")
    p.add_argument("--strict", action="store_true", help="Abort if any tunnel endpoint is unresolved")

    p = subparsers.add_parser("teardown", help="Remove all GRE tunnels")
    p.add_argument("node", help="Node name")

    subparsers.add_parser("apply-portfw", help="Apply port forwards")

    # ============ DIAGNOSTICS ============
    for name, text in (("status", "Show tunnel status"), ("health", "Ping each tunnel's remote end")):
        p = subparsers.add_parser(name, help=text)
        p.add_argument("--node", "-n", help="Node name (defaults to the configured node)")

    # ============ NODE ============
    node_parser = subparsers.add_parser("node", help="Show or set this server's node")
    node_sub = node_parser.add_subparsers(dest="node_action")
    node_sub.add_parser("show", help="Show current node")
    node_set = node_sub.add_parser("set", help="Set node and restart the service")
    node_set.add_argument("name", help="Node name")

    # ============ CONFIG ============
    cfg_parser = subparsers.add_parser("config", help="Edit the topology file")
    cfg_sub = cfg_parser.add_subparsers(dest="config_action")
    cfg_sub.add_parser("init", help="Create the default topology file")
    cfg_sub.add_parser("show", help="Show nodes and tunnels")

    for cls in ("iran", "external"):
        p = cfg_sub.add_parser(f"add-{cls}", help=f"Add {cls} node")
        p.add_argument("name", help="Node name")
        p.add_argument("ip", help="Public IPv4 address")
        p = cfg_sub.add_parser(f"remove-{cls}", help=f"Remove {cls} node and its tunnels")
        p.add_argument("name", help="Node name")

    p = cfg_sub.add_parser("add-tunnel", help="Add tunnel between an iran and an external node")
    p.add_argument("iran", help="Iran node name")
    p.add_argument("external", help="External node name")

    p = cfg_sub.add_parser("remove-tunnel", help="Remove tunnel by number or 'iran,external'")
    p.add_argument("tunnel", help="Tunnel number or iran,external")

    # ============ PORT FORWARDING ============
    pf_parser = subparsers.add_parser("portfw", help="Manage port forwarding")
    pf_sub = pf_parser.add_subparsers(dest="pf_action")

    p = pf_sub.add_parser("method", help="Show or set method (iptables or rinetd)")
    p.add_argument("method", nargs="?", choices=["iptables", "rinetd"])
    p.add_argument("--no-apply", action="store_true", help="Don't apply forwards now")

    p = pf_sub.add_parser("add", help="Add forward")
    p.add_argument("listen_port", type=int, help="Listen port")
    p.add_argument("dest", help="Destination IP (e.g. 10.10.1.2)")
    p.add_argument("dest_port", type=int, help="Destination port")
    p.add_argument("--listen", "-l", default="0.0.0.0", help="Listen IP")
    p.add_argument("--no-apply", action="store_true", help="Don't apply forwards now")

    pf_sub.add_parser("list", help="List forwards")

    p = pf_sub.add_parser("edit", help="Edit forward by number")
    p.add_argument("number", type=int, help="Entry number")
    p.add_argument("--listen", "-l", help="Listen IP")
    p.add_argument("--listen-port", type=int, help="Listen port")
    p.add_argument("--dest", "-d", help="Destination IP")
    p.add_argument("--dest-port", type=int, help="Destination port")
    p.add_argument("--no-apply", action="store_true", help="Don't apply forwards now")

    p = pf_sub.add_parser("delete", help="Delete forward by number")
    p.add_argument("number", type=int, help="Entry number")
    p.add_argument("--no-apply", action="store_true", help="Don't apply forwards now")

    pf_sub.add_parser("apply", help="Apply / reload forwards now")

    # ============ SERVICE ============
    svc_parser = subparsers.add_parser("service", help="Manage systemd services")
    svc_sub = svc_parser.add_subparsers(dest="service_action")
    svc_sub.add_parser("install", help="Write systemd units")
    p = svc_sub.add_parser("uninstall", help="Stop services and remove units")
    p.add_argument("--yes", "-y", action="store_true", help="Don't ask for confirmation")
    for action in ["start", "stop", "restart", "status"]:
        p = svc_sub.add_parser(action, help=f"{action.capitalize()} the tunnel service")
        p.add_argument("--node", "-n", help="Node name (defaults to the configured node)")

    subparsers.add_parser("version", help="Show version")

    return parser


# Commands that change kernel or systemd state
ROOT_COMMANDS = ("setup", "teardown", "apply-portfw", "node", "portfw", "service")

# Subcommand attribute that must be set for each command group
SUBCOMMANDS = {
    "node": "node_action",
    "config": "config_action",
    "portfw": "pf_action",
    "service": "service_action",
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    sub = SUBCOMMANDS.get(args.command)
    if sub and not getattr(args, sub):
        parser.print_help()
        return 1

    settings = load_settings(Path(args.settings) if args.settings else None)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, settings.log_file)

    if args.command in ROOT_COMMANDS and not (args.command == "node" and args.node_action == "show"):
        require_root()

    handlers = {
        "setup": cmd_setup,
        "teardown": cmd_teardown,
        "apply-portfw": cmd_apply_portfw,
        "status": cmd_status,
        "health": cmd_health,
        "node": cmd_node,
        "config": cmd_config,
        "portfw": cmd_portfw,
        "service": cmd_service,
        "version": cmd_version,
    }

    try:
        return handlers[args.command](args, settings)
    except (GreTunnelError, ValueError) as e:
        logger.debug(f"{args.command} failed", exc_info=True)
        console.print(f"[red]Error: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
