"""Firewall commands.

Re-applies the VPN's UFW changes on their own, e.g. after a distribution
upgrade replaced /etc/ufw/before.rules:
- vpnsetup firewall patch
- vpnsetup firewall status
"""

from pathlib import Path
from typing import Annotated, Optional

import typer

from vpnsetup.commands import check_root, handle_error
from vpnsetup.core import CommandExecutor, VPNError, create_context
from vpnsetup.core.config import MissingAnchorPolicy
from vpnsetup.core.validation import validate_subnet
from vpnsetup.services.network import resolve_interface
from vpnsetup.services.patcher import PatchAction
from vpnsetup.services.ufw import UfwService, vpn_allow_rules


app = typer.Typer(
    name="firewall",
    help="Manage the VPN's UFW rules.",
    no_args_is_help=True,
)


def _get_service(ctx) -> UfwService:
    executor = CommandExecutor(ctx)
    firewall = ctx.config.firewall
    return UfwService(
        ctx,
        executor,
        before_rules=firewall.before_rules,
        sysctl_conf=firewall.sysctl_conf,
    )


@app.command("patch")
def firewall_patch(
    subnet: Annotated[
        Optional[str],
        typer.Option("--subnet", help="VPN client subnet (default from config)"),
    ] = None,
    interface: Annotated[
        Optional[str],
        typer.Option("--interface", "-i", help="Internet-facing interface (auto-detected)"),
    ] = None,
    on_missing_anchor: Annotated[
        Optional[MissingAnchorPolicy],
        typer.Option(
            "--on-missing-anchor",
            help="What to do if before.rules lacks an expected line",
            case_sensitive=False,
        ),
    ] = None,
    open_ports: Annotated[
        bool,
        typer.Option("--open-ports/--no-open-ports", help="Also allow SSH, 500/udp and 4500/udp"),
    ] = True,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Preview changes without executing."),
    ] = False,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
    ] = 0,
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to configuration file"),
    ] = None,
    no_color: Annotated[
        bool,
        typer.Option("--no-color", help="Disable colored output"),
    ] = False,
) -> None:
    """Add the VPN's NAT, mangle and IPsec rules to UFW.

    Safe to run repeatedly: rule blocks already present are left alone.

    [bold]Examples:[/bold]

        sudo vpnsetup firewall patch
        vpnsetup firewall patch --dry-run -v     # show the diff
        sudo vpnsetup firewall patch --interface ens3
    """
    ctx = create_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx, "firewall patch")

    try:
        settings = ctx.config
        vpn_subnet = validate_subnet(subnet or settings.ipsec.subnet)
        iface = resolve_interface(interface or settings.firewall.interface)
        policy = on_missing_anchor or settings.firewall.on_missing_anchor

        ufw = _get_service(ctx)

        if open_ports:
            for rule in vpn_allow_rules():
                ufw.allow(rule)

        rules = ufw.patch_before_rules(vpn_subnet, iface, on_missing_anchor=policy.value)
        sysctl = ufw.patch_sysctl()

        if rules.changed or sysctl.changed:
            ufw.reload()
        else:
            ctx.console.info("No changes needed; UFW not reloaded")

        ctx.console.print()
        ctx.console.summary("Firewall", {
            "Interface": iface,
            "Client subnet": vpn_subnet,
            "Rule blocks added": ", ".join(
                rules.names(PatchAction.INSERTED) + rules.names(PatchAction.APPENDED)
            ) or "none",
            "Sysctl settings changed": len(sysctl.actions) - len(sysctl.names(PatchAction.PRESENT)),
        })

    except VPNError as e:
        handle_error(e)


@app.command("status")
def firewall_status(
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
    ] = 0,
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to configuration file"),
    ] = None,
    no_color: Annotated[
        bool,
        typer.Option("--no-color", help="Disable colored output"),
    ] = False,
) -> None:
    """Show UFW state and the rules it enforces."""
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        status = _get_service(ctx).status()

        ctx.console.print()
        if status.active:
            ctx.console.print("  UFW:  [green]ACTIVE[/green]")
        else:
            ctx.console.print("  UFW:  [yellow]INACTIVE[/yellow]")
            ctx.console.hint("Run: sudo vpnsetup firewall patch")
        ctx.console.print()

        if status.rules:
            ctx.console.table(
                "Rules",
                ["Rule"],
                [[rule] for rule in status.rules],
            )

    except VPNError as e:
        handle_error(e)
