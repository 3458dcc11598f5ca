"""VPN user management commands.

Commands:
- vpnsetup user add
- vpnsetup user remove
- vpnsetup user list

Users live in /etc/ipsec.secrets as EAP entries. Changes are applied to
the running daemon with ``ipsec rereadsecrets``.
"""

from pathlib import Path
from typing import Annotated, Optional

import typer

from vpnsetup.commands import check_root, collect_password, handle_error
from vpnsetup.core import (
    AuditEventType,
    CommandExecutor,
    VPNError,
    create_context,
    get_audit_logger,
)
from vpnsetup.core.validation import validate_required, validate_username
from vpnsetup.services.strongswan import EapUser, StrongSwanService


app = typer.Typer(
    name="user",
    help="VPN user (EAP) management.",
    no_args_is_help=True,
)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to configuration file"),
]

NoColorOption = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output"),
]


def _get_service(ctx) -> StrongSwanService:
    executor = CommandExecutor(ctx)
    return StrongSwanService(ctx, executor, ctx.config.strongswan)


@app.command("add")
def add_user(
    username: Annotated[
        str,
        typer.Option("--user", "-u", help="VPN username"),
    ],
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Preview changes without executing."),
    ] = False,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
    ] = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Add a VPN user, or change an existing user's password.

    The password is prompted for (hidden) or read from VPNSETUP_PASSWORD.

    [bold]Examples:[/bold]

        sudo vpnsetup user add -u alice
        VPNSETUP_PASSWORD=... sudo -E vpnsetup user add -u bob
    """
    ctx = create_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx, "user add")

    try:
        name = validate_username(validate_required(username, "VPN username"))
        password = collect_password(ctx)
        user = EapUser(username=name, password=password)

        replaced = _get_service(ctx).add_user(user)
        if replaced:
            ctx.console.success(f"Password updated for VPN user '{name}'")
        else:
            ctx.console.success(f"VPN user '{name}' added")

    except VPNError as e:
        get_audit_logger().log_failure(AuditEventType.USER_ADD, "eap_user", username, str(e))
        handle_error(e)


@app.command("remove")
def remove_user(
    username: Annotated[
        str,
        typer.Option("--user", "-u", help="VPN username"),
    ],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Preview changes without executing."),
    ] = False,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
    ] = 0,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Remove a VPN user. Active sessions of that user are not terminated."""
    ctx = create_context(
        dry_run=dry_run, yes=yes, verbose=verbose, no_color=no_color, config=config,
    )
    check_root(ctx, "user remove")

    try:
        name = validate_username(validate_required(username, "VPN username"))

        if ctx.should_confirm and not ctx.dry_run:
            if not ctx.console.confirm(f"Remove VPN user '{name}'?"):
                ctx.console.warn("Cancelled")
                raise typer.Exit(0)

        _get_service(ctx).remove_user(name)
        ctx.console.success(f"VPN user '{name}' removed")

    except VPNError as e:
        get_audit_logger().log_failure(AuditEventType.USER_REMOVE, "eap_user", username, str(e))
        handle_error(e)


@app.command("list")
def list_users(
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """List VPN usernames. Passwords are never shown."""
    ctx = create_context(no_color=no_color, config=config)

    try:
        users = _get_service(ctx).list_users()

        if not users:
            ctx.console.warn("No VPN users configured")
            ctx.console.hint("Add one with: vpnsetup user add -u <name>")
            return

        ctx.console.table("VPN Users", ["Username"], [[name] for name in users])

    except VPNError as e:
        handle_error(e)
