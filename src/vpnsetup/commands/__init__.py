"""Command implementations for the vpnsetup CLI.

Helpers shared by the command groups live here.
"""

import os
from typing import Optional

import typer

from vpnsetup.core.audit import get_audit_logger
from vpnsetup.core.context import ExecutionContext
from vpnsetup.core.exceptions import ValidationError, VPNError
from vpnsetup.core.output import console
from vpnsetup.core.validation import validate_eap_password


def handle_error(error: VPNError) -> None:
    """Print a VPNError with its details and hint, then exit with its code."""
    console.error(error.message)

    if error.details:
        for detail in error.details:
            console.print(f"  [dim]{detail}[/dim]")

    if error.hint:
        console.hint(error.hint)

    raise typer.Exit(error.exit_code)


def check_root(ctx: ExecutionContext, command: str) -> None:
    """Exit with code 6 unless running as root (dry-run is exempt)."""
    if os.geteuid() != 0 and not ctx.dry_run:
        get_audit_logger().log_blocked(command, "not running as root")
        ctx.console.error("This operation requires root privileges")
        ctx.console.hint(f"Run with: sudo vpnsetup {command}")
        raise typer.Exit(6)


def collect_password(ctx: ExecutionContext, *, confirm: bool = True) -> str:
    """Get the VPN password from VPNSETUP_PASSWORD or a hidden prompt.

    The value is never printed.

    Raises:
        ValidationError: If the password is empty, too weak, or the
            confirmation does not match
    """
    from_env = ctx.config.secrets.vpnsetup_password
    if from_env:
        ctx.console.verbose("Using VPN password from VPNSETUP_PASSWORD")
        return validate_eap_password(from_env)

    try:
        password = ctx.console.input("VPN password: ", password=True)
        validate_eap_password(password)
        if confirm:
            again = ctx.console.input("Confirm VPN password: ", password=True)
            if again != password:
                raise ValidationError("Passwords do not match")
    except (EOFError, KeyboardInterrupt):
        raise ValidationError(
            "VPN password is required",
            hint="Enter it at the prompt or set VPNSETUP_PASSWORD",
        )

    return password


def prompt_value(ctx: ExecutionContext, label: str, value: Optional[str]) -> str:
    """Return value, prompting for it when missing and interaction is allowed.

    Returns an empty string when no value can be obtained; callers validate.
    """
    if value:
        return value
    if ctx.yes:
        return ""
    try:
        return ctx.console.input(f"{label}: ").strip()
    except (EOFError, KeyboardInterrupt):
        return ""
