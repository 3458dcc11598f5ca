"""Main CLI entry point using Typer.

This module defines the root CLI application and global options.
Command groups are registered from submodules.
"""

from pathlib import Path
from typing import Optional, Annotated

import typer
from rich.console import Console

from vpnsetup import __version__
from vpnsetup.commands import check_root, collect_password, handle_error, prompt_value
from vpnsetup.core.context import ExecutionContext, create_context
from vpnsetup.core.config import (
    DEFAULT_CONFIG_PATH,
    AppConfig,
    CertMode,
    get_example_config,
    init_config,
)
from vpnsetup.core.exceptions import ConfigurationError, VPNError
from vpnsetup.core.validation import validate_required


# Create the main Typer app
app = typer.Typer(
    name="vpnsetup",
    help="IKEv2 VPN provisioning - strongSwan, certificates and UFW in one run.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

config_app = typer.Typer(
    name="config",
    help="Configuration management.",
    no_args_is_help=True,
)

# Import sub-commands
from vpnsetup.commands.firewall import app as firewall_app
from vpnsetup.commands.user import app as user_app

# Register command groups
app.add_typer(config_app, name="config")
app.add_typer(firewall_app, name="firewall")
app.add_typer(user_app, name="user")


# Type aliases for common options
DryRunOption = Annotated[
    bool,
    typer.Option(
        "--dry-run",
        help="Preview changes without executing. Shows what would happen.",
        is_flag=True,
    ),
]

YesOption = Annotated[
    bool,
    typer.Option(
        "--yes",
        "-y",
        help="Skip confirmation prompts. Missing values are not prompted for.",
        is_flag=True,
    ),
]

ForceOption = Annotated[
    bool,
    typer.Option(
        "--force",
        "-f",
        help="Overwrite an existing file.",
        is_flag=True,
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase output verbosity. Can be repeated (-v, -vv).",
    ),
]

QuietOption = Annotated[
    bool,
    typer.Option(
        "--quiet",
        "-q",
        help="Suppress non-essential output. Only show errors.",
        is_flag=True,
    ),
]

NoColorOption = Annotated[
    bool,
    typer.Option(
        "--no-color",
        help="Disable colored output.",
        is_flag=True,
    ),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Path to configuration file. Default: {DEFAULT_CONFIG_PATH}",
        exists=False,
        file_okay=True,
        dir_okay=False,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console = Console()
        console.print(f"vpnsetup version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """IKEv2 VPN provisioning for Debian/Ubuntu.

    Installs strongSwan, provisions a self-signed or Let's Encrypt server
    certificate, configures EAP-MSCHAPv2 users and patches UFW for NAT.

    [bold]Examples:[/bold]
        sudo vpnsetup setup --domain vpn.example.com --user alice
        sudo vpnsetup setup --cert-mode letsencrypt --domain vpn.example.com --email me@example.com
        sudo vpnsetup user add -u bob
        sudo vpnsetup firewall patch
        vpnsetup config show
    """
    pass


def get_context(
    dry_run: bool = False,
    yes: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Create execution context from CLI options."""
    return create_context(
        dry_run=dry_run,
        yes=yes,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=config,
    )


# ============================================================================
# Config commands
# ============================================================================

@config_app.command("show")
def config_show(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show current configuration.

    Displays the loaded configuration from the config file.
    Secrets are not shown.
    """
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        app_config = ctx.config

        ctx.console.print()
        ctx.console.print(f"[bold]Configuration file:[/bold] {ctx.config_path}")
        ctx.console.print(f"[bold]File exists:[/bold] {ctx.config_path.exists()}")
        ctx.console.print()

        ctx.console.yaml(app_config.config.to_yaml(), title="Configuration")

        # Show secrets status (not values)
        ctx.console.summary("Secrets (from environment)", {
            "VPNSETUP_PASSWORD": "Set" if app_config.secrets.vpnsetup_password else "Not set",
        })

    except VPNError as e:
        handle_error(e)


@config_app.command("init")
def config_init(
    config: ConfigOption = None,
    force: ForceOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Initialize a new configuration file.

    Creates a configuration file with defaults and comments.
    """
    ctx = get_context(no_color=no_color, config=config)
    config_path = ctx.config_path

    try:
        init_config(config_path, force=force)
        ctx.console.success(f"Configuration file created: {config_path}")
        ctx.console.info("Edit the file to customize settings, then run vpnsetup setup.")
        ctx.console.hint("The VPN password is never stored here; set VPNSETUP_PASSWORD or enter it when prompted")

    except VPNError as e:
        handle_error(e)
    except OSError as e:
        ctx.console.error(f"Cannot write {config_path}: {e}")
        ctx.console.hint("Run with sudo or pass --config")
        raise typer.Exit(2)


@config_app.command("validate")
def config_validate(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Validate configuration file.

    Checks that the configuration file exists, is valid YAML,
    and all values pass validation.
    """
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        if not ctx.config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {ctx.config_path}",
                hint="Create it with: vpnsetup config init",
            )

        app_config = AppConfig(config_path=ctx.config_path)

        ctx.console.success(f"Configuration is valid: {ctx.config_path}")

        if ctx.is_verbose:
            ctx.console.yaml(app_config.config.to_yaml())

        # Check for missing recommended settings
        warnings = []

        if not app_config.config.domain:
            warnings.append("domain is not set; setup will prompt for it")

        certs = app_config.certificates
        if certs.mode is CertMode.LETSENCRYPT and not certs.email:
            warnings.append("Let's Encrypt mode selected but certificates.email is not set")

        if warnings:
            ctx.console.print()
            for warning in warnings:
                ctx.console.warn(warning)

    except VPNError as e:
        handle_error(e)


@config_app.command("example")
def config_example(no_color: NoColorOption = False) -> None:
    """Print example configuration file.

    Outputs a complete example configuration with comments.
    """
    ctx = get_context(no_color=no_color)
    ctx.console.print(get_example_config(), markup=False, highlight=False)


# ============================================================================
# Setup command
# ============================================================================

@app.command("setup")
def setup_cmd(
    cert_mode: Annotated[
        Optional[CertMode],
        typer.Option(
            "--cert-mode",
            help="Server certificate source (default from config: self-signed)",
            case_sensitive=False,
        ),
    ] = None,
    domain: Annotated[
        Optional[str],
        typer.Option(
            "--domain",
            "-d",
            help="Server DNS name or public IP (the IKE identity)",
        ),
    ] = None,
    username: Annotated[
        Optional[str],
        typer.Option(
            "--user",
            "-u",
            help="First VPN username",
        ),
    ] = None,
    email: Annotated[
        Optional[str],
        typer.Option(
            "--email",
            help="Contact email for Let's Encrypt",
        ),
    ] = None,
    subnet: Annotated[
        Optional[str],
        typer.Option(
            "--subnet",
            help="Client address pool (default 10.10.10.0/24)",
        ),
    ] = None,
    dns: Annotated[
        Optional[list[str]],
        typer.Option(
            "--dns",
            help="DNS server pushed to clients. Can be repeated.",
        ),
    ] = None,
    interface: Annotated[
        Optional[str],
        typer.Option(
            "--interface",
            "-i",
            help="Internet-facing interface for NAT (auto-detected from the default route)",
        ),
    ] = None,
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Provision an IKEv2 VPN server.

    Installs strongSwan, provisions the server certificate, writes
    /etc/ipsec.conf and /etc/ipsec.secrets, opens UFW ports 500/udp and
    4500/udp and patches UFW for NAT and forwarding.

    The VPN password is prompted for (hidden) or read from
    VPNSETUP_PASSWORD. It is never printed.

    [bold]Examples:[/bold]

        # Self-signed CA (clients import the CA certificate)
        sudo vpnsetup setup --domain vpn.example.com --user alice

        # Let's Encrypt (port 80 must be reachable)
        sudo vpnsetup setup --cert-mode letsencrypt --domain vpn.example.com \\
            --user alice --email admin@example.com

        # Preview changes
        vpnsetup setup --domain vpn.example.com --user alice --dry-run -v
    """
    from vpnsetup.commands.setup import build_plan, run_setup

    ctx = get_context(
        dry_run=dry_run,
        yes=yes,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=config,
    )

    try:
        mode = cert_mode or ctx.config.certificates.mode
        domain = prompt_value(ctx, "Server domain", domain or ctx.config.config.domain)
        username = prompt_value(ctx, "VPN username", username)
        if mode is CertMode.LETSENCRYPT:
            email = prompt_value(ctx, "Let's Encrypt email", email or ctx.config.certificates.email)

        # Reject empty names before asking for the password
        validate_required(domain, "Domain")
        validate_required(username, "VPN username")

        password = collect_password(ctx)

        plan = build_plan(
            ctx,
            domain=domain,
            username=username,
            password=password,
            cert_mode=mode,
            email=email,
            subnet=subnet,
            dns=dns,
            interface=interface,
        )

        check_root(ctx, "setup ...")

        if not yes and not dry_run:
            ctx.console.print(
                f"Provision IKEv2 VPN for [bold]{plan.domain}[/bold] "
                f"({plan.cert_mode.value} certificate, NAT via {plan.interface})"
            )
            if not ctx.console.confirm("Proceed?"):
                ctx.console.warn("Cancelled")
                raise typer.Exit(0)

        run_setup(ctx, plan)

    except VPNError as e:
        handle_error(e)


# Entry point
if __name__ == "__main__":
    app()
