"""VPN server provisioning command.

One run installs strongSwan, provisions the server certificate, writes the
IPsec configuration, opens the firewall and patches UFW for NAT and
forwarding. Every input is validated before the first change is made.
"""

import ipaddress
from dataclasses import dataclass
from typing import Optional

from vpnsetup.core.audit import get_audit_logger
from vpnsetup.core.config import CertMode
from vpnsetup.core.context import ExecutionContext
from vpnsetup.core.exceptions import VPNError, ValidationError
from vpnsetup.core.executor import CommandExecutor
from vpnsetup.core.safety import run_preflight_checks
from vpnsetup.core.validation import (
    validate_dns_server,
    validate_domain,
    validate_email,
    validate_eap_password,
    validate_required,
    validate_subnet,
    validate_username,
)
from vpnsetup.services.certificates import CertificateService
from vpnsetup.services.network import resolve_interface
from vpnsetup.services.strongswan import EapUser, IpsecSettings, StrongSwanService
from vpnsetup.services.ufw import ACME_HTTP_RULE, UfwService, vpn_allow_rules


@dataclass
class SetupPlan:
    """Validated inputs for one provisioning run.

    The password is held only as the EapUser's SecretStr.
    """
    domain: str
    user: EapUser
    cert_mode: CertMode
    subnet: str
    dns: list[str]
    interface: str
    email: Optional[str] = None


def build_plan(
    ctx: ExecutionContext,
    *,
    domain: Optional[str],
    username: Optional[str],
    password: Optional[str],
    cert_mode: Optional[CertMode] = None,
    email: Optional[str] = None,
    subnet: Optional[str] = None,
    dns: Optional[list[str]] = None,
    interface: Optional[str] = None,
) -> SetupPlan:
    """Validate all inputs, falling back to the config file for optional ones.

    Touches nothing on disk. Interface auto-detection runs here so that a
    host without a default route fails before provisioning starts.

    Raises:
        ValidationError: If a value is missing or malformed
        InterfaceNotFoundError: If the default interface cannot be detected
    """
    config = ctx.config

    domain = validate_domain(validate_required(domain or config.config.domain, "Domain"))
    username = validate_username(validate_required(username, "VPN username"))
    password = validate_eap_password(password)

    mode = cert_mode or config.certificates.mode
    email = email or config.certificates.email
    if mode is CertMode.LETSENCRYPT:
        email = validate_email(validate_required(email, "Email"))

    subnet = validate_subnet(subnet or config.ipsec.subnet)
    dns = [validate_dns_server(server) for server in (dns or config.ipsec.dns)]

    if mode is CertMode.LETSENCRYPT and _is_ip(domain):
        raise ValidationError(
            "Let's Encrypt cannot issue certificates for IP addresses",
            hint="Use a DNS name or --cert-mode self-signed",
        )

    return SetupPlan(
        domain=domain,
        user=EapUser(username=username, password=password),
        cert_mode=mode,
        subnet=subnet,
        dns=dns,
        interface=resolve_interface(interface or config.firewall.interface),
        email=email,
    )


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def run_setup(ctx: ExecutionContext, plan: SetupPlan) -> None:
    """Provision the VPN server described by plan.

    Args:
        ctx: Execution context
        plan: Validated inputs from build_plan()
    """
    audit = get_audit_logger()
    config = ctx.config

    ctx.console.print()
    ctx.console.print("[bold]IKEv2 VPN Setup[/bold]")
    ctx.console.print(f"  Domain:       {plan.domain}")
    ctx.console.print(f"  Certificate:  {plan.cert_mode.value}")
    ctx.console.print(f"  VPN user:     {plan.user.username}")
    ctx.console.print(f"  Client pool:  {plan.subnet}")
    ctx.console.print(f"  Interface:    {plan.interface}")
    ctx.console.print()

    audit.log_session_start("setup", {
        "domain": plan.domain,
        "cert_mode": plan.cert_mode.value,
        "username": plan.user.username,
        "subnet": plan.subnet,
        "interface": plan.interface,
    })

    executor = CommandExecutor(ctx)
    strongswan = StrongSwanService(ctx, executor, config.strongswan)
    certificates = CertificateService(
        ctx, executor, config.certificates.model_copy(update={"mode": plan.cert_mode}),
        ipsec_dir=config.strongswan.ipsec_dir,
    )
    ufw = UfwService(
        ctx,
        executor,
        before_rules=config.firewall.before_rules,
        sysctl_conf=config.firewall.sysctl_conf,
    )

    exit_code = 0
    try:
        with audit.correlation("setup"):
            if not ctx.dry_run:
                ctx.console.step("Running preflight checks")
                run_preflight_checks(dry_run=ctx.dry_run, verbose=ctx.is_verbose)
                ctx.console.success("Preflight checks passed")
            else:
                ctx.console.dry_run_msg("Would run preflight checks (root, OS)")

            strongswan.install_packages(plan.cert_mode)

            # certbot's standalone HTTP challenge needs port 80 open first
            if plan.cert_mode is CertMode.LETSENCRYPT:
                ufw.allow(ACME_HTTP_RULE)

            bundle = certificates.obtain(plan.domain, plan.email)

            settings = IpsecSettings.from_config(
                plan.domain,
                config.ipsec.model_copy(update={"subnet": plan.subnet, "dns": plan.dns}),
                leftcert=bundle.leftcert,
            )
            strongswan.write_config(settings, bundle.key_ref, [plan.user])
            strongswan.restart()

            for rule in vpn_allow_rules():
                ufw.allow(rule)
            ufw.enable()

            ufw.patch_before_rules(
                plan.subnet,
                plan.interface,
                on_missing_anchor=config.firewall.on_missing_anchor.value,
            )
            ufw.patch_sysctl()
            ufw.reload()

    except VPNError as e:
        exit_code = e.exit_code
        ctx.console.warn("Setup stopped. Backups of modified files are kept next to the originals")
        raise
    finally:
        audit.log_session_end(exit_code)

    _print_summary(ctx, plan, bundle.ca_path)


def _print_summary(ctx: ExecutionContext, plan: SetupPlan, ca_path) -> None:
    ctx.console.print()
    if ctx.dry_run:
        ctx.console.success("Dry run complete. No changes were made.")
    else:
        ctx.console.success("IKEv2 VPN server is ready!")
    ctx.console.print()

    items = {
        "Server": plan.domain,
        "Username": plan.user.username,
        "Password": "(as entered)",
        "Certificate": plan.cert_mode.value,
        "Client address pool": plan.subnet,
        "DNS": ", ".join(plan.dns),
    }
    if ca_path is not None:
        items["CA certificate"] = str(ca_path)
    ctx.console.summary("Connection Details", items)

    if plan.cert_mode is CertMode.SELF_SIGNED:
        ctx.console.hint(
            "Clients must import the CA certificate above as a trusted root "
            "before connecting"
        )
    ctx.console.hint("Add more users with: vpnsetup user add")
