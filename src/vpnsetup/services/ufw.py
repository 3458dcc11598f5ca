"""UFW firewall service.

Provides:
- The VPN's NAT, mangle and IPsec policy rule blocks for before.rules
- The forwarding/redirect toggles for UFW's sysctl.conf
- Idempotent patching of both files with timestamped backups
- ufw allow/enable/disable/reload/status wrappers
"""

import stat
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from vpnsetup.core.audit import AuditEventType, get_audit_logger
from vpnsetup.core.context import ExecutionContext
from vpnsetup.core.exceptions import ExecutionError, FirewallError
from vpnsetup.core.executor import CommandExecutor
from vpnsetup.services.patcher import (
    PatchAction,
    PatchResult,
    RuleBlock,
    Side,
    SysctlToggle,
    TargetFile,
    apply_blocks,
    apply_toggles,
    contains,
    prefix,
)


UFW_BEFORE_RULES = Path("/etc/ufw/before.rules")
UFW_SYSCTL_CONF = Path("/etc/ufw/sysctl.conf")

FILTER_ANCHOR = prefix("*filter")
NOT_LOCAL_ANCHOR = contains(":ufw-not-local - [0:0]")

# TCP MSS clamp for tunneled traffic
MSS_RANGE = "1361:1536"
CLAMPED_MSS = 1360

VPN_SYSCTL_TOGGLES: tuple[SysctlToggle, ...] = (
    SysctlToggle("net/ipv4/ip_forward=1"),
    SysctlToggle("net/ipv4/conf/all/accept_redirects=0"),
    SysctlToggle("net/ipv4/conf/all/send_redirects=0"),
    SysctlToggle("net/ipv4/ip_no_pmtu_disc=1"),
)


class Protocol(str, Enum):
    """Network protocol for a ufw rule."""
    TCP = "tcp"
    UDP = "udp"
    ANY = "any"


@dataclass(frozen=True)
class UfwRule:
    """A ``ufw allow`` rule: an application profile or port/protocol."""
    port: Optional[str] = None
    protocol: Protocol = Protocol.ANY
    app: Optional[str] = None

    def __post_init__(self) -> None:
        if bool(self.port) == bool(self.app):
            raise ValueError("UfwRule needs exactly one of port or app")

    def spec(self) -> str:
        if self.app:
            return self.app
        if self.protocol is Protocol.ANY:
            return str(self.port)
        return f"{self.port}/{self.protocol.value}"

    def __str__(self) -> str:
        return f"allow {self.spec()}"


SSH_RULE = UfwRule(app="OpenSSH")
IKE_RULE = UfwRule(port="500", protocol=Protocol.UDP)
NAT_T_RULE = UfwRule(port="4500", protocol=Protocol.UDP)
ACME_HTTP_RULE = UfwRule(port="80", protocol=Protocol.TCP)


def vpn_allow_rules() -> list[UfwRule]:
    """Rules the VPN needs: SSH (never lock the operator out), IKE, NAT-T."""
    return [SSH_RULE, IKE_RULE, NAT_T_RULE]


def build_vpn_blocks(subnet: str, interface: str) -> list[RuleBlock]:
    """Rule blocks for /etc/ufw/before.rules, in application order.

    The nat and mangle tables go before the ``*filter`` table. The two
    IPsec policy-match rules go after the ``:ufw-not-local`` chain
    declaration inside the filter table.
    """
    nat = RuleBlock(
        name="nat",
        marker=prefix("*nat"),
        lines=(
            "*nat",
            f"-A POSTROUTING -s {subnet} -o {interface} -m policy --pol ipsec --dir out -j ACCEPT",
            f"-A POSTROUTING -s {subnet} -o {interface} -j MASQUERADE",
            "COMMIT",
            "",
        ),
        anchor=FILTER_ANCHOR,
        side=Side.BEFORE,
    )
    mangle = RuleBlock(
        name="mangle",
        marker=prefix("*mangle"),
        lines=(
            "*mangle",
            f"-A FORWARD --match policy --pol ipsec --dir in -s {subnet} -o {interface}"
            f" -p tcp -m tcp --tcp-flags SYN,RST SYN -m tcpmss --mss {MSS_RANGE}"
            f" -j TCPMSS --set-mss {CLAMPED_MSS}",
            "COMMIT",
            "",
        ),
        anchor=FILTER_ANCHOR,
        side=Side.BEFORE,
    )
    policy_in = RuleBlock(
        name="ipsec-policy-in",
        marker=contains("ufw-before-forward --match policy --pol ipsec --dir in"),
        lines=(
            f"-A ufw-before-forward --match policy --pol ipsec --dir in --proto esp -s {subnet} -j ACCEPT",
        ),
        anchor=NOT_LOCAL_ANCHOR,
        side=Side.AFTER,
    )
    policy_out = RuleBlock(
        name="ipsec-policy-out",
        marker=contains("ufw-before-forward --match policy --pol ipsec --dir out"),
        lines=(
            f"-A ufw-before-forward --match policy --pol ipsec --dir out --proto esp -d {subnet} -j ACCEPT",
        ),
        anchor=NOT_LOCAL_ANCHOR,
        side=Side.AFTER,
    )
    return [nat, mangle, policy_in, policy_out]


@dataclass
class UfwStatus:
    """Parsed ``ufw status`` output."""
    active: bool
    rules: list[str] = field(default_factory=list)


class UfwService:
    """Safe interface for UFW.

    All operations respect dry-run mode. Every failing ufw invocation
    raises FirewallError.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        before_rules: Path = UFW_BEFORE_RULES,
        sysctl_conf: Path = UFW_SYSCTL_CONF,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.before_rules = before_rules
        self.sysctl_conf = sysctl_conf
        self.audit = get_audit_logger()

    # ------------------------------------------------------------------
    # ufw commands
    # ------------------------------------------------------------------

    def _run_ufw(self, args: list[str], description: str) -> None:
        try:
            self.executor.run(["ufw"] + args, description=description)
        except ExecutionError as e:
            raise FirewallError(
                f"ufw {' '.join(args)} failed",
                rule=" ".join(args),
                details=e.details,
                hint="Check 'ufw status verbose' and /var/log/ufw.log",
            ) from e

    def allow(self, rule: UfwRule) -> None:
        """Add an allow rule (ufw skips rules that already exist)."""
        self._run_ufw(["allow", rule.spec()], f"Allow {rule.spec()}")
        self.audit.log_success(
            AuditEventType.FIREWALL_RULE_ADD, "ufw_rule", rule.spec(),
        )

    def enable(self) -> None:
        self._run_ufw(["--force", "enable"], "Enable UFW")

    def disable(self) -> None:
        self._run_ufw(["--force", "disable"], "Disable UFW")

    def reload(self) -> None:
        """Disable and re-enable UFW so before.rules and sysctl.conf are re-read."""
        self.disable()
        self.enable()
        self.audit.log_success(AuditEventType.FIREWALL_RELOAD, "service", "ufw")

    def status(self) -> UfwStatus:
        result = self.executor.run(
            ["ufw", "status"],
            check=False,
            read_only=True,
        )
        if not result.success:
            raise FirewallError(
                "Cannot read UFW status",
                details=[result.stderr.strip()] if result.stderr else None,
                hint="Is ufw installed? Try: apt-get install ufw",
            )

        lines = result.stdout.splitlines()
        active = any(line.strip().lower() == "status: active" for line in lines)
        rules = [
            line.rstrip()
            for line in lines
            if line.strip()
            and not line.lower().startswith("status:")
            and not line.startswith("To ")
            and not set(line.strip()) <= {"-", " "}
        ]
        return UfwStatus(active=active, rules=rules)

    # ------------------------------------------------------------------
    # File patching
    # ------------------------------------------------------------------

    def patch_before_rules(
        self,
        subnet: str,
        interface: str,
        *,
        on_missing_anchor: str = "raise",
    ) -> PatchResult:
        """Add the VPN's NAT, mangle and policy rules to before.rules once."""
        self.ctx.console.step(f"Patching {self.before_rules}")

        target = TargetFile.load(self.before_rules)
        if not target.exists:
            self.ctx.console.warn(
                f"{self.before_rules} does not exist; it will be created with the VPN rules only"
            )

        result = apply_blocks(
            target.lines,
            build_vpn_blocks(subnet, interface),
            on_missing_anchor=on_missing_anchor,
            path=str(self.before_rules),
        )

        if target.exists:
            for name in result.names(PatchAction.APPENDED):
                self.ctx.console.warn(
                    f"Anchor for rule block '{name}' not found; appended at end of {self.before_rules}"
                )

        self._persist(target, result)
        return result

    def patch_sysctl(self) -> PatchResult:
        """Enable forwarding and disable ICMP redirects in UFW's sysctl.conf."""
        self.ctx.console.step(f"Patching {self.sysctl_conf}")

        target = TargetFile.load(self.sysctl_conf)
        result = apply_toggles(target.lines, VPN_SYSCTL_TOGGLES)

        for setting in result.names(PatchAction.REPLACED):
            self.ctx.console.warn(f"Overriding conflicting value with {setting}")

        self._persist(target, result)
        return result

    def _persist(self, target: TargetFile, result: PatchResult) -> None:
        """Back up and atomically rewrite a patched file if anything changed."""
        for name, action in result.actions.items():
            self.ctx.console.verbose(f"  {name}: {action.value}")

        if not result.changed:
            self.ctx.console.info(f"{target.path} already up to date")
            self.audit.log_unchanged(
                AuditEventType.FIREWALL_PATCH, "file", str(target.path),
            )
            return

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Patch {target.path}")
            if self.ctx.is_verbose:
                self.ctx.console.diff(target.diff(result.lines), title=str(target.path))
            return

        permissions = 0o640
        if target.exists:
            permissions = stat.S_IMODE(target.path.stat().st_mode)
            backup = self.executor.backup_file(target.path)
            if backup:
                self.ctx.console.info(f"Backed up {target.path} to {backup}")

        try:
            self.executor.write_file(
                target.path,
                target.render(result.lines),
                description=f"Write {target.path}",
                permissions=permissions,
            )
        except OSError as e:
            raise FirewallError(
                f"Cannot write {target.path}",
                details=[str(e)],
                hint="The original file is unchanged; check permissions and disk space",
            ) from e

        changed = {
            name: action.value
            for name, action in result.actions.items()
            if action is not PatchAction.PRESENT
        }
        self.audit.log_success(
            AuditEventType.FIREWALL_PATCH,
            "file",
            str(target.path),
            parameters={"changes": changed},
        )
        self.ctx.console.success(
            f"Updated {target.path}: {', '.join(changed)}"
        )
