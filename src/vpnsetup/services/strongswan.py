"""StrongSwan service.

Provides:
- Package installation for either certificate mode
- ipsec.conf / ipsec.secrets rendering from typed settings
- Backed-up, atomic writes (secrets at mode 0600)
- EAP user management on an existing secrets file
- Daemon enable/restart
"""

import ipaddress
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from jinja2 import Environment, PackageLoader, select_autoescape
from pydantic import BaseModel, Field, SecretStr, field_validator

from vpnsetup.core.audit import AuditEventType, get_audit_logger
from vpnsetup.core.config import CertMode, IpsecConfig, StrongSwanConfig, as_value_error
from vpnsetup.core.context import ExecutionContext
from vpnsetup.core.exceptions import (
    ExecutionError,
    PrerequisiteError,
    ServiceError,
    ValidationError,
)
from vpnsetup.core.executor import CommandExecutor
from vpnsetup.core.files import SECURE_FILE_PERMS
from vpnsetup.core.validation import (
    validate_domain,
    validate_eap_password,
    validate_username,
)
from vpnsetup.services.systemd import SystemdService


jinja_env = Environment(
    loader=PackageLoader("vpnsetup", "templates"),
    autoescape=select_autoescape(),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)

BASE_PACKAGES = [
    "strongswan",
    "libcharon-extra-plugins",
    "libcharon-extauth-plugins",
    "libstrongswan-extra-plugins",
    "ufw",
]

MODE_PACKAGES = {
    CertMode.SELF_SIGNED: ["strongswan-pki", "libtss2-tcti-tabrmd0"],
    CertMode.LETSENCRYPT: ["certbot"],
}

_EAP_LINE = re.compile(r'^\s*(?P<username>[^\s:#"]+)\s*:\s*EAP\s+"(?P<password>[^"]*)"\s*$')


class IpsecSettings(BaseModel):
    """Everything ipsec.conf needs for one IKEv2 connection."""

    domain: str
    leftcert: str = "server-cert.pem"
    connection_name: str = "ikev2-vpn"
    subnet: str = "10.10.10.0/24"
    dns: list[str] = Field(default_factory=lambda: ["8.8.8.8", "8.8.4.4"])
    ike: str = "aes256-sha256-modp2048!"
    esp: str = "aes256-sha256!"
    charondebug: str = "ike 1, knl 1, cfg 0"
    dpd_delay: str = "300s"

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        return as_value_error(validate_domain, v)

    @field_validator("leftcert")
    @classmethod
    def validate_leftcert(cls, v: str) -> str:
        if not v or any(c.isspace() for c in v):
            raise ValueError("Certificate reference must be non-empty and contain no spaces")
        return v

    @classmethod
    def from_config(cls, domain: str, ipsec: IpsecConfig, leftcert: str) -> "IpsecSettings":
        return cls(domain=domain, leftcert=leftcert, **ipsec.model_dump())

    @property
    def leftid(self) -> str:
        """Server identity: ``@fqdn`` for names, the bare address for IPs."""
        try:
            ipaddress.ip_address(self.domain)
        except ValueError:
            return f"@{self.domain}"
        return self.domain


class EapUser(BaseModel):
    """An EAP-MSCHAPv2 username/password pair."""

    username: str
    password: SecretStr

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        return as_value_error(validate_username, v)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: SecretStr) -> SecretStr:
        as_value_error(validate_eap_password, v.get_secret_value())
        return v


def render_ipsec_conf(settings: IpsecSettings) -> str:
    template = jinja_env.get_template("ipsec.conf.j2")
    return template.render(
        charondebug=settings.charondebug,
        connection_name=settings.connection_name,
        dpd_delay=settings.dpd_delay,
        leftid=settings.leftid,
        leftcert=settings.leftcert,
        subnet=settings.subnet,
        dns=settings.dns,
        ike=settings.ike,
        esp=settings.esp,
    )


def render_ipsec_secrets(key_ref: str, users: Sequence[EapUser]) -> str:
    template = jinja_env.get_template("ipsec.secrets.j2")
    return template.render(key_ref=key_ref, users=users)


@dataclass
class SecretsFile:
    """An ipsec.secrets file split into EAP entries and everything else."""
    lines: list[str]

    @classmethod
    def parse(cls, text: str) -> "SecretsFile":
        return cls(lines=text.splitlines())

    def usernames(self) -> list[str]:
        names = []
        for line in self.lines:
            match = _EAP_LINE.match(line)
            if match:
                names.append(match.group("username"))
        return names

    def _index(self, username: str) -> Optional[int]:
        for i, line in enumerate(self.lines):
            match = _EAP_LINE.match(line)
            if match and match.group("username") == username:
                return i
        return None

    def set_user(self, user: EapUser) -> bool:
        """Add or replace a user's line. Returns True if the user already existed."""
        entry = f'{user.username} : EAP "{user.password.get_secret_value()}"'
        pos = self._index(user.username)
        if pos is None:
            self.lines.append(entry)
            return False
        self.lines[pos] = entry
        return True

    def remove_user(self, username: str) -> bool:
        pos = self._index(username)
        if pos is None:
            return False
        del self.lines[pos]
        return True

    def render(self) -> str:
        return "\n".join(self.lines) + "\n"


class StrongSwanService:
    """Installs, configures and restarts strongSwan."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        config: Optional[StrongSwanConfig] = None,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.config = config or StrongSwanConfig()
        self.systemd = SystemdService(ctx, executor)
        self.audit = get_audit_logger()

    # =========================================================================
    # Installation
    # =========================================================================

    def install_packages(self, mode: CertMode) -> list[str]:
        """Install strongSwan, its plugins, ufw and the certificate tooling."""
        packages = BASE_PACKAGES + MODE_PACKAGES[mode]
        self.executor.apt_update()
        self.executor.apt_install(packages, description="Install strongSwan and dependencies")
        self.audit.log_success(
            AuditEventType.PACKAGES_INSTALL,
            "packages",
            "strongswan",
            parameters={"packages": packages},
        )
        return packages

    # =========================================================================
    # Configuration
    # =========================================================================

    def write_config(
        self,
        settings: IpsecSettings,
        key_ref: str,
        users: Sequence[EapUser],
    ) -> None:
        """Back up and rewrite ipsec.conf (0644) and ipsec.secrets (0600)."""
        if not users:
            raise ValidationError("At least one VPN user is required")

        conf = render_ipsec_conf(settings)
        secrets = render_ipsec_secrets(key_ref, users)

        for path in (self.config.ipsec_conf, self.config.ipsec_secrets):
            backup = self.executor.backup_file(path)
            if backup:
                self.audit.log_success(
                    AuditEventType.CONFIG_BACKUP, "file", str(path),
                    parameters={"backup": str(backup)},
                )

        self.executor.write_file(
            self.config.ipsec_conf,
            conf,
            description=f"Write {self.config.ipsec_conf}",
            permissions=0o644,
        )
        self.executor.write_file(
            self.config.ipsec_secrets,
            secrets,
            description=f"Write {self.config.ipsec_secrets}",
            permissions=SECURE_FILE_PERMS,
            sensitive=True,
        )

        self.audit.log_success(
            AuditEventType.CONFIG_WRITE, "file", str(self.config.ipsec_conf),
            parameters={"connection": settings.connection_name, "subnet": settings.subnet},
        )
        self.audit.log_success(
            AuditEventType.CONFIG_WRITE, "file", str(self.config.ipsec_secrets),
            parameters={"users": [u.username for u in users]},
        )

    # =========================================================================
    # Service
    # =========================================================================

    def restart(self) -> None:
        """Enable the daemon at boot and restart it to load the new config."""
        service = self.config.service
        self.systemd.enable(service)
        self.systemd.restart(service, description=f"Restarting {service}")
        if not self.ctx.dry_run and not self.systemd.is_active(service):
            raise ServiceError(
                f"{service} is not running after restart",
                service=service,
                hint=f"Check logs: journalctl -xeu {service}",
            )
        self.audit.log_success(AuditEventType.SERVICE_RESTART, "service", service)

    def reread_secrets(self) -> None:
        """Make the running daemon pick up ipsec.secrets changes."""
        try:
            self.executor.run(["ipsec", "rereadsecrets"], description="Reload VPN secrets")
        except ExecutionError as e:
            raise ServiceError(
                "strongSwan did not reload its secrets",
                service=self.config.service,
                details=e.details,
                hint=f"Restart the daemon: systemctl restart {self.config.service}",
            ) from e

    # =========================================================================
    # EAP users
    # =========================================================================

    def _load_secrets(self) -> SecretsFile:
        path = self.config.ipsec_secrets
        try:
            return SecretsFile.parse(path.read_text())
        except FileNotFoundError:
            raise PrerequisiteError(
                f"{path} does not exist",
                hint="Provision the server first: vpnsetup setup",
            )
        except OSError as e:
            raise PrerequisiteError(
                f"Cannot read {path}",
                details=[str(e)],
                hint="Run with sudo",
            ) from e

    def _save_secrets(self, secrets: SecretsFile) -> None:
        path = self.config.ipsec_secrets
        self.executor.backup_file(path)
        self.executor.write_file(
            path,
            secrets.render(),
            description=f"Write {path}",
            permissions=SECURE_FILE_PERMS,
            sensitive=True,
        )

    def list_users(self) -> list[str]:
        """Usernames configured in ipsec.secrets (passwords are never returned)."""
        return self._load_secrets().usernames()

    def add_user(self, user: EapUser) -> bool:
        """Add a user, or replace the password of an existing one.

        Returns:
            True if an existing user was updated
        """
        secrets = self._load_secrets()
        existed = secrets.set_user(user)
        self._save_secrets(secrets)
        self.reread_secrets()
        self.audit.log_success(
            AuditEventType.USER_ADD, "eap_user", user.username,
            parameters={"replaced": existed},
        )
        return existed

    def remove_user(self, username: str) -> None:
        """Remove a user.

        Raises:
            ValidationError: If the user is not configured
        """
        secrets = self._load_secrets()
        if not secrets.remove_user(username):
            raise ValidationError(
                f"VPN user not found: {username}",
                hint="List users with: vpnsetup user list",
            )
        if not secrets.usernames():
            self.ctx.console.warn("No VPN users remain; clients cannot connect until one is added")
        self._save_secrets(secrets)
        self.reread_secrets()
        self.audit.log_success(AuditEventType.USER_REMOVE, "eap_user", username)
