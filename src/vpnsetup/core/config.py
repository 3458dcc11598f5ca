"""Configuration management using Pydantic.

Provides:
- Typed configuration models with validation
- YAML file loading with defaults
- Environment variable overrides for secrets
- Configuration initialization and display
"""

import os
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from vpnsetup.core.exceptions import ConfigurationError, ValidationError
from vpnsetup.core.validation import (
    validate_dns_server,
    validate_domain,
    validate_email,
    validate_interface,
    validate_subnet,
)


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/vpnsetup/config.yaml")


def as_value_error(func, value):
    """Run a vpnsetup validator, re-raising failures the way pydantic expects."""
    try:
        return func(value)
    except ValidationError as e:
        raise ValueError(e.message) from e


class CertMode(str, Enum):
    """Where the server certificate comes from."""
    SELF_SIGNED = "self-signed"
    LETSENCRYPT = "letsencrypt"


class MissingAnchorPolicy(str, Enum):
    """What to do when a rule block's anchor line is absent."""
    RAISE = "raise"
    APPEND = "append"


class IpsecConfig(BaseModel):
    """IKEv2 connection parameters rendered into ipsec.conf."""

    connection_name: str = "ikev2-vpn"
    subnet: str = "10.10.10.0/24"
    dns: list[str] = Field(default_factory=lambda: ["8.8.8.8", "8.8.4.4"])
    ike: str = "aes256-sha256-modp2048!"
    esp: str = "aes256-sha256!"
    charondebug: str = "ike 1, knl 1, cfg 0"
    dpd_delay: str = "300s"

    @field_validator("subnet")
    @classmethod
    def validate_subnet(cls, v: str) -> str:
        return as_value_error(validate_subnet, v)

    @field_validator("dns")
    @classmethod
    def validate_dns(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("At least one DNS server is required")
        return [as_value_error(validate_dns_server, server) for server in v]

    @field_validator("connection_name")
    @classmethod
    def validate_connection_name(cls, v: str) -> str:
        if not v or any(c.isspace() for c in v):
            raise ValueError("connection_name must be a single non-empty word")
        return v

    @field_validator("ike", "esp")
    @classmethod
    def validate_proposal(cls, v: str) -> str:
        if not v or any(c.isspace() for c in v):
            raise ValueError("Cipher proposals must be non-empty and contain no spaces")
        return v


class StrongSwanConfig(BaseModel):
    """StrongSwan file locations and service name."""

    ipsec_conf: Path = Path("/etc/ipsec.conf")
    ipsec_secrets: Path = Path("/etc/ipsec.secrets")
    ipsec_dir: Path = Path("/etc/ipsec.d")
    service: str = "strongswan-starter"


class CertificateConfig(BaseModel):
    """Server certificate settings."""

    mode: CertMode = CertMode.SELF_SIGNED
    email: Optional[str] = None

    # Self-signed PKI
    pki_dir: Path = Path("/root/pki")
    key_size: int = 4096
    ca_lifetime_days: int = 3650
    server_lifetime_days: int = 1825
    ca_common_name: str = "VPN root CA"

    # Let's Encrypt
    letsencrypt_live_dir: Path = Path("/etc/letsencrypt/live")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        if v:
            return as_value_error(validate_email, v)
        return v

    @field_validator("key_size")
    @classmethod
    def validate_key_size(cls, v: int) -> int:
        if v not in (2048, 3072, 4096):
            raise ValueError("key_size must be one of: 2048, 3072, 4096")
        return v


class FirewallConfig(BaseModel):
    """UFW settings."""

    before_rules: Path = Path("/etc/ufw/before.rules")
    sysctl_conf: Path = Path("/etc/ufw/sysctl.conf")
    interface: Optional[str] = None  # auto-detected when unset
    on_missing_anchor: MissingAnchorPolicy = MissingAnchorPolicy.RAISE

    @field_validator("interface")
    @classmethod
    def validate_interface(cls, v: Optional[str]) -> Optional[str]:
        if v:
            return as_value_error(validate_interface, v)
        return v


class VPNConfig(BaseModel):
    """Root configuration model.

    Loaded from /etc/vpnsetup/config.yaml when present. VPN passwords are
    NOT stored in this file - they are prompted for or come from the
    environment.
    """

    domain: Optional[str] = None
    ipsec: IpsecConfig = Field(default_factory=IpsecConfig)
    strongswan: StrongSwanConfig = Field(default_factory=StrongSwanConfig)
    certificates: CertificateConfig = Field(default_factory=CertificateConfig)
    firewall: FirewallConfig = Field(default_factory=FirewallConfig)

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: Optional[str]) -> Optional[str]:
        if v:
            return as_value_error(validate_domain, v)
        return v

    @classmethod
    def load(cls, path: Path) -> "VPNConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            Loaded configuration

        Raises:
            ConfigurationError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Create it with: vpnsetup config init",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions or run with sudo",
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping: {path}",
            )

        try:
            return cls(**data)
        except Exception as e:
            raise ConfigurationError(
                f"Invalid configuration: {path}",
                details=[str(e)],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "VPNConfig":
        """Load configuration, falling back to defaults if file doesn't exist."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self) -> str:
        """Convert configuration to YAML string."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class SecretsConfig(BaseSettings):
    """Secrets loaded from environment variables.

    These are NEVER stored in config files.
    """

    vpnsetup_password: Optional[str] = Field(None, alias="VPNSETUP_PASSWORD")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


class AppConfig:
    """Application configuration combining config file and secrets."""

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[VPNConfig] = None,
    ) -> None:
        """Initialize application configuration.

        Args:
            config_path: Path to config file (uses default if None)
            config: Pre-loaded config (skips file loading if provided)
        """
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = config or VPNConfig.load_or_default(self.config_path)
        self._secrets = SecretsConfig()

    @property
    def config(self) -> VPNConfig:
        return self._config

    @property
    def secrets(self) -> SecretsConfig:
        return self._secrets

    @property
    def ipsec(self) -> IpsecConfig:
        return self._config.ipsec

    @property
    def strongswan(self) -> StrongSwanConfig:
        return self._config.strongswan

    @property
    def certificates(self) -> CertificateConfig:
        return self._config.certificates

    @property
    def firewall(self) -> FirewallConfig:
        return self._config.firewall


def get_example_config() -> str:
    """Generate example configuration file content."""
    return """# vpnsetup configuration
# VPN passwords are NOT stored here; they are prompted for or read
# from the VPNSETUP_PASSWORD environment variable.

# Server identity (prompted for when unset)
# domain: vpn.example.com

ipsec:
  connection_name: ikev2-vpn
  subnet: 10.10.10.0/24     # address pool handed to clients
  dns:
    - 8.8.8.8
    - 8.8.4.4
  ike: aes256-sha256-modp2048!
  esp: aes256-sha256!

strongswan:
  ipsec_conf: /etc/ipsec.conf
  ipsec_secrets: /etc/ipsec.secrets
  ipsec_dir: /etc/ipsec.d
  service: strongswan-starter

certificates:
  mode: self-signed         # self-signed, letsencrypt
  # email: admin@example.com  # required for letsencrypt
  pki_dir: /root/pki
  key_size: 4096
  ca_lifetime_days: 3650
  server_lifetime_days: 1825

firewall:
  before_rules: /etc/ufw/before.rules
  sysctl_conf: /etc/ufw/sysctl.conf
  # interface: eth0         # auto-detected from the default route when unset
  on_missing_anchor: raise  # raise, append
"""


def init_config(path: Path, force: bool = False) -> None:
    """Initialize a new configuration file.

    Args:
        path: Path to create config file
        force: Overwrite if exists

    Raises:
        ConfigurationError: If file exists and force is False
    """
    if path.exists() and not force:
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            hint="Use --force to overwrite",
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_example_config())
    os.chmod(path, 0o600)
