"""Shared pytest fixtures."""

from pathlib import Path
from typing import Generator

import pytest

from vpnsetup.core.audit import configure_audit_logger
from vpnsetup.core.config import AppConfig, VPNConfig
from vpnsetup.core.context import ExecutionContext


@pytest.fixture(autouse=True)
def no_audit_log() -> Generator[None, None, None]:
    """Keep tests from writing to /var/log/vpnsetup."""
    configure_audit_logger(enabled=False)
    yield
    configure_audit_logger(enabled=False)


@pytest.fixture(autouse=True)
def no_password_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("VPNSETUP_PASSWORD", raising=False)


@pytest.fixture
def make_ctx(tmp_path: Path):
    """Build an ExecutionContext whose config points into tmp_path."""

    def _make(dry_run: bool = False, verbosity: int = 1, **overrides) -> ExecutionContext:
        data = {
            "strongswan": {
                "ipsec_conf": str(tmp_path / "ipsec.conf"),
                "ipsec_secrets": str(tmp_path / "ipsec.secrets"),
                "ipsec_dir": str(tmp_path / "ipsec.d"),
            },
            "certificates": {
                "pki_dir": str(tmp_path / "pki"),
                "letsencrypt_live_dir": str(tmp_path / "letsencrypt" / "live"),
            },
            "firewall": {
                "before_rules": str(tmp_path / "before.rules"),
                "sysctl_conf": str(tmp_path / "sysctl.conf"),
            },
        }
        data.update(overrides)
        config = AppConfig(config_path=tmp_path / "config.yaml", config=VPNConfig(**data))
        return ExecutionContext(
            dry_run=dry_run,
            verbosity=verbosity,
            config_path=tmp_path / "config.yaml",
            _config=config,
        )

    return _make
