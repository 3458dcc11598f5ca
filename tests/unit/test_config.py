"""Unit tests for configuration loading."""

import stat
from pathlib import Path

import pytest
import yaml

from vpnsetup.core.config import (
    AppConfig,
    CertMode,
    MissingAnchorPolicy,
    VPNConfig,
    get_example_config,
    init_config,
)
from vpnsetup.core.exceptions import ConfigurationError


class TestDefaults:
    """Tests for built-in defaults."""

    def test_ipsec_defaults(self):
        config = VPNConfig()
        assert config.ipsec.connection_name == "ikev2-vpn"
        assert config.ipsec.subnet == "10.10.10.0/24"
        assert config.ipsec.dns == ["8.8.8.8", "8.8.4.4"]
        assert config.ipsec.ike == "aes256-sha256-modp2048!"
        assert config.ipsec.esp == "aes256-sha256!"

    def test_other_defaults(self):
        config = VPNConfig()
        assert config.domain is None
        assert config.strongswan.service == "strongswan-starter"
        assert config.certificates.mode is CertMode.SELF_SIGNED
        assert config.certificates.key_size == 4096
        assert config.firewall.before_rules == Path("/etc/ufw/before.rules")
        assert config.firewall.on_missing_anchor is MissingAnchorPolicy.RAISE


class TestLoad:
    """Tests for YAML loading."""

    def test_load_overrides(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "domain: VPN.Example.com\n"
            "ipsec:\n"
            "  subnet: 10.20.0.0/16\n"
            "  dns: [1.1.1.1]\n"
            "certificates:\n"
            "  mode: letsencrypt\n"
            "  email: admin@example.com\n"
            "firewall:\n"
            "  interface: ens3\n"
            "  on_missing_anchor: append\n"
        )

        config = VPNConfig.load(path)

        assert config.domain == "vpn.example.com"
        assert config.ipsec.subnet == "10.20.0.0/16"
        assert config.ipsec.dns == ["1.1.1.1"]
        assert config.certificates.mode is CertMode.LETSENCRYPT
        assert config.firewall.interface == "ens3"
        assert config.firewall.on_missing_anchor is MissingAnchorPolicy.APPEND

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigurationError) as exc:
            VPNConfig.load(tmp_path / "absent.yaml")
        assert "vpnsetup config init" in exc.value.hint
        assert exc.value.exit_code == 2

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("ipsec: [unclosed\n")
        with pytest.raises(ConfigurationError):
            VPNConfig.load(path)

    def test_not_a_mapping(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            VPNConfig.load(path)

    def test_invalid_values(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        for body in (
            "ipsec:\n  subnet: 8.8.8.0/24\n",
            "ipsec:\n  dns: []\n",
            "ipsec:\n  ike: 'aes256 sha256'\n",
            "certificates:\n  key_size: 1024\n",
            "certificates:\n  mode: acme\n",
            "firewall:\n  interface: 'eth 0'\n",
            "domain: localhost\n",
        ):
            path.write_text(body)
            with pytest.raises(ConfigurationError):
                VPNConfig.load(path)

    def test_empty_file_gives_defaults(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert VPNConfig.load(path) == VPNConfig()

    def test_load_or_default(self, tmp_path: Path):
        assert VPNConfig.load_or_default(tmp_path / "absent.yaml") == VPNConfig()


class TestSerialization:
    """Tests for config output."""

    def test_to_yaml_round_trip(self):
        config = VPNConfig(domain="vpn.example.com")
        data = yaml.safe_load(config.to_yaml())
        assert data["domain"] == "vpn.example.com"
        assert data["certificates"]["mode"] == "self-signed"
        assert VPNConfig(**data) == config

    def test_example_config_is_valid(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text(get_example_config())
        assert VPNConfig.load(path) == VPNConfig()


class TestInitConfig:
    """Tests for config init."""

    def test_creates_private_file(self, tmp_path: Path):
        path = tmp_path / "etc" / "config.yaml"
        init_config(path)
        assert path.read_text() == get_example_config()
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_refuses_overwrite(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("domain: vpn.example.com\n")
        with pytest.raises(ConfigurationError) as exc:
            init_config(path)
        assert "--force" in exc.value.hint
        init_config(path, force=True)
        assert path.read_text() == get_example_config()


class TestSecrets:
    """Tests for environment secrets."""

    def test_password_from_environment(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("VPNSETUP_PASSWORD", "from-the-env")
        app_config = AppConfig(config_path=tmp_path / "absent.yaml")
        assert app_config.secrets.vpnsetup_password == "from-the-env"

    def test_password_not_in_config_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("VPNSETUP_PASSWORD", "from-the-env")
        app_config = AppConfig(config_path=tmp_path / "absent.yaml")
        assert "from-the-env" not in app_config.config.to_yaml()
