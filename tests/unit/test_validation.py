"""Unit tests for the validation module."""

import pytest

from vpnsetup.core.validation import (
    MAX_USERNAME_LENGTH,
    MIN_PASSWORD_LENGTH,
    validate_dns_server,
    validate_domain,
    validate_eap_password,
    validate_email,
    validate_interface,
    validate_required,
    validate_subnet,
    validate_username,
)
from vpnsetup.core.exceptions import ValidationError


class TestValidateRequired:
    """Tests for required-value checks."""

    def test_strips_value(self):
        assert validate_required("  alice ", "VPN username") == "alice"

    def test_empty_values_fail(self):
        for value in (None, "", "   ", "\t\n"):
            with pytest.raises(ValidationError) as exc:
                validate_required(value, "Domain")
            assert "Domain is required" in str(exc.value)

    def test_exit_code(self):
        with pytest.raises(ValidationError) as exc:
            validate_required("", "Domain")
        assert exc.value.exit_code == 1


class TestValidateDomain:
    """Tests for server domain validation."""

    def test_valid_domains(self):
        assert validate_domain("vpn.example.com") == "vpn.example.com"
        assert validate_domain("VPN.Example.COM") == "vpn.example.com"
        assert validate_domain("vpn.example.com.") == "vpn.example.com"
        assert validate_domain("a-b.c-d.io") == "a-b.c-d.io"

    def test_ipv4_accepted(self):
        assert validate_domain("203.0.113.7") == "203.0.113.7"

    def test_single_label_fails(self):
        with pytest.raises(ValidationError) as exc:
            validate_domain("localhost")
        assert "vpn.example.com" in exc.value.hint

    def test_bad_labels_fail(self):
        for domain in ("-vpn.example.com", "vpn-.example.com", "vpn..example.com", "vpn_1.example.com"):
            with pytest.raises(ValidationError):
                validate_domain(domain)

    def test_empty_fails(self):
        with pytest.raises(ValidationError):
            validate_domain("")


class TestValidateUsername:
    """Tests for EAP username validation."""

    def test_valid_usernames(self):
        for name in ("alice", "bob.smith", "carol@example.com", "dave+phone", "e_f-g"):
            assert validate_username(name) == name

    def test_invalid_characters(self):
        for name in ("al ice", 'al"ice', "alice:admin", "alice#1", "ali\nce"):
            with pytest.raises(ValidationError):
                validate_username(name)

    def test_too_long(self):
        with pytest.raises(ValidationError) as exc:
            validate_username("a" * (MAX_USERNAME_LENGTH + 1))
        assert "maximum length" in str(exc.value)


class TestValidateEapPassword:
    """Tests for EAP password validation."""

    def test_valid_password(self):
        assert validate_eap_password("correct horse battery") == "correct horse battery"

    def test_not_stripped(self):
        assert validate_eap_password("  spaced out  ") == "  spaced out  "

    def test_empty_fails(self):
        for value in (None, ""):
            with pytest.raises(ValidationError) as exc:
                validate_eap_password(value)
            assert "required" in str(exc.value)

    def test_too_short(self):
        with pytest.raises(ValidationError) as exc:
            validate_eap_password("a" * (MIN_PASSWORD_LENGTH - 1))
        assert any("at least" in d for d in exc.value.details)

    def test_forbidden_characters(self):
        for value in ('pass"word123', "pass\nword123", "pass\rword123"):
            with pytest.raises(ValidationError):
                validate_eap_password(value)

    def test_error_never_contains_password(self):
        secret = 'hunter2"xyz'
        with pytest.raises(ValidationError) as exc:
            validate_eap_password(secret)
        assert secret not in str(exc.value)
        assert all(secret not in d for d in exc.value.details)


class TestValidateEmail:
    """Tests for email validation."""

    def test_valid(self):
        assert validate_email("admin@example.com") == "admin@example.com"

    def test_invalid(self):
        for value in ("admin", "admin@", "@example.com", "a b@example.com", "admin@example"):
            with pytest.raises(ValidationError):
                validate_email(value)


class TestValidateSubnet:
    """Tests for client subnet validation."""

    def test_normalizes(self):
        assert validate_subnet("10.10.10.0/24") == "10.10.10.0/24"
        assert validate_subnet("10.10.10.7/24") == "10.10.10.0/24"
        assert validate_subnet("192.168.50.0/24") == "192.168.50.0/24"

    def test_public_range_fails(self):
        with pytest.raises(ValidationError) as exc:
            validate_subnet("8.8.8.0/24")
        assert "private" in str(exc.value)

    def test_too_broad_fails(self):
        with pytest.raises(ValidationError):
            validate_subnet("10.0.0.0/7")

    def test_too_narrow_fails(self):
        assert validate_subnet("10.10.10.0/30") == "10.10.10.0/30"
        for value in ("10.10.10.0/31", "10.10.10.1/32"):
            with pytest.raises(ValidationError) as exc:
                validate_subnet(value)
            assert "/30" in exc.value.hint

    def test_garbage_fails(self):
        for value in ("10.10.10.0/33", "not-a-cidr", "fd00::/64"):
            with pytest.raises(ValidationError):
                validate_subnet(value)


class TestValidateDnsServer:
    """Tests for DNS server validation."""

    def test_valid(self):
        assert validate_dns_server("8.8.8.8") == "8.8.8.8"
        assert validate_dns_server("2001:4860:4860::8888") == "2001:4860:4860::8888"

    def test_invalid(self):
        with pytest.raises(ValidationError):
            validate_dns_server("dns.google")


class TestValidateInterface:
    """Tests for interface name validation."""

    def test_valid(self):
        for name in ("eth0", "ens3", "enp0s31f6", "wg0", "eth0.100"):
            assert validate_interface(name) == name

    def test_invalid(self):
        for name in ("a" * 16, "eth 0", "eth0;rm", "eth0/1"):
            with pytest.raises(ValidationError):
                validate_interface(name)
