"""Input validation utilities.

Provides validation for:
- Server domain names (the IKE identity and certificate subject)
- EAP usernames and passwords (written into ipsec.secrets)
- Network configuration (client subnet, DNS servers, interface names)
- Let's Encrypt contact email

All validators return the validated value or raise ValidationError.
Values are validated before any file on the host is touched.
"""

import ipaddress
import re
from typing import Optional

from vpnsetup.core.exceptions import ValidationError


# RFC 1035 label: letters, digits, hyphens; no leading/trailing hyphen
DOMAIN_LABEL_PATTERN = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")
MAX_DOMAIN_LENGTH = 253

# EAP identities end up unquoted on the left of ": EAP" in ipsec.secrets
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9._@+-]+$")
MAX_USERNAME_LENGTH = 64

# Passwords are written inside double quotes in ipsec.secrets
PASSWORD_FORBIDDEN_CHARS = frozenset({'"', "\n", "\r", "\x00"})
MIN_PASSWORD_LENGTH = 8

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Linux IFNAMSIZ is 16 including the terminating NUL
INTERFACE_PATTERN = re.compile(r"^[A-Za-z0-9_.:@-]{1,15}$")


def validate_required(value: Optional[str], field_name: str) -> str:
    """Ensure a required value is present and not blank.

    Raises:
        ValidationError: If the value is None, empty or whitespace only
    """
    if value is None or not value.strip():
        raise ValidationError(
            f"{field_name} is required",
            hint=f"Provide a non-empty {field_name.lower()}",
        )
    return value.strip()


def validate_domain(value: str) -> str:
    """Validate a server domain name.

    Accepts a fully qualified host name (``vpn.example.com``) or a bare IPv4
    address, which strongSwan also accepts as the left identity.

    Returns:
        The validated domain, lower-cased

    Raises:
        ValidationError: If validation fails
    """
    value = validate_required(value, "Server domain")

    try:
        ipaddress.IPv4Address(value)
        return value
    except ValueError:
        pass

    domain = value.rstrip(".").lower()

    if len(domain) > MAX_DOMAIN_LENGTH:
        raise ValidationError(
            f"Domain name too long ({len(domain)} > {MAX_DOMAIN_LENGTH} characters)",
        )

    labels = domain.split(".")
    if len(labels) < 2:
        raise ValidationError(
            f"Invalid server domain: {value}",
            hint="Use a fully qualified name such as vpn.example.com",
        )

    bad = [label for label in labels if not DOMAIN_LABEL_PATTERN.match(label)]
    if bad:
        raise ValidationError(
            f"Invalid server domain: {value}",
            hint="Domain labels may contain letters, digits and hyphens only",
            details=[f"Invalid label: {label!r}" for label in bad],
        )

    return domain


def validate_username(value: str) -> str:
    """Validate an EAP username.

    Raises:
        ValidationError: If validation fails
    """
    value = validate_required(value, "VPN username")

    if len(value) > MAX_USERNAME_LENGTH:
        raise ValidationError(
            f"VPN username exceeds maximum length of {MAX_USERNAME_LENGTH}",
        )

    if not USERNAME_PATTERN.fullmatch(value):
        raise ValidationError(
            f"Invalid VPN username: {value}",
            hint="Use letters, digits and . _ @ + - only",
        )

    return value


def validate_eap_password(value: Optional[str], min_length: int = MIN_PASSWORD_LENGTH) -> str:
    """Validate an EAP password.

    Unlike other fields the password is not stripped: leading or trailing
    spaces are part of the secret.

    Raises:
        ValidationError: If validation fails
    """
    if not value:
        raise ValidationError(
            "VPN password is required",
            hint="Provide a non-empty VPN password",
        )

    issues = []

    if len(value) < min_length:
        issues.append(f"Must be at least {min_length} characters (got {len(value)})")

    forbidden = sorted(repr(c) for c in PASSWORD_FORBIDDEN_CHARS if c in value)
    if forbidden:
        issues.append(f"Must not contain {', '.join(forbidden)}")

    if issues:
        raise ValidationError(
            "VPN password does not meet requirements",
            details=issues,
        )

    return value


def validate_email(value: str) -> str:
    """Validate the Let's Encrypt registration email.

    Raises:
        ValidationError: If validation fails
    """
    value = validate_required(value, "Email address")

    if not EMAIL_PATTERN.match(value):
        raise ValidationError(
            f"Invalid email address: {value}",
            hint="Let's Encrypt uses this address for expiry notices",
        )

    return value


def validate_subnet(value: str) -> str:
    """Validate the client address pool (rightsourceip) CIDR.

    The pool must be an IPv4 network in a private range, between /8 and /30,
    since it is masqueraded behind the server's public address and needs at
    least two usable client addresses.

    Returns:
        The normalized network string (e.g. ``10.10.10.0/24``)

    Raises:
        ValidationError: If validation fails
    """
    value = validate_required(value, "Client subnet")

    try:
        network = ipaddress.IPv4Network(value, strict=False)
    except ValueError as e:
        raise ValidationError(
            f"Invalid CIDR notation: {value}",
            hint="Use format like 10.10.10.0/24",
            details=[str(e)],
        ) from e

    if not network.is_private:
        raise ValidationError(
            f"Client subnet {network} is not a private range",
            hint="Use an RFC 1918 range such as 10.10.10.0/24",
        )

    if network.prefixlen < 8:
        raise ValidationError(
            f"'{network}' is an extremely broad range ({network.num_addresses:,} addresses)",
            hint="Use a /8 or smaller pool",
        )

    if network.prefixlen > 30:
        raise ValidationError(
            f"'{network}' has no room for client addresses",
            hint="Use a /30 or larger pool, e.g. 10.10.10.0/24",
        )

    return str(network)


def validate_dns_server(value: str) -> str:
    """Validate a DNS server address pushed to clients.

    Raises:
        ValidationError: If validation fails
    """
    value = validate_required(value, "DNS server")
    try:
        return str(ipaddress.ip_address(value))
    except ValueError as e:
        raise ValidationError(
            f"Invalid DNS server address: {value}",
            details=[str(e)],
        ) from e


def validate_interface(value: str) -> str:
    """Validate a network interface name.

    Raises:
        ValidationError: If validation fails
    """
    value = validate_required(value, "Network interface")
    if not INTERFACE_PATTERN.fullmatch(value):
        raise ValidationError(
            f"Invalid network interface name: {value}",
            hint="Interface names are 1-15 characters, e.g. eth0 or ens3",
        )
    return value
