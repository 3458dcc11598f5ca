"""Network detection utilities.

Provides:
- Default-route interface detection (the interface VPN traffic is NATed to)
"""

import subprocess
from dataclasses import dataclass
from typing import Optional

from vpnsetup.core.exceptions import InterfaceNotFoundError
from vpnsetup.core.validation import validate_interface


@dataclass
class DefaultRoute:
    """The IPv4 default route."""
    interface: str
    gateway: Optional[str] = None


def parse_default_route(output: str) -> Optional[DefaultRoute]:
    """Parse ``ip route show default`` output.

    Example line::

        default via 203.0.113.1 dev eth0 proto dhcp src 203.0.113.7 metric 100

    Returns:
        The first default route, or None if there is none
    """
    for line in output.splitlines():
        parts = line.split()
        if not parts or parts[0] != "default":
            continue

        interface = None
        gateway = None
        for i, part in enumerate(parts[:-1]):
            if part == "dev":
                interface = parts[i + 1]
            elif part == "via":
                gateway = parts[i + 1]

        if interface:
            return DefaultRoute(interface=interface, gateway=gateway)

    return None


def detect_default_interface() -> str:
    """Find the interface that carries the default route.

    Returns:
        Interface name, e.g. ``eth0``

    Raises:
        InterfaceNotFoundError: If no default route can be found
    """
    try:
        result = subprocess.run(
            ["ip", "-4", "route", "show", "default"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as e:
        raise InterfaceNotFoundError(
            "Could not determine the default internet-facing interface",
            details=[str(e)],
            hint="Pass it explicitly with --interface",
        ) from e

    route = parse_default_route(result.stdout) if result.returncode == 0 else None
    if route is None:
        raise InterfaceNotFoundError(
            "Could not determine the default internet-facing interface",
            details=[result.stderr.strip()] if result.stderr.strip() else None,
            hint="Check 'ip route show default' or pass --interface",
        )

    return validate_interface(route.interface)


def resolve_interface(explicit: Optional[str] = None) -> str:
    """Use the explicit interface if given, otherwise detect it.

    Raises:
        ValidationError: If the explicit name is malformed
        InterfaceNotFoundError: If detection fails
    """
    if explicit:
        return validate_interface(explicit)
    return detect_default_interface()
