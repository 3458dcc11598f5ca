"""Service abstractions for the VPN host: strongSwan, certificates, UFW."""

from vpnsetup.services.certificates import CertificateBundle, CertificateService
from vpnsetup.services.strongswan import StrongSwanService
from vpnsetup.services.systemd import SystemdService
from vpnsetup.services.ufw import UfwService

__all__ = [
    "CertificateBundle",
    "CertificateService",
    "StrongSwanService",
    "SystemdService",
    "UfwService",
]
