"""
vpnsetup - IKEv2 IPsec VPN server provisioning.

Sets up StrongSwan with a self-signed or Let's Encrypt certificate and
patches UFW for NAT and IPsec forwarding on Debian/Ubuntu servers.
"""

__version__ = "1.0.0"
