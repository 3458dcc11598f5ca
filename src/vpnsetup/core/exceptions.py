"""Custom exceptions for the VPN provisioning CLI.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- Exit codes for proper shell integration
"""

from typing import Optional


class VPNError(Exception):
    """Base exception for all vpnsetup errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        exit_code: Shell exit code (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class ConfigurationError(VPNError):
    """Configuration file or settings errors.

    Raised when:
    - Config file unreadable
    - Invalid YAML syntax
    - Invalid configuration values
    """
    exit_code = 2


class ValidationError(VPNError):
    """Input validation errors.

    Raised when:
    - Domain, username or password is empty
    - Invalid CIDR notation or DNS address
    - Values that would corrupt ipsec.conf or ipsec.secrets
    """
    exit_code = 1


class ExecutionError(VPNError):
    """Command execution failures.

    Raised when:
    - Shell command returns non-zero exit code
    - Command times out
    - Command binary is missing
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr.strip()}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class PrerequisiteError(VPNError):
    """Missing prerequisites.

    Raised when:
    - Not running as root
    - Unsupported OS
    - VPN not provisioned yet
    """
    exit_code = 6


class InterfaceNotFoundError(PrerequisiteError):
    """The internet-facing network interface cannot be determined."""
    exit_code = 1


class ServiceError(VPNError):
    """Systemd service errors.

    Raised when:
    - Enable/restart fails
    """
    exit_code = 13

    def __init__(
        self,
        message: str,
        *,
        service: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.service = service


class FirewallError(VPNError):
    """UFW errors.

    Raised when:
    - ufw command fails
    - before.rules or sysctl.conf cannot be read or written
    """
    exit_code = 15

    def __init__(
        self,
        message: str,
        *,
        rule: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.rule = rule


class AnchorNotFoundError(FirewallError):
    """A rule block has no line to anchor against in the target file."""

    def __init__(
        self,
        block: str,
        anchor: str,
        *,
        path: Optional[str] = None,
    ) -> None:
        where = path or "target file"
        super().__init__(
            f"Cannot place rule block '{block}': anchor {anchor!r} not found in {where}",
            rule=block,
            hint=f"Add a line matching {anchor!r} to {where} or insert the block manually",
        )
        self.block = block
        self.anchor = anchor
        self.path = path


class CertificateError(VPNError):
    """Certificate generation or issuance errors.

    Raised when:
    - pki or certbot fails
    - Certificate directories cannot be created
    """
    exit_code = 18


class MissingCertificateError(CertificateError):
    """A certificate or key is absent after pki/certbot reported success."""
    exit_code = 1
