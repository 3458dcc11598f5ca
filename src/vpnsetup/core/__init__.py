"""Core framework components for vpnsetup."""

from vpnsetup.core.exceptions import (
    VPNError,
    ConfigurationError,
    ValidationError,
    ExecutionError,
    PrerequisiteError,
    InterfaceNotFoundError,
    ServiceError,
    FirewallError,
    AnchorNotFoundError,
    CertificateError,
    MissingCertificateError,
)

from vpnsetup.core.context import ExecutionContext, create_context
from vpnsetup.core.output import console, Console, Verbosity
from vpnsetup.core.config import AppConfig, VPNConfig, CertMode, MissingAnchorPolicy
from vpnsetup.core.safety import PreflightRunner, run_preflight_checks
from vpnsetup.core.audit import (
    AuditLogger,
    AuditEvent,
    AuditEventType,
    AuditResult,
    get_audit_logger,
)
from vpnsetup.core.executor import CommandExecutor, CommandResult

__all__ = [
    # Exceptions
    "VPNError",
    "ConfigurationError",
    "ValidationError",
    "ExecutionError",
    "PrerequisiteError",
    "InterfaceNotFoundError",
    "ServiceError",
    "FirewallError",
    "AnchorNotFoundError",
    "CertificateError",
    "MissingCertificateError",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "VPNConfig",
    "CertMode",
    "MissingAnchorPolicy",
    # Safety
    "PreflightRunner",
    "run_preflight_checks",
    # Audit
    "AuditLogger",
    "AuditEvent",
    "AuditEventType",
    "AuditResult",
    "get_audit_logger",
    # Executor
    "CommandExecutor",
    "CommandResult",
]
