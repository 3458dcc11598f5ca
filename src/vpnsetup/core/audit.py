"""Audit logging for provisioning runs.

Every change vpnsetup makes to the host (files written, services
restarted, firewall rules added, certificates issued) is recorded as one
JSON line in the audit log, tagged with the session and an optional
correlation id. Secrets are redacted before serialization. Audit failures
are reported at debug level and never abort a run.
"""

import fcntl
import json
import os
import pwd
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Generator, Optional

from vpnsetup.core.output import console


DEFAULT_LOG_PATH = Path("/var/log/vpnsetup/audit.log")
DEFAULT_MAX_SIZE_MB = 10
DEFAULT_BACKUP_COUNT = 5


class AuditEventType(Enum):
    """Types of auditable events."""
    SESSION_START = "session.start"
    SESSION_END = "session.end"

    PACKAGES_INSTALL = "packages.install"

    CERTIFICATE_ISSUE = "certificate.issue"

    CONFIG_WRITE = "config.write"
    CONFIG_BACKUP = "config.backup"

    SERVICE_RESTART = "service.restart"

    FIREWALL_PATCH = "firewall.patch"
    FIREWALL_RULE_ADD = "firewall.rule_add"
    FIREWALL_RELOAD = "firewall.reload"

    USER_ADD = "user.add"
    USER_REMOVE = "user.remove"

    SECURITY_BLOCKED = "security.blocked"


class AuditResult(Enum):
    """Result of an audited operation."""
    SUCCESS = "success"
    FAILURE = "failure"
    BLOCKED = "blocked"
    UNCHANGED = "unchanged"


SENSITIVE_KEYS = frozenset({
    "password", "secret", "key", "token", "credential", "pass", "passwd", "psk",
})


def _sanitize_value(key: str, value: Any) -> Any:
    """Redact values whose key suggests secret material."""
    key_lower = key.lower()

    if any(s in key_lower for s in SENSITIVE_KEYS):
        return "***REDACTED***"

    if isinstance(value, dict):
        return {k: _sanitize_value(k, v) for k, v in value.items()}

    if isinstance(value, list):
        return [_sanitize_value(key, v) for v in value]

    return value


def _current_username() -> str:
    try:
        return pwd.getpwuid(os.getuid()).pw_name
    except KeyError:
        return str(os.getuid())


@dataclass
class AuditEvent:
    """Represents a single audit event."""
    event_type: AuditEventType
    result: AuditResult
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    actor_uid: int = field(default_factory=os.getuid)
    actor_username: str = field(default_factory=_current_username)
    actor_sudo_user: Optional[str] = field(default_factory=lambda: os.environ.get("SUDO_USER"))

    target_type: Optional[str] = None
    target_name: Optional[str] = None

    operation: Optional[str] = None
    parameters: dict[str, Any] = field(default_factory=dict)

    message: Optional[str] = None
    error: Optional[str] = None

    session_id: Optional[str] = None
    correlation_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type.value,
            "result": self.result.value,
            "timestamp": self.timestamp.isoformat(),
            "actor": {
                "uid": self.actor_uid,
                "username": self.actor_username,
                "sudo_user": self.actor_sudo_user,
            },
            "target": {
                "type": self.target_type,
                "name": self.target_name,
            },
            "operation": self.operation,
            "parameters": {k: _sanitize_value(k, v) for k, v in self.parameters.items()},
            "message": self.message,
            "error": self.error,
            "session_id": self.session_id,
            "correlation_id": self.correlation_id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class AuditLogger:
    """Append-only JSON-lines audit logger with size-based rotation."""

    def __init__(
        self,
        log_path: Optional[Path] = None,
        max_size_mb: int = DEFAULT_MAX_SIZE_MB,
        backup_count: int = DEFAULT_BACKUP_COUNT,
        enabled: bool = True,
    ) -> None:
        self.log_path = log_path or DEFAULT_LOG_PATH
        self.max_size_bytes = max_size_mb * 1024 * 1024
        self.backup_count = backup_count
        self.enabled = enabled

        self.session_id = str(uuid.uuid4())
        self._correlation_stack: list[str] = []

    def _ensure_log_directory(self) -> bool:
        try:
            self.log_path.parent.mkdir(mode=0o750, parents=True, exist_ok=True)
            if not self.log_path.exists():
                self.log_path.touch(mode=0o640)
            return True
        except OSError as e:
            console.debug(f"Cannot create audit log directory: {e}")
            return False

    def log(self, event: AuditEvent) -> None:
        """Log an audit event."""
        if not self.enabled:
            return

        event.session_id = self.session_id
        if self._correlation_stack:
            event.correlation_id = self._correlation_stack[-1]

        log_line = event.to_json() + "\n"

        if not self._ensure_log_directory():
            return

        try:
            with self._locked_append() as f:
                f.write(log_line)
        except OSError as e:
            console.debug(f"Failed to write audit log: {e}")
            return

        self._rotate_if_needed()

    @contextmanager
    def _locked_append(self) -> Generator:
        fd = os.open(
            self.log_path,
            os.O_WRONLY | os.O_APPEND | os.O_CREAT,
            0o640,
        )
        with os.fdopen(fd, "a") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            yield f
            f.flush()
            os.fsync(f.fileno())

    def _rotate_if_needed(self) -> None:
        try:
            if self.log_path.stat().st_size > self.max_size_bytes:
                self._rotate_logs()
        except OSError as e:
            console.debug(f"Audit log rotation failed: {e}")

    def _rotate_logs(self) -> None:
        def numbered(i: int) -> Path:
            return self.log_path.with_name(f"{self.log_path.name}.{i}")

        oldest = numbered(self.backup_count)
        if oldest.exists():
            oldest.unlink()

        for i in range(self.backup_count - 1, 0, -1):
            if numbered(i).exists():
                numbered(i).rename(numbered(i + 1))

        self.log_path.rename(numbered(1))
        self.log_path.touch(mode=0o640)

    @contextmanager
    def correlation(self, operation: str) -> Generator[str, None, None]:
        """Tag every event logged inside the block with one correlation id.

        Usage:
            with audit.correlation("setup") as corr_id:
                audit.log(event1)
                audit.log(event2)  # Both have same correlation_id
        """
        correlation_id = f"{operation}_{uuid.uuid4().hex[:8]}"
        self._correlation_stack.append(correlation_id)
        try:
            yield correlation_id
        finally:
            self._correlation_stack.pop()

    def log_session_start(self, command: str, parameters: Optional[dict[str, Any]] = None) -> None:
        self.log(AuditEvent(
            event_type=AuditEventType.SESSION_START,
            result=AuditResult.SUCCESS,
            operation=command,
            parameters=parameters or {},
        ))

    def log_session_end(self, exit_code: int) -> None:
        self.log(AuditEvent(
            event_type=AuditEventType.SESSION_END,
            result=AuditResult.SUCCESS if exit_code == 0 else AuditResult.FAILURE,
            parameters={"exit_code": exit_code},
        ))

    def log_success(
        self,
        event_type: AuditEventType,
        target_type: str,
        target_name: str,
        message: Optional[str] = None,
        parameters: Optional[dict[str, Any]] = None,
    ) -> None:
        self.log(AuditEvent(
            event_type=event_type,
            result=AuditResult.SUCCESS,
            target_type=target_type,
            target_name=target_name,
            message=message,
            parameters=parameters or {},
        ))

    def log_unchanged(
        self,
        event_type: AuditEventType,
        target_type: str,
        target_name: str,
        message: Optional[str] = None,
    ) -> None:
        self.log(AuditEvent(
            event_type=event_type,
            result=AuditResult.UNCHANGED,
            target_type=target_type,
            target_name=target_name,
            message=message,
        ))

    def log_failure(
        self,
        event_type: AuditEventType,
        target_type: str,
        target_name: str,
        error: str,
    ) -> None:
        self.log(AuditEvent(
            event_type=event_type,
            result=AuditResult.FAILURE,
            target_type=target_type,
            target_name=target_name,
            error=error,
        ))

    def log_blocked(self, operation: str, reason: str) -> None:
        self.log(AuditEvent(
            event_type=AuditEventType.SECURITY_BLOCKED,
            result=AuditResult.BLOCKED,
            operation=operation,
            message=reason,
        ))


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get or create global audit logger."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def configure_audit_logger(
    log_path: Optional[Path] = None,
    enabled: bool = True,
) -> AuditLogger:
    """Configure and return the global audit logger."""
    global _audit_logger
    _audit_logger = AuditLogger(log_path=log_path, enabled=enabled)
    return _audit_logger
