"""Systemd service abstraction.

Provides a safe interface for managing the VPN daemon's unit.
"""

from typing import Optional

from vpnsetup.core.context import ExecutionContext
from vpnsetup.core.executor import CommandExecutor
from vpnsetup.core.exceptions import ExecutionError, ServiceError


class SystemdService:
    """Safe interface for managing systemd services.

    All operations respect dry-run mode and log appropriately.
    """

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    def is_active(self, service: str) -> bool:
        """Check if a service is active (running)."""
        if self.ctx.dry_run:
            return False

        result = self.executor.run(
            ["systemctl", "is-active", "--quiet", service],
            check=False,
        )
        return result.success

    def restart(self, service: str, *, description: Optional[str] = None) -> None:
        """Restart a service.

        Raises:
            ServiceError: If service fails to restart
        """
        desc = description or f"Restarting {service}"
        self.ctx.console.step(desc)

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"systemctl restart {service}")
            return

        try:
            self.executor.run(["systemctl", "restart", service])
        except ExecutionError as e:
            raise ServiceError(
                f"Failed to restart {service}",
                service=service,
                details=e.details,
                hint=f"Check logs: journalctl -xeu {service}",
            ) from e

    def enable(self, service: str, *, description: Optional[str] = None) -> None:
        """Enable a service to start on boot.

        Raises:
            ServiceError: If the unit cannot be enabled
        """
        desc = description or f"Enabling {service}"
        self.ctx.console.step(desc)

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"systemctl enable {service}")
            return

        try:
            self.executor.run(["systemctl", "enable", service])
        except ExecutionError as e:
            raise ServiceError(
                f"Failed to enable {service}",
                service=service,
                details=e.details,
                hint=f"Check that the unit exists: systemctl list-unit-files {service}.service",
            ) from e
