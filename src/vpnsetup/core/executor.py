"""Command execution.

Provides:
- Safe command execution with output capture
- Result objects checked explicitly by callers
- Dry-run mode support
- apt helpers
- Timestamped backups and atomic file writes
"""

import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from vpnsetup.core.context import ExecutionContext
from vpnsetup.core.exceptions import ExecutionError
from vpnsetup.core.files import atomic_write


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        """Check if command succeeded."""
        return self.return_code == 0


class CommandExecutor:
    """Safe command execution with dry-run support and output capture.

    Features:
    - Dry-run mode shows what would happen
    - Output capture for processing
    - Timeout support
    - stdin feeding (for tools that read from a pipe)
    - Sensitive command masking
    """

    def __init__(self, ctx: ExecutionContext) -> None:
        self.ctx = ctx

    def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = True,
        capture: bool = True,
        sensitive: bool = False,
        read_only: bool = False,
        timeout: Optional[int] = None,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Path] = None,
        input_data: Optional[str] = None,
    ) -> CommandResult:
        """Execute a command safely.

        Args:
            command: Command as list of strings
            description: Human-readable description for logging
            check: Raise exception on non-zero exit
            capture: Capture stdout/stderr
            sensitive: Don't log the actual command
            read_only: Command has no side effects; run it even in dry-run
            timeout: Command timeout in seconds
            env: Additional environment variables
            cwd: Working directory
            input_data: Text fed to the command's stdin

        Returns:
            CommandResult with output

        Raises:
            ExecutionError: If command fails and check=True
        """
        if description:
            self.ctx.console.step(description)

        cmd_display = "<sensitive command>" if sensitive else shlex.join(command)
        self.ctx.console.debug(f"Running: {cmd_display}")

        if self.ctx.dry_run and not read_only:
            self.ctx.console.dry_run_msg(f"Run: {cmd_display}")
            return CommandResult(
                command=command,
                return_code=0,
                stdout="",
                stderr="",
            )

        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        try:
            result = subprocess.run(
                command,
                capture_output=capture,
                text=True,
                timeout=timeout,
                env=run_env,
                cwd=cwd,
                input=input_data,
            )
        except subprocess.TimeoutExpired:
            raise ExecutionError(
                f"Command timed out after {timeout}s: {description or cmd_display}",
                command=cmd_display,
            )
        except FileNotFoundError:
            raise ExecutionError(
                f"Command not found: {command[0]}",
                command=cmd_display,
                hint=f"Install the package that provides {command[0]}",
            )

        cmd_result = CommandResult(
            command=command,
            return_code=result.returncode,
            stdout=result.stdout if capture else "",
            stderr=result.stderr if capture else "",
        )

        if check and result.returncode != 0:
            raise ExecutionError(
                f"Command failed: {description or cmd_display}",
                command=cmd_display,
                return_code=result.returncode,
                stderr=result.stderr if capture else None,
            )

        return cmd_result

    def apt_update(self) -> CommandResult:
        """Refresh the apt package index."""
        return self.run(
            ["apt-get", "update", "-y"],
            description="Update apt cache",
            env={"DEBIAN_FRONTEND": "noninteractive"},
        )

    def apt_install(
        self,
        packages: list[str],
        *,
        description: Optional[str] = None,
    ) -> CommandResult:
        """Install packages via apt."""
        desc = description or f"Install {', '.join(packages)}"
        return self.run(
            ["apt-get", "install", "-y"] + packages,
            description=desc,
            env={"DEBIAN_FRONTEND": "noninteractive"},
        )

    def write_file(
        self,
        path: Path,
        content: str,
        *,
        description: Optional[str] = None,
        permissions: int = 0o644,
        sensitive: bool = False,
    ) -> None:
        """Write content to a file atomically.

        Args:
            path: Destination path
            content: File content
            description: Human-readable description
            permissions: File permissions
            sensitive: Never preview the content (secrets files)
        """
        desc = description or f"Write {path}"
        self.ctx.console.step(desc)

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(
                f"Write {len(content)} bytes to {path} (mode {permissions:o})"
            )
            if self.ctx.is_verbose and not sensitive:
                self.ctx.console.code(content, title=str(path))
            return

        atomic_write(path, content, permissions=permissions)
        self.ctx.console.debug(f"Wrote {path} (mode {permissions:o})")

    def backup_file(
        self,
        path: Path,
        *,
        suffix: str = ".bak",
    ) -> Optional[Path]:
        """Create a timestamped copy of a file.

        An existing backup is never overwritten: if the microsecond
        timestamp is already taken a counter is appended.

        Returns:
            Path to backup file, or None if original doesn't exist
        """
        if not path.exists():
            return None

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        backup_path = path.with_name(f"{path.name}.{timestamp}{suffix}")
        counter = 1
        while backup_path.exists():
            backup_path = path.with_name(f"{path.name}.{timestamp}-{counter}{suffix}")
            counter += 1

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Backup {path} to {backup_path}")
            return backup_path

        shutil.copy2(path, backup_path)
        self.ctx.console.verbose(f"Backed up {path} to {backup_path}")
        return backup_path
