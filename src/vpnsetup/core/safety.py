"""Pre-flight checks run before a provisioning run touches the host."""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Any

from vpnsetup.core.exceptions import PrerequisiteError
from vpnsetup.core.output import console


OS_RELEASE_PATH = Path("/etc/os-release")


class CheckResult(Enum):
    """Result of a pre-flight check."""
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"
    SKIP = "skip"


@dataclass(frozen=True)
class PreflightResult:
    """Immutable result of a pre-flight check."""
    check_name: str
    result: CheckResult
    message: str
    details: Optional[dict[str, Any]] = None
    remediation: Optional[str] = None


class PreflightCheck(ABC):
    """Base class for all pre-flight checks."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of the check."""
        ...

    @property
    @abstractmethod
    def critical(self) -> bool:
        """If True, failure blocks all operations."""
        ...

    @abstractmethod
    def run(self) -> PreflightResult:
        """Execute the check and return result."""
        ...


class RootCheck(PreflightCheck):
    """Verify script is running as root or with sudo."""

    name = "Root/Sudo Verification"
    critical = True

    def run(self) -> PreflightResult:
        if os.geteuid() != 0:
            return PreflightResult(
                check_name=self.name,
                result=CheckResult.FAIL,
                message="Must be run as root or with sudo",
                remediation="Run with: sudo vpnsetup <command>",
            )
        return PreflightResult(
            check_name=self.name,
            result=CheckResult.PASS,
            message="Running with root privileges",
        )


class OSCompatibilityCheck(PreflightCheck):
    """Verify OS is Debian or Ubuntu."""

    name = "OS Compatibility"
    critical = True

    SUPPORTED_DISTROS = frozenset({"debian", "ubuntu"})

    def __init__(self, os_release: Path = OS_RELEASE_PATH) -> None:
        self.os_release = os_release

    def run(self) -> PreflightResult:
        os_release = self._parse_os_release()

        if os_release is None:
            return PreflightResult(
                check_name=self.name,
                result=CheckResult.FAIL,
                message=f"{self.os_release} not found",
                remediation="This tool requires Debian or Ubuntu Linux",
            )

        distro_id = os_release.get("ID", "").lower()
        id_like = os_release.get("ID_LIKE", "").lower().split()
        pretty_name = os_release.get("PRETTY_NAME", distro_id)
        version = os_release.get("VERSION_ID", "unknown")

        if distro_id not in self.SUPPORTED_DISTROS and not self.SUPPORTED_DISTROS & set(id_like):
            return PreflightResult(
                check_name=self.name,
                result=CheckResult.FAIL,
                message=f"Unsupported OS: {pretty_name}",
                details={"detected_os": distro_id, "version": version},
                remediation="This tool supports Debian and Ubuntu only",
            )

        return PreflightResult(
            check_name=self.name,
            result=CheckResult.PASS,
            message=f"OS: {pretty_name}",
            details={"distro": distro_id, "version": version},
        )

    def _parse_os_release(self) -> Optional[dict[str, str]]:
        try:
            with open(self.os_release) as f:
                result = {}
                for line in f:
                    line = line.strip()
                    if "=" in line:
                        key, _, value = line.partition("=")
                        result[key] = value.strip('"').strip("'")
                return result
        except FileNotFoundError:
            return None


class PreflightRunner:
    """Orchestrates pre-flight checks."""

    DEFAULT_CHECKS: list[type[PreflightCheck]] = [
        RootCheck,
        OSCompatibilityCheck,
    ]

    def __init__(
        self,
        checks: Optional[list[type[PreflightCheck]]] = None,
        skip_root_check: bool = False,
    ) -> None:
        check_classes = checks or self.DEFAULT_CHECKS
        if skip_root_check:
            check_classes = [c for c in check_classes if c != RootCheck]
        self.checks = [c() for c in check_classes]

    def run_all(self, fail_fast: bool = True) -> list[PreflightResult]:
        """Run all pre-flight checks.

        Args:
            fail_fast: If True, stop on first critical failure
        """
        results = []

        for check in self.checks:
            result = check.run()
            results.append(result)

            if fail_fast and check.critical and result.result == CheckResult.FAIL:
                break

        return results

    def all_passed(self, results: list[PreflightResult]) -> bool:
        return not any(r.result == CheckResult.FAIL for r in results)

    def display_results(self, results: list[PreflightResult]) -> None:
        console.print()
        console.rule("Pre-flight Checks")

        for result in results:
            if result.result == CheckResult.PASS:
                status = "[green]PASS[/green]"
            elif result.result == CheckResult.WARN:
                status = "[yellow]WARN[/yellow]"
            elif result.result == CheckResult.FAIL:
                status = "[red]FAIL[/red]"
            else:
                status = "[dim]SKIP[/dim]"

            console.print(f"  {status} {result.check_name}: {result.message}")

            if result.remediation and result.result in (CheckResult.FAIL, CheckResult.WARN):
                console.print(f"        [dim]Fix: {result.remediation}[/dim]")

        console.print()


def run_preflight_checks(
    dry_run: bool = False,
    verbose: bool = False,
) -> bool:
    """Run pre-flight checks and return success status.

    In dry-run mode the root check is skipped so changes can be previewed
    as an unprivileged user.

    Raises:
        PrerequisiteError: If critical checks fail
    """
    runner = PreflightRunner(skip_root_check=dry_run)
    results = runner.run_all()

    if verbose:
        runner.display_results(results)

    if not runner.all_passed(results):
        failures = [r for r in results if r.result == CheckResult.FAIL]
        raise PrerequisiteError(
            "Pre-flight checks failed",
            details=[f"{r.check_name}: {r.message}" for r in failures],
            hint=next((r.remediation for r in failures if r.remediation), None),
        )

    return True
