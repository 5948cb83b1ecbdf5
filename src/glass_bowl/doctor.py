"""Health checks and self-diagnostics for glass-bowl."""

from __future__ import annotations

import sys
from enum import StrEnum
from pathlib import Path

import httpx
from pydantic import BaseModel, Field

from glass_bowl.config import Settings
from glass_bowl.store import SQLITE_HEADER


class CheckStatus(StrEnum):
    """Status for a doctor check item."""

    OK = "ok"
    WARN = "warn"
    FAIL = "fail"


class CheckResult(BaseModel):
    """A single doctor check result."""

    name: str
    status: CheckStatus
    message: str
    details: dict[str, str] = Field(default_factory=dict)


class DoctorReport(BaseModel):
    """Aggregate report for all diagnostics."""

    checks: list[CheckResult]

    @property
    def healthy(self) -> bool:
        return all(check.status != CheckStatus.FAIL for check in self.checks)

    @property
    def exit_code(self) -> int:
        return 0 if self.healthy else 1


def _check_config_schema(config_path: Path | None) -> CheckResult:
    try:
        Settings.load(config_path=config_path)
        return CheckResult(
            name="config-schema",
            status=CheckStatus.OK,
            message="Configuration schema is valid.",
        )
    except Exception as exc:
        return CheckResult(
            name="config-schema",
            status=CheckStatus.FAIL,
            message="Configuration schema validation failed.",
            details={"error": str(exc)},
        )


def _check_retry_policy(settings: Settings) -> CheckResult:
    policy = settings.retry.policy()
    schedule = ", ".join(f"{delay}ms" for delay in policy.delays_ms) or "none"
    if policy.max_retries == 0:
        return CheckResult(
            name="retry-policy",
            status=CheckStatus.WARN,
            message="Retries are disabled; one failed load is permanent.",
            details={"delays": schedule},
        )
    return CheckResult(
        name="retry-policy",
        status=CheckStatus.OK,
        message=f"Up to {policy.max_retries} retries.",
        details={"delays": schedule},
    )


def _check_terminal() -> CheckResult:
    if sys.stdin.isatty() and sys.stdout.isatty():
        return CheckResult(
            name="terminal",
            status=CheckStatus.OK,
            message="Running in an interactive terminal.",
        )
    return CheckResult(
        name="terminal",
        status=CheckStatus.WARN,
        message="Not a terminal; key bindings and pause/resume are unavailable.",
    )


def _probe_snapshot(url: str, timeout: float) -> CheckResult:
    try:
        response = httpx.get(url, timeout=timeout)
    except httpx.HTTPError as exc:
        return CheckResult(
            name="snapshot-endpoint",
            status=CheckStatus.FAIL,
            message="Snapshot endpoint is unreachable.",
            details={"url": url, "error": str(exc)},
        )

    if response.status_code != 200:
        return CheckResult(
            name="snapshot-endpoint",
            status=CheckStatus.FAIL,
            message="Snapshot endpoint returned an error.",
            details={"url": url, "status": str(response.status_code)},
        )
    if not response.content.startswith(SQLITE_HEADER):
        return CheckResult(
            name="snapshot-endpoint",
            status=CheckStatus.FAIL,
            message="Snapshot endpoint did not return a SQLite database.",
            details={"url": url, "size": str(len(response.content))},
        )
    return CheckResult(
        name="snapshot-endpoint",
        status=CheckStatus.OK,
        message="Snapshot endpoint serves a SQLite database.",
        details={"url": url, "size": str(len(response.content))},
    )


def run_doctor(
    settings: Settings,
    config_path: Path | None = None,
    probe_server: bool = True,
) -> DoctorReport:
    """Run all health checks and return a structured report."""
    checks = [
        _check_config_schema(config_path),
        _check_retry_policy(settings),
    ]

    if probe_server:
        checks.append(
            _probe_snapshot(settings.server.snapshot_url, settings.server.timeout)
        )
    else:
        checks.append(
            CheckResult(
                name="snapshot-endpoint",
                status=CheckStatus.WARN,
                message="Snapshot endpoint probe was skipped.",
            )
        )

    checks.append(_check_terminal())
    return DoctorReport(checks=checks)
