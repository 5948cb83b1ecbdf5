"""Unit tests for doctor diagnostics."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest
import respx
from httpx import Response
from typer.testing import CliRunner

from glass_bowl.cli import app
from glass_bowl.config import Settings
from glass_bowl.doctor import (
    CheckResult,
    CheckStatus,
    DoctorReport,
    _check_config_schema,
    _check_retry_policy,
    _probe_snapshot,
    run_doctor,
)

if TYPE_CHECKING:
    from pathlib import Path

runner = CliRunner()

SNAPSHOT_URL = "http://antfarm.test/api/db"


@pytest.fixture(autouse=True)
def _isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)


class TestCheckConfigSchema:
    """Config schema diagnostics."""

    def test_valid_schema_returns_ok(self) -> None:
        assert _check_config_schema(config_path=None).status == CheckStatus.OK

    def test_invalid_schema_returns_fail(self, tmp_path: Path) -> None:
        config = tmp_path / "bad.yaml"
        config.write_text("server:\n  base_url: farm\n", encoding="utf-8")
        result = _check_config_schema(config_path=config)
        assert result.status == CheckStatus.FAIL
        assert "error" in result.details


class TestCheckRetryPolicy:
    """Retry policy diagnostics."""

    def test_default_policy_ok(self) -> None:
        result = _check_retry_policy(Settings.load())
        assert result.status == CheckStatus.OK
        assert result.details["delays"] == "1000ms, 2000ms, 4000ms"

    def test_disabled_retries_warn(self) -> None:
        result = _check_retry_policy(Settings.load(retry={"max_retries": 0, "delays_ms": []}))
        assert result.status == CheckStatus.WARN
        assert result.details["delays"] == "none"


class TestProbeSnapshot:
    """Snapshot endpoint probe."""

    @respx.mock
    def test_sqlite_payload_ok(self, snapshot_bytes: bytes) -> None:
        respx.get(SNAPSHOT_URL).mock(return_value=Response(200, content=snapshot_bytes))
        assert _probe_snapshot(SNAPSHOT_URL, 1.0).status == CheckStatus.OK

    @respx.mock
    def test_error_status_fails(self) -> None:
        respx.get(SNAPSHOT_URL).mock(return_value=Response(404))
        result = _probe_snapshot(SNAPSHOT_URL, 1.0)
        assert result.status == CheckStatus.FAIL
        assert result.details["status"] == "404"

    @respx.mock
    def test_non_sqlite_fails(self) -> None:
        respx.get(SNAPSHOT_URL).mock(return_value=Response(200, content=b"{}"))
        result = _probe_snapshot(SNAPSHOT_URL, 1.0)
        assert result.status == CheckStatus.FAIL
        assert "SQLite" in result.message

    @respx.mock
    def test_unreachable_fails(self) -> None:
        respx.get(SNAPSHOT_URL).mock(side_effect=httpx.ConnectError("refused"))
        result = _probe_snapshot(SNAPSHOT_URL, 1.0)
        assert result.status == CheckStatus.FAIL
        assert "refused" in result.details["error"]


class TestDoctorReport:
    """Report aggregation and exit codes."""

    def test_warn_is_healthy(self) -> None:
        report = DoctorReport(
            checks=[CheckResult(name="a", status=CheckStatus.WARN, message="meh")]
        )
        assert report.healthy
        assert report.exit_code == 0

    def test_fail_is_unhealthy(self) -> None:
        report = DoctorReport(
            checks=[
                CheckResult(name="a", status=CheckStatus.OK, message="fine"),
                CheckResult(name="b", status=CheckStatus.FAIL, message="broken"),
            ]
        )
        assert not report.healthy
        assert report.exit_code == 1

    def test_run_doctor_without_probe(self) -> None:
        report = run_doctor(Settings.load(), probe_server=False)
        names = [check.name for check in report.checks]
        assert names == ["config-schema", "retry-policy", "snapshot-endpoint", "terminal"]
        probe = report.checks[2]
        assert probe.status == CheckStatus.WARN


class TestDoctorCommand:
    """doctor CLI command."""

    @respx.mock
    def test_renders_table(self, snapshot_bytes: bytes) -> None:
        respx.get("http://localhost:3333/api/db").mock(
            return_value=Response(200, content=snapshot_bytes)
        )
        result = runner.invoke(app, ["doctor"])
        assert result.exit_code == 0, result.output
        assert "Glass Bowl Doctor" in result.output
        assert "snapshot-endpoint" in result.output

    @respx.mock
    def test_unreachable_server_exits_one(self) -> None:
        respx.get("http://localhost:3333/api/db").mock(
            side_effect=httpx.ConnectError("refused")
        )
        result = runner.invoke(app, ["doctor", "--quiet"])
        assert result.exit_code == 1
        assert "Glass Bowl Doctor" not in result.output

    def test_no_probe_is_healthy(self) -> None:
        result = runner.invoke(app, ["doctor", "--no-probe", "--quiet"])
        assert result.exit_code == 0
