"""Typer CLI entry point for glass-bowl."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Any

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from glass_bowl import __version__
from glass_bowl.config import Settings, format_validation_error
from glass_bowl.dashboard import build_no_data_panel, build_runs_table
from glass_bowl.doctor import CheckStatus, run_doctor
from glass_bowl.exceptions import GlassBowlError
from glass_bowl.logging import configure_logging, generate_session_id
from glass_bowl.viewer import load_snapshot, run_viewer

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="glass-bowl",
    help="Live terminal view of active antfarm workflow runs.",
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings(
    config_path: Path | None = None,
    **overrides: Any,
) -> Settings:
    """Load settings with error handling and user-friendly messages."""
    from pydantic import ValidationError

    try:
        return Settings.load(config_path=config_path, **overrides)
    except ValidationError as exc:
        err_console.print(
            Panel(
                format_validation_error(exc),
                title="Configuration Error",
                border_style="red",
            )
        )
        raise typer.Exit(code=1) from exc


def _server_overrides(url: str | None) -> dict[str, Any]:
    return {"server": {"base_url": url}} if url else {}


def _report_error(exc: GlassBowlError) -> None:
    err_console.print(Panel(str(exc), title="Error", border_style="red"))


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]glass-bowl[/bold] {__version__}")
        raise typer.Exit


@app.callback()
def common(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Glass-bowl global options."""


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def watch(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to config YAML file."),
    ] = None,
    url: Annotated[
        str | None,
        typer.Option("--url", "-u", help="Base URL of the antfarm dashboard server."),
    ] = None,
    interval: Annotated[
        float | None,
        typer.Option("--interval", "-i", help="Refresh interval in seconds."),
    ] = None,
    full_screen: Annotated[
        bool,
        typer.Option("--full-screen", help="Draw on the alternate screen."),
    ] = False,
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", help="Write logs to this file while watching."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    """Watch active runs live until q or Ctrl+C."""
    overrides = _server_overrides(url)
    if interval is not None:
        overrides["refresh"] = {"interval_seconds": interval}
    if full_screen:
        overrides["display"] = {"full_screen": True}
    if verbose:
        overrides["logging"] = {"level": "DEBUG"}
    if log_file is not None:
        overrides.setdefault("logging", {})["file"] = log_file

    settings = _load_settings(config, **overrides)

    # The live display owns the terminal, so logs only go to a file.
    configure_logging(
        level=settings.logging.level,
        fmt=settings.logging.format,
        log_file=settings.logging.file,
        session_id=generate_session_id(),
        stderr=False,
    )

    try:
        asyncio.run(run_viewer(settings, console))
    except GlassBowlError as exc:
        _report_error(exc)
        raise typer.Exit(code=1) from exc


@app.command()
def snapshot(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to config YAML file."),
    ] = None,
    url: Annotated[
        str | None,
        typer.Option("--url", "-u", help="Base URL of the antfarm dashboard server."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    """Download the run database once and print the active runs."""
    overrides = _server_overrides(url)
    if verbose:
        overrides["logging"] = {"level": "DEBUG"}
    settings = _load_settings(config, **overrides)
    configure_logging(
        level=settings.logging.level,
        fmt=settings.logging.format,
        log_file=settings.logging.file,
    )

    try:
        runs, steps_by_run = asyncio.run(load_snapshot(settings))
    except GlassBowlError as exc:
        _report_error(exc)
        raise typer.Exit(code=1) from exc

    if not runs:
        console.print(build_no_data_panel())
        return
    console.print(build_runs_table(runs, steps_by_run, settings.display))


@app.command()
def doctor(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to config YAML file."),
    ] = None,
    no_probe: Annotated[
        bool,
        typer.Option("--no-probe", help="Skip the snapshot endpoint probe (offline mode)."),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", help="Suppress table output, use exit code only."),
    ] = False,
) -> None:
    """Run self-diagnostics and health checks for this environment."""
    settings = _load_settings(config)
    report = run_doctor(
        settings=settings,
        config_path=config,
        probe_server=not no_probe,
    )

    if not quiet:
        table = Table(title="Glass Bowl Doctor", show_lines=True)
        table.add_column("Check", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Message")

        status_style = {
            CheckStatus.OK: "[green]OK[/green]",
            CheckStatus.WARN: "[yellow]WARN[/yellow]",
            CheckStatus.FAIL: "[red]FAIL[/red]",
        }

        for check in report.checks:
            table.add_row(check.name, status_style[check.status], check.message)
        console.print(table)

        for check in report.checks:
            if check.details:
                details = ", ".join(f"{k}={v}" for k, v in check.details.items())
                console.print(f"[dim]{check.name}: {details}[/dim]")

    raise typer.Exit(code=report.exit_code)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
