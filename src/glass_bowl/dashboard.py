"""Rich renderables for the glass bowl view.

Displays every active run as an "ant" with a strip of step glyphs, plus
a header with the lifecycle phase and last successful load. While the
viewer is initializing, counting down to a retry, or has given up, the
body is replaced by a status panel.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.align import Align
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from glass_bowl.models import ViewPhase

if TYPE_CHECKING:
    from collections.abc import Mapping, MutableMapping

    from rich.console import RenderableType

    from glass_bowl.config import DisplaySettings
    from glass_bowl.models import Run, Step, ViewStatus


# Step status -> (glyph, style)
STEP_GLYPHS: dict[str, tuple[str, str]] = {
    "done": ("●", "green"),
    "running": ("◉", "bold yellow"),
    "pending": ("○", "cyan"),
    "waiting": ("○", "dim"),
    "failed": ("✖", "bold red"),
    "skipped": ("◌", "dim"),
}
_UNKNOWN_GLYPH = ("?", "magenta")

_PHASE_STYLES: dict[ViewPhase, str] = {
    ViewPhase.IDLE: "dim",
    ViewPhase.INITIALIZING: "cyan",
    ViewPhase.READY: "green",
    ViewPhase.RETRYING: "yellow",
    ViewPhase.PERMANENT_FAILURE: "bold red",
}

KEY_HINTS = "r retry now  ·  q quit  ·  Ctrl+Z pause"


# ---------------------------------------------------------------------------
# Dashboard panels
# ---------------------------------------------------------------------------


def _build_header(title: str, status: ViewStatus) -> Panel:
    """Build the header panel.

    Args:
        title: Dashboard title.
        status: Current lifecycle status.

    Returns:
        A Rich Panel with the phase and last successful load.
    """
    text = Text()
    text.append(title, style="bold cyan")
    text.append(" | ", style="dim")
    text.append(status.phase.value, style=_PHASE_STYLES[status.phase])
    text.append("\n")
    text.append(f"Last load: {status.last_load_display}", style="italic")
    return Panel(text, title="Glass Bowl", border_style="cyan")


def _build_step_strip(steps: list[Step], show_completed: bool = True) -> Text:
    """Build the glyph strip for one run's steps.

    Args:
        steps: The run's steps in index order.
        show_completed: Whether finished steps are drawn.

    Returns:
        A Rich Text with one glyph per step.
    """
    strip = Text()
    for step in steps:
        if not show_completed and step.status == "done":
            continue
        glyph, style = STEP_GLYPHS.get(step.status, _UNKNOWN_GLYPH)
        strip.append(glyph, style=style)
        strip.append(" ")
    if not strip:
        strip.append("(no steps)", style="dim")
    return strip


def _texture_key(run: Run, steps: list[Step], show_completed: bool) -> str:
    states = ",".join(f"{step.step_id}:{step.status}:{step.retry_count}" for step in steps)
    return f"{run.id}|{run.updated_at}|{int(show_completed)}|{states}"


def _current_step(steps: list[Step]) -> str:
    for step in steps:
        if step.status in {"running", "pending"}:
            return step.step_id
    return "-"


def build_runs_table(
    runs: list[Run],
    steps_by_run: Mapping[str, list[Step]],
    display: DisplaySettings,
    textures: MutableMapping[str, RenderableType] | None = None,
) -> Panel:
    """Build the active runs panel.

    Step strips are taken from ``textures`` when the run has not changed
    since the last repaint. Entries for runs that are no longer drawn are
    evicted.

    Args:
        runs: Active runs, newest first.
        steps_by_run: Steps of every run keyed by run id.
        display: Display options.
        textures: Cache of step strips owned by the render surface.

    Returns:
        A Rich Panel with one row per run.
    """
    table = Table(show_header=True, box=None, expand=True)
    table.add_column("Run", style="bold")
    table.add_column("Workflow", style="cyan")
    table.add_column("Task", overflow="ellipsis", no_wrap=True, ratio=2)
    table.add_column("Current")
    table.add_column("Steps", ratio=1)

    shown = runs[: display.max_runs]
    used: set[str] = set()
    for run in shown:
        steps = steps_by_run.get(run.id, [])
        key = _texture_key(run, steps, display.show_completed_steps)
        used.add(key)
        if textures is not None and key in textures:
            strip = textures[key]
        else:
            strip = _build_step_strip(steps, display.show_completed_steps)
            if textures is not None:
                textures[key] = strip
        table.add_row(run.id, run.workflow_id, run.task, _current_step(steps), strip)

    if textures is not None:
        for stale in [key for key in textures if key not in used]:
            del textures[stale]

    hidden = len(runs) - len(shown)
    subtitle = f"+{hidden} more" if hidden > 0 else None
    return Panel(
        table,
        title=f"Active Runs ({len(runs)})",
        subtitle=subtitle,
        border_style="green",
    )


def build_no_data_panel(reason: str = "") -> Panel:
    """Build the panel shown when there is nothing to draw.

    Args:
        reason: Optional detail, e.g. a query error.

    Returns:
        A Rich Panel with a centered message.
    """
    text = Text("No active runs", style="bold dim")
    if reason:
        text.append("\n")
        text.append(reason, style="red")
    return Panel(Align.center(text, vertical="middle"), title="Runs", border_style="dim")


def _build_status_panel(status: ViewStatus) -> Panel:
    """Build the panel for initializing, retrying, and failed phases.

    Args:
        status: Current lifecycle status.

    Returns:
        A Rich Panel describing what the viewer is doing.
    """
    text = Text()
    if status.phase is ViewPhase.RETRYING:
        text.append("Could not load the run database.\n", style="bold yellow")
        if status.message:
            text.append(f"{status.message}\n", style="yellow")
        text.append(
            f"Retrying in {status.countdown_seconds}s "
            f"(attempt {status.retry_count}/{status.max_retries})",
            style="yellow",
        )
        border = "yellow"
    elif status.phase is ViewPhase.PERMANENT_FAILURE:
        text.append("Unable to load the run database.\n", style="bold red")
        if status.message:
            text.append(f"{status.message}\n", style="red")
        text.append(
            f"Gave up after {status.max_retries} retries. Press r to retry now.",
            style="red",
        )
        border = "red"
    else:
        text.append(status.message or "Loading run database...", style="cyan")
        border = "cyan"
    text.append(f"\nLast successful load: {status.last_load_display}", style="dim")
    return Panel(
        Align.center(text, vertical="middle"),
        title=status.phase.value.replace("_", " ").title(),
        border_style=border,
    )


# ---------------------------------------------------------------------------
# Dashboard layout
# ---------------------------------------------------------------------------


def _frame(display: DisplaySettings, status: ViewStatus, body: RenderableType) -> Layout:
    layout = Layout()
    layout.split_column(
        Layout(name="header", size=4),
        Layout(name="body"),
        Layout(name="footer", size=1),
    )
    layout["header"].update(_build_header(display.title, status))
    layout["body"].update(body)
    layout["footer"].update(Text(KEY_HINTS, style="dim", justify="center"))
    return layout


def build_dashboard(
    status: ViewStatus,
    runs: list[Run],
    steps_by_run: Mapping[str, list[Step]],
    display: DisplaySettings,
    textures: MutableMapping[str, RenderableType] | None = None,
) -> Layout:
    """Build the complete dashboard layout for a ready viewer.

    Args:
        status: Current lifecycle status.
        runs: Active runs, newest first.
        steps_by_run: Steps of every run keyed by run id.
        display: Display options.
        textures: Optional cache of prebuilt step strips.

    Returns:
        A Rich Layout with header, runs, and key hints.
    """
    if not runs:
        return _frame(display, status, build_no_data_panel())
    body = build_runs_table(runs, steps_by_run, display, textures)
    return _frame(display, status, body)


def build_no_data_view(
    status: ViewStatus, display: DisplaySettings, reason: str = ""
) -> Layout:
    """Build the layout shown when the runs could not be queried."""
    return _frame(display, status, build_no_data_panel(reason))


def build_status_view(status: ViewStatus, display: DisplaySettings) -> Layout:
    """Build the layout for every phase other than ready."""
    return _frame(display, status, _build_status_panel(status))
