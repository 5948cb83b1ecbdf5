"""Records read from the run snapshot and the viewer's status model."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Snapshot records
# ---------------------------------------------------------------------------


class Run(BaseModel):
    """One workflow run from the ``runs`` table."""

    id: str
    workflow_id: str
    task: str = ""
    status: str
    created_at: str = ""
    updated_at: str = ""


class Step(BaseModel):
    """One step of a run from the ``steps`` table."""

    id: str
    run_id: str
    step_id: str
    agent_id: str = ""
    step_index: int = Field(default=0, ge=0)
    status: str = "waiting"
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=0, ge=0)
    updated_at: str = ""


# ---------------------------------------------------------------------------
# Viewer status
# ---------------------------------------------------------------------------


class ViewPhase(StrEnum):
    """Lifecycle phase of the viewer."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    RETRYING = "retrying"
    PERMANENT_FAILURE = "permanent_failure"


class ViewStatus(BaseModel):
    """Snapshot of the lifecycle state the presentation layer reads."""

    phase: ViewPhase = ViewPhase.IDLE
    message: str = ""
    countdown_seconds: int = Field(default=0, ge=0)
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=0, ge=0)
    last_successful_load: datetime | None = None

    @property
    def last_load_display(self) -> str:
        if self.last_successful_load is None:
            return "never"
        return self.last_successful_load.isoformat(timespec="seconds")
