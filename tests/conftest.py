"""Shared pytest fixtures for the glass-bowl test suite."""

from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pytest

from glass_bowl.config import Settings
from glass_bowl.exceptions import FetchError
from glass_bowl.host import EventEmitter
from glass_bowl.store import EMPTY_SCHEMA_SQL

if TYPE_CHECKING:
    from collections.abc import Callable

SNAPSHOT_URL = "http://antfarm.test/api/db"


# ---------------------------------------------------------------------------
# Manual clock
# ---------------------------------------------------------------------------


class ManualTimer:
    """Timer handle driven by ``ManualClock.advance``."""

    def __init__(
        self,
        clock: ManualClock,
        due: float,
        callback: Callable[[], None],
        interval: float | None = None,
    ) -> None:
        self._clock = clock
        self.due = due
        self.callback = callback
        self.interval = interval
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class ManualClock:
    """Deterministic clock: timers only fire inside ``advance``."""

    def __init__(self) -> None:
        self.time = 0.0
        self.timers: list[ManualTimer] = []

    def now(self) -> float:
        return self.time

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self, self.time + delay, callback)
        self.timers.append(timer)
        return timer

    def call_every(self, interval: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self, self.time + interval, callback, interval=interval)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [timer for timer in self.timers if not timer.cancelled()]

    def advance(self, seconds: float) -> None:
        """Move time forward, firing every timer that becomes due."""
        target = self.time + seconds
        while True:
            due = [t for t in self.pending if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.time = timer.due
            if timer.interval is None:
                timer.cancel()
            else:
                timer.due += timer.interval
            timer.callback()
        self.time = target


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


# ---------------------------------------------------------------------------
# Host, surface, and snapshot source doubles
# ---------------------------------------------------------------------------


@pytest.fixture()
def host() -> EventEmitter:
    return EventEmitter()


class RecordingSurface:
    """Render surface that records every call instead of drawing."""

    def __init__(self) -> None:
        self.textures: dict[str, Any] = {}
        self.rendered: list[Any] = []
        self.resizes: list[tuple[int, int]] = []
        self.destroy_calls: list[dict[str, bool]] = []

    @property
    def destroyed(self) -> bool:
        return bool(self.destroy_calls)

    def render(self, renderable: Any) -> None:
        self.rendered.append(renderable)

    def resize(self, width: int, height: int) -> None:
        self.resizes.append((width, height))

    def destroy(self, *, children: bool = False, texture: bool = False) -> None:
        self.destroy_calls.append({"children": children, "texture": texture})
        if texture:
            self.textures.clear()


@dataclass
class SurfaceFactory:
    """Callable that builds and remembers ``RecordingSurface`` instances."""

    created: list[RecordingSurface] = field(default_factory=list)

    def __call__(self) -> RecordingSurface:
        surface = RecordingSurface()
        self.created.append(surface)
        return surface


@pytest.fixture()
def surfaces() -> SurfaceFactory:
    return SurfaceFactory()


class FakeSource:
    """Snapshot source that fails ``failures`` times before succeeding."""

    def __init__(self, payload: bytes, failures: int = 0) -> None:
        self.payload = payload
        self.failures = failures
        self.fetch_calls = 0
        self.fetch_once_calls = 0
        self.fail_once = False

    async def fetch(self) -> bytes:
        self.fetch_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise FetchError(SNAPSHOT_URL, 4, "connection refused")
        return self.payload

    async def fetch_once(self) -> bytes:
        self.fetch_once_calls += 1
        if self.fail_once:
            raise FetchError(SNAPSHOT_URL, 1, "connection refused")
        return self.payload


# ---------------------------------------------------------------------------
# Snapshot payloads
# ---------------------------------------------------------------------------


def build_snapshot(
    runs: list[dict[str, Any]] | None = None,
    steps: list[dict[str, Any]] | None = None,
) -> bytes:
    """Serialize an antfarm-shaped SQLite database holding the given rows."""
    conn = sqlite3.connect(":memory:")
    try:
        conn.executescript(EMPTY_SCHEMA_SQL)
        for run in runs or []:
            conn.execute(
                "INSERT INTO runs (id, workflow_id, task, status, created_at, updated_at) "
                "VALUES (:id, :workflow_id, :task, :status, :created_at, :updated_at)",
                {"task": "", "created_at": "", "updated_at": "", **run},
            )
        for step in steps or []:
            conn.execute(
                "INSERT INTO steps (id, run_id, step_id, agent_id, step_index, status, "
                "retry_count, max_retries, updated_at) VALUES (:id, :run_id, :step_id, "
                ":agent_id, :step_index, :status, :retry_count, :max_retries, :updated_at)",
                {
                    "agent_id": "",
                    "retry_count": 0,
                    "max_retries": 0,
                    "updated_at": "",
                    **step,
                },
            )
        conn.commit()
        return conn.serialize()
    finally:
        conn.close()


SAMPLE_RUNS = [
    {
        "id": "run-1",
        "workflow_id": "feature-dev",
        "task": "Add dark mode",
        "status": "running",
        "created_at": "2026-01-01T10:00:00Z",
    },
    {
        "id": "run-2",
        "workflow_id": "bug-fix",
        "task": "Fix login redirect",
        "status": "running",
        "created_at": "2026-01-02T10:00:00Z",
    },
    {
        "id": "run-3",
        "workflow_id": "feature-dev",
        "task": "Old run",
        "status": "completed",
        "created_at": "2025-12-01T10:00:00Z",
    },
]

SAMPLE_STEPS = [
    {"id": "s1", "run_id": "run-1", "step_id": "plan", "step_index": 0, "status": "done"},
    {"id": "s2", "run_id": "run-1", "step_id": "implement", "step_index": 1,
     "status": "running"},
    {"id": "s3", "run_id": "run-1", "step_id": "review", "step_index": 2,
     "status": "waiting"},
    {"id": "s4", "run_id": "run-2", "step_id": "triage", "step_index": 0,
     "status": "pending"},
]


@pytest.fixture()
def snapshot_bytes() -> bytes:
    """A snapshot with two running runs, one completed run, and four steps."""
    return build_snapshot(SAMPLE_RUNS, SAMPLE_STEPS)


@pytest.fixture()
def make_snapshot() -> Callable[..., bytes]:
    return build_snapshot


@pytest.fixture()
def source(snapshot_bytes: bytes) -> FakeSource:
    return FakeSource(snapshot_bytes)


@pytest.fixture()
def make_source(snapshot_bytes: bytes) -> Callable[..., FakeSource]:
    def _make(failures: int = 0, payload: bytes | None = None) -> FakeSource:
        return FakeSource(snapshot_bytes if payload is None else payload, failures)

    return _make


# ---------------------------------------------------------------------------
# Configuration fixture
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings(tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Settings isolated from any config.yaml, .env, or GLASS_BOWL_ env vars."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("GLASS_BOWL_"):
            monkeypatch.delenv(name)
    return Settings.load(server={"base_url": "http://antfarm.test"})
