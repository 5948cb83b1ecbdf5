"""Unit tests for glass_bowl.session - the resource registry."""

from __future__ import annotations

from typing import TYPE_CHECKING

from glass_bowl.session import Session
from glass_bowl.store import SnapshotStore

if TYPE_CHECKING:
    from conftest import ManualClock, SurfaceFactory


class TestSession:
    """Handle presence, liveness, and timer cancellation."""

    def test_new_session_is_empty(self) -> None:
        session = Session()
        assert session.is_empty
        assert not session.is_live
        assert session.retry_count == 0
        assert session.generation == 0

    def test_live_requires_surface_and_open_store(self, surfaces: SurfaceFactory) -> None:
        store = SnapshotStore.open()
        session = Session(store=store)
        assert not session.is_live
        session.surface = surfaces()
        assert session.is_live
        store.close()
        assert not session.is_live

    def test_cancel_refresh_timer(self, clock: ManualClock) -> None:
        session = Session()
        timer = clock.call_every(5.0, lambda: None)
        session.refresh_timer = timer
        assert session.cancel_refresh_timer() is True
        assert timer.cancelled()
        assert session.refresh_timer is None
        assert session.cancel_refresh_timer() is False

    def test_cancel_retry_timer(self, clock: ManualClock) -> None:
        session = Session()
        timer = clock.call_later(1.0, lambda: None)
        session.retry_timer = timer
        assert session.cancel_retry_timer() is True
        assert timer.cancelled()
        assert session.cancel_retry_timer() is False

    def test_clear_handles_keeps_retry_budget(self) -> None:
        session = Session(
            resize_listener=lambda w, h: None,
            retry_count=2,
            generation=5,
        )
        session.clear_handles()
        assert session.is_empty
        assert session.retry_count == 2
        assert session.generation == 5
