"""Periodic refresh loop that pauses while the viewer is hidden."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

    from glass_bowl.session import Session
    from glass_bowl.timers import Clock

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class RefreshScheduler:
    """Owns the single refresh interval handle of a session.

    The handle lives on ``session.refresh_timer`` so teardown can cancel
    it without going through the scheduler. Visibility handling is
    level-triggered: only the current hidden/visible state matters, never
    how many toggles arrived, and there is never more than one interval.

    Attributes:
        interval: Seconds between ticks.
        ticks: Number of ticks that reached ``on_tick``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        interval: float,
        on_tick: Callable[[], None],
    ) -> None:
        self._session = session
        self._clock = clock
        self._on_tick = on_tick
        self.interval = interval
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._session.refresh_timer is not None

    def start(self) -> None:
        """Install the interval, replacing any existing one."""
        self._session.cancel_refresh_timer()
        self._session.refresh_timer = self._clock.call_every(self.interval, self._tick)
        logger.debug("refresh_started", interval_seconds=self.interval)

    def stop(self) -> bool:
        """Cancel the interval. Returns whether one was running."""
        return self._session.cancel_refresh_timer()

    def set_visibility(self, hidden: bool, *, ready: bool) -> None:
        """Apply the host's current visibility.

        Args:
            hidden: Whether the surface is currently not visible.
            ready: Whether the session is live and fully initialized.
                Refresh only resumes for a ready session.
        """
        if hidden:
            if self.stop():
                logger.info("refresh_paused")
            return
        if ready and not self.running:
            self.start()
            logger.info("refresh_resumed")

    def _tick(self) -> None:
        if not self._session.is_live:
            logger.debug("refresh_tick_skipped")
            return
        self.ticks += 1
        self._on_tick()
