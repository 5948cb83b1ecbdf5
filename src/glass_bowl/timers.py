"""Cancellable timer handles on top of the asyncio event loop.

The lifecycle controller never touches ``loop.call_later`` directly.
It goes through a ``Clock`` so that every pending callback is a handle
that can be stored on the session and cancelled explicitly on teardown.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable


class TimerHandle(Protocol):
    """A pending one-shot or repeating callback."""

    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Clock(Protocol):
    """Source of time and timers."""

    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def call_every(
        self, interval: float, callback: Callable[[], None]
    ) -> TimerHandle: ...


class RepeatingTimer:
    """Fires ``callback`` every ``interval`` seconds until cancelled."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        interval: float,
        callback: Callable[[], None],
    ) -> None:
        self._loop = loop
        self._interval = interval
        self._callback = callback
        self._cancelled = False
        self._handle = loop.call_later(interval, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        # Reschedule first so a raising callback does not stop the interval
        self._handle = self._loop.call_later(self._interval, self._fire)
        self._callback()

    def cancel(self) -> None:
        self._cancelled = True
        self._handle.cancel()

    def cancelled(self) -> bool:
        return self._cancelled


class LoopClock:
    """Clock backed by the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self.loop.call_later(delay, callback)

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        return RepeatingTimer(self.loop, interval, callback)
