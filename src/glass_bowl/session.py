"""Resource registry for one generation of live viewer resources."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from glass_bowl.store import SnapshotStore
    from glass_bowl.surface import RenderSurface
    from glass_bowl.timers import TimerHandle

_HANDLE_FIELDS = (
    "surface",
    "store",
    "refresh_timer",
    "resize_listener",
    "retry_timer",
)


@dataclass
class Session:
    """Live handles of the current generation plus the retry budget.

    The handle fields are either all ``None`` (torn down or not built yet)
    or together describe one coherent generation. ``retry_count`` and
    ``last_successful_load`` span generations: teardown leaves them alone
    so that consecutive failed initializations consume one shared budget.

    Attributes:
        surface: Render surface showing the runs.
        store: In-memory snapshot store the surface is drawn from.
        refresh_timer: Repeating handle of the refresh scheduler.
        resize_listener: Callback registered with the host for resizes.
        retry_timer: Pending countdown tick of a scheduled retry.
        retry_count: Consecutive failed initializations.
        last_successful_load: When the last initialize reached ``ready``.
        generation: Number of initializations started so far.
    """

    surface: RenderSurface | None = None
    store: SnapshotStore | None = None
    refresh_timer: TimerHandle | None = None
    resize_listener: Callable[[int, int], None] | None = None
    retry_timer: TimerHandle | None = None
    retry_count: int = 0
    last_successful_load: datetime | None = None
    generation: int = 0

    @property
    def is_live(self) -> bool:
        """Whether the surface and an open store are both present."""
        return (
            self.surface is not None
            and self.store is not None
            and self.store.is_open
        )

    @property
    def is_empty(self) -> bool:
        """Whether every handle field is absent."""
        return all(getattr(self, name) is None for name in _HANDLE_FIELDS)

    def cancel_refresh_timer(self) -> bool:
        """Cancel and clear the refresh interval. Returns whether one existed."""
        if self.refresh_timer is None:
            return False
        self.refresh_timer.cancel()
        self.refresh_timer = None
        return True

    def cancel_retry_timer(self) -> bool:
        """Cancel and clear the retry countdown. Returns whether one existed."""
        if self.retry_timer is None:
            return False
        self.retry_timer.cancel()
        self.retry_timer = None
        return True

    def clear_handles(self) -> None:
        """Reset every handle field to ``None`` without releasing anything."""
        for name in _HANDLE_FIELDS:
            setattr(self, name, None)
