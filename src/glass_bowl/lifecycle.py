"""Lifecycle controller: initialize, refresh, retry, and teardown.

The controller owns the single ``Session`` and is the only code that
mutates it. Every ``initialize`` begins with ``teardown`` so a
reinitialization never leaks the previous generation's surface, store,
timers, or listener. Failures never escape ``initialize``: they go to
``handle_init_error``, which either schedules one countdown-driven retry
or declares permanent failure until the user asks for a manual retry.

Callbacks that can fire after teardown (refresh ticks, countdown ticks,
resize events, a refresh resuming after its download) check that the
session is still live and do nothing otherwise.
"""

from __future__ import annotations

import asyncio
import atexit
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

import structlog

from glass_bowl.dashboard import (
    build_dashboard,
    build_no_data_view,
    build_status_view,
)
from glass_bowl.escalation import (
    ErrorKind,
    EscalationController,
    EscalationDecision,
    classify,
)
from glass_bowl.exceptions import FetchError, GuardViolation, QueryError, StoreError
from glass_bowl.host import RESIZE, RETRY, UNLOAD, VISIBILITY_CHANGE
from glass_bowl.logging import generation_context
from glass_bowl.models import ViewPhase, ViewStatus
from glass_bowl.scheduler import RefreshScheduler
from glass_bowl.session import Session
from glass_bowl.store import SnapshotStore
from glass_bowl.timers import LoopClock

if TYPE_CHECKING:
    from collections.abc import Callable

    from glass_bowl.config import Settings
    from glass_bowl.host import HostEnvironment
    from glass_bowl.surface import RenderSurface
    from glass_bowl.timers import Clock

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_COUNTDOWN_TICK_SECONDS = 1.0


class SnapshotSource(Protocol):
    """Where snapshots come from (``glass_bowl.retry.SnapshotFetcher``)."""

    async def fetch(self) -> bytes: ...

    async def fetch_once(self) -> bytes: ...


class LifecycleController:
    """Builds, refreshes, and releases the viewer's live resources.

    Attributes:
        session: The one session whose handles this controller manages.
        status: Lifecycle state published to the render surface.
        scheduler: Periodic refresh loop for the session.
        escalation: Retry-versus-give-up policy.
    """

    def __init__(
        self,
        settings: Settings,
        source: SnapshotSource,
        host: HostEnvironment,
        *,
        surface_factory: Callable[[], RenderSurface],
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings
        self._source = source
        self._host = host
        self._surface_factory = surface_factory
        self._clock: Clock = clock or LoopClock()

        policy = settings.retry.policy()
        self.escalation = EscalationController(policy)
        self.session = Session()
        self.status = ViewStatus(max_retries=policy.max_retries)
        self.scheduler = RefreshScheduler(
            self.session,
            self._clock,
            settings.refresh.interval_seconds,
            self._on_refresh_tick,
        )
        self._init_task: asyncio.Task[ViewStatus] | None = None
        self._refresh_task: asyncio.Task[None] | None = None
        self._attached = False
        self._teardowns = 0

    # -- host wiring ---------------------------------------------------------

    def attach(self) -> None:
        """Subscribe to host-level events and register the exit hook."""
        if self._attached:
            return
        self._host.add_listener(VISIBILITY_CHANGE, self.on_visibility_change)
        self._host.add_listener(RETRY, self.manual_retry)
        self._host.add_listener(UNLOAD, self.teardown)
        atexit.register(self.teardown)
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        self._host.remove_listener(VISIBILITY_CHANGE, self.on_visibility_change)
        self._host.remove_listener(RETRY, self.manual_retry)
        self._host.remove_listener(UNLOAD, self.teardown)
        atexit.unregister(self.teardown)
        self._attached = False

    async def shutdown(self) -> None:
        """Cancel in-flight work, tear down, and detach from the host."""
        for task in (self._init_task, self._refresh_task):
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        self.teardown()
        self.detach()

    async def settle(self) -> ViewStatus:
        """Wait for the in-flight initialize, if any, and return the status."""
        task = self._init_task
        while task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)
            task = self._init_task
        return self.status

    # -- status --------------------------------------------------------------

    def _set_status(
        self,
        phase: ViewPhase,
        message: str = "",
        countdown: int = 0,
    ) -> None:
        self.status = self.status.model_copy(
            update={
                "phase": phase,
                "message": message,
                "countdown_seconds": countdown,
                "retry_count": self.session.retry_count,
                "last_successful_load": self.session.last_successful_load,
            }
        )

    # -- initialize / teardown -----------------------------------------------

    async def initialize(self) -> ViewStatus:
        """Tear down any previous generation and build a new one.

        Never raises for build failures; they are routed to
        ``handle_init_error``. A failure that arrives after this generation
        was torn down is dropped without counting against the retry budget.
        Cancellation propagates.

        Returns:
            The status after this attempt.
        """
        self.teardown()
        session = self.session
        session.generation += 1
        generation = session.generation
        teardowns = self._teardowns
        self._set_status(ViewPhase.INITIALIZING, "Loading run database...")

        with generation_context(generation) as log:
            try:
                session.store = SnapshotStore.open()
                session.surface = self._surface_factory()
                self._install_resize_listener()
                self.render()

                payload = await self._source.fetch()

                store = self._require_live(generation)
                store.load(payload)
                session.retry_count = 0
                session.last_successful_load = datetime.now(tz=UTC)
                self._set_status(ViewPhase.READY)
                self.render()
                if not self._host.hidden:
                    self.scheduler.start()
                log.info("session_initialized", size=len(payload))
            except asyncio.CancelledError:
                log.info("session_initialize_cancelled")
                raise
            except Exception as exc:
                if teardowns != self._teardowns or session.generation != generation:
                    log.info("session_initialize_abandoned", error=str(exc))
                    return self.status
                log.warning(
                    "session_initialize_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                self.handle_init_error(exc)
        return self.status

    def teardown(self) -> None:
        """Release every handle of the current generation.

        Idempotent: with nothing live this is a no-op. The retry counter
        and last successful load survive so the retry budget spans
        generations.
        """
        session = self.session
        had_handles = not session.is_empty
        self._teardowns += 1

        session.cancel_refresh_timer()
        session.cancel_retry_timer()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = None

        if session.resize_listener is not None:
            self._host.remove_listener(RESIZE, session.resize_listener)

        try:
            if session.surface is not None:
                session.surface.destroy(children=True, texture=True)
        finally:
            if session.store is not None:
                session.store.close()
            session.clear_handles()

        if self.status.phase is not ViewPhase.IDLE:
            self._set_status(ViewPhase.IDLE)
        if had_handles:
            logger.info("session_torn_down", generation=session.generation)

    def _install_resize_listener(self) -> None:
        def on_resize(width: int, height: int) -> None:
            surface = self.session.surface
            if surface is None:
                return
            surface.resize(width, height)
            self.render()

        self.session.resize_listener = on_resize
        self._host.add_listener(RESIZE, on_resize)

    def _require_live(self, generation: int) -> SnapshotStore:
        store = self.session.store
        if store is None or not self.session.is_live or self.session.generation != generation:
            msg = f"Generation {generation} was torn down"
            raise GuardViolation(msg)
        return store

    # -- errors and retries --------------------------------------------------

    def handle_init_error(self, error: BaseException) -> EscalationDecision | None:
        """Count a failed initialize and decide what happens next.

        Args:
            error: The exception that stopped initialize.

        Returns:
            The escalation decision, or ``None`` when the failure was a
            guard violation from a generation that is already gone.
        """
        kind = classify(error)
        if kind is ErrorKind.GUARD:
            logger.debug("init_guard_absorbed", error=str(error))
            return None

        self.session.cancel_retry_timer()
        self.session.retry_count += 1
        decision = self.escalation.decide(self.session.retry_count)

        if decision.should_retry:
            self._set_status(
                ViewPhase.RETRYING,
                str(error),
                countdown=decision.countdown_seconds,
            )
            self.session.retry_timer = self._clock.call_later(
                _COUNTDOWN_TICK_SECONDS, self._countdown_tick
            )
            logger.warning(
                "init_retry_scheduled",
                kind=kind.value,
                retry_count=decision.retry_count,
                delay_index=decision.delay_index,
                delay_seconds=decision.delay_seconds,
            )
        else:
            self._set_status(ViewPhase.PERMANENT_FAILURE, str(error))
            logger.error(
                "init_permanent_failure",
                kind=kind.value,
                retry_count=decision.retry_count,
                error=str(error),
            )
        self.render()
        return decision

    def _countdown_tick(self) -> None:
        self.session.retry_timer = None
        if self.status.phase is not ViewPhase.RETRYING:
            return
        remaining = self.status.countdown_seconds - 1
        if remaining > 0:
            self._set_status(ViewPhase.RETRYING, self.status.message, countdown=remaining)
            self.session.retry_timer = self._clock.call_later(
                _COUNTDOWN_TICK_SECONDS, self._countdown_tick
            )
            self.render()
            return
        logger.info("init_retry_started", retry_count=self.session.retry_count)
        self._start_initialize()

    def start(self) -> asyncio.Task[ViewStatus]:
        """Run the first initialize as the tracked in-flight task.

        A later manual retry or ``shutdown`` cancels it like any other
        initialize.
        """
        return self._start_initialize()

    def manual_retry(self) -> asyncio.Task[ViewStatus]:
        """Start a fresh initialize with a reset retry budget.

        Cancels a pending countdown and any initialize still in flight.

        Returns:
            The task running the new initialize.
        """
        cancelled = self.session.cancel_retry_timer()
        self.session.retry_count = 0
        self._set_status(ViewPhase.INITIALIZING, "Retrying now...")
        logger.info("manual_retry", cancelled_countdown=cancelled)
        return self._start_initialize()

    def _start_initialize(self) -> asyncio.Task[ViewStatus]:
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
        self._init_task = asyncio.get_running_loop().create_task(self.initialize())
        return self._init_task

    # -- visibility and refresh ----------------------------------------------

    def on_visibility_change(self, hidden: bool) -> None:
        ready = self.status.phase is ViewPhase.READY and self.session.is_live
        self.scheduler.set_visibility(hidden, ready=ready)

    def _on_refresh_tick(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            logger.debug("refresh_skipped_in_flight")
            return
        self._refresh_task = asyncio.get_running_loop().create_task(self.refresh())

    async def refresh(self) -> None:
        """Reload the snapshot (single attempt) and repaint.

        A failed download keeps the previous data on screen.
        """
        session = self.session
        if not session.is_live:
            return
        generation = session.generation

        payload: bytes | None = None
        if self.settings.refresh.reload_snapshot:
            try:
                payload = await self._source.fetch_once()
            except FetchError as exc:
                logger.warning("refresh_fetch_failed", error=str(exc))

        try:
            store = self._require_live(generation)
        except GuardViolation:
            logger.debug("refresh_abandoned", generation=generation)
            return

        if payload is not None:
            try:
                store.load(payload)
            except StoreError as exc:
                logger.warning("refresh_load_failed", error=str(exc))
            else:
                session.last_successful_load = datetime.now(tz=UTC)
                self._set_status(ViewPhase.READY)
        self.render()

    def render(self) -> bool:
        """Draw the current state on the surface.

        Returns:
            ``False`` when nothing is live to draw on.
        """
        session = self.session
        surface, store = session.surface, session.store
        if surface is None or store is None or not session.is_live:
            return False
        display = self.settings.display

        if self.status.phase is not ViewPhase.READY:
            surface.render(build_status_view(self.status, display))
            return True

        try:
            runs = store.get_active_runs()
            steps_by_run = {
                run.id: store.get_steps_for_run(run.id)
                for run in runs[: display.max_runs]
            }
        except QueryError as exc:
            logger.warning("render_query_failed", kind=classify(exc).value, error=str(exc))
            surface.render(build_no_data_view(self.status, display, str(exc)))
            return True

        surface.render(
            build_dashboard(
                self.status,
                runs,
                steps_by_run,
                display,
                textures=surface.textures,
            )
        )
        return True
