"""Wires settings, HTTP client, terminal host, and controller together."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx
import structlog

from glass_bowl.host import QUIT, UNLOAD, TerminalHost
from glass_bowl.lifecycle import LifecycleController
from glass_bowl.retry import SnapshotFetcher
from glass_bowl.store import SnapshotStore
from glass_bowl.surface import LiveSurface

if TYPE_CHECKING:
    from rich.console import Console

    from glass_bowl.config import Settings
    from glass_bowl.models import Run, Step

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


async def run_viewer(settings: Settings, console: Console) -> None:
    """Run the live viewer until the user quits or the process is asked to stop.

    Args:
        settings: Resolved application settings.
        console: Console the render surface draws on.
    """
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()

    async with httpx.AsyncClient(timeout=settings.server.timeout) as client:
        source = SnapshotFetcher(
            client, settings.server.snapshot_url, settings.retry.policy()
        )
        host = TerminalHost(loop)
        controller = LifecycleController(
            settings,
            source,
            host,
            surface_factory=lambda: LiveSurface(
                console, screen=settings.display.full_screen
            ),
        )
        host.add_listener(QUIT, stop.set)
        host.add_listener(UNLOAD, stop.set)
        host.install()
        controller.attach()
        logger.info("viewer_started", url=settings.server.snapshot_url)
        try:
            controller.start()
            await stop.wait()
        finally:
            await controller.shutdown()
            host.uninstall()
            logger.info("viewer_stopped", generations=controller.session.generation)


async def load_snapshot(settings: Settings) -> tuple[list[Run], dict[str, list[Step]]]:
    """Download the snapshot once and read the active runs with their steps.

    Args:
        settings: Resolved application settings.

    Returns:
        Active runs and their steps keyed by run id.

    Raises:
        FetchError: If the download failed after every retry.
        StoreError: If the payload could not be loaded or queried.
    """
    async with httpx.AsyncClient(timeout=settings.server.timeout) as client:
        source = SnapshotFetcher(
            client, settings.server.snapshot_url, settings.retry.policy()
        )
        payload = await source.fetch()

    store = SnapshotStore.open()
    try:
        store.load(payload)
        runs = store.get_active_runs()
        steps = {run.id: store.get_steps_for_run(run.id) for run in runs}
    finally:
        store.close()
    return runs, steps
