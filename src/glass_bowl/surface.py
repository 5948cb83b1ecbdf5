"""Render surface protocol and its Rich ``Live`` implementation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import structlog
from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.text import Text

if TYPE_CHECKING:
    from collections.abc import MutableMapping

    from rich.console import RenderableType

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class RenderSurface(Protocol):
    """Something the dashboard can be drawn on and later destroyed.

    ``textures`` caches prebuilt renderables between repaints. ``destroy``
    must be asked explicitly to release the child tree and the cache.
    """

    textures: MutableMapping[str, RenderableType]

    def render(self, renderable: RenderableType) -> None: ...

    def resize(self, width: int, height: int) -> None: ...

    def destroy(self, *, children: bool = False, texture: bool = False) -> None: ...


class LiveSurface:
    """Draws into the terminal through ``rich.live.Live``.

    Auto-refresh is off: the surface repaints only when ``render`` or
    ``resize`` is called, so no background thread runs alongside the
    event loop.

    Attributes:
        console: Console the live display writes to.
        layout: Root layout; rendered dashboards hang below it.
        textures: Cached per-run renderables reused across repaints.
    """

    def __init__(
        self,
        console: Console | None = None,
        *,
        screen: bool = False,
    ) -> None:
        self.console = console or Console()
        self.layout = Layout(name="root")
        self.textures: dict[str, RenderableType] = {}
        self.destroyed = False
        self._live = Live(
            self.layout,
            console=self.console,
            auto_refresh=False,
            screen=screen,
            transient=not screen,
        )
        self._live.start()

    def render(self, renderable: RenderableType) -> None:
        if self.destroyed:
            return
        self.layout.update(renderable)
        self._live.refresh()

    def resize(self, width: int, height: int) -> None:
        if self.destroyed:
            return
        self.console.size = (width, height)
        self._live.refresh()

    def destroy(self, *, children: bool = False, texture: bool = False) -> None:
        """Stop the live display and release what was asked for.

        Args:
            children: Drop the layout tree below the root.
            texture: Clear the cached renderables.
        """
        if self.destroyed:
            return
        self._live.stop()
        if children:
            self.layout.unsplit()
            self.layout.update(Text(""))
        if texture:
            self.textures.clear()
        self.destroyed = True
        logger.debug("surface_destroyed", children=children, texture=texture)
