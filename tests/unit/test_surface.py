"""Unit tests for glass_bowl.surface - Rich Live render surface."""

from __future__ import annotations

from io import StringIO

from rich.console import Console
from rich.layout import Layout
from rich.text import Text

from glass_bowl.surface import LiveSurface


def _console() -> Console:
    return Console(file=StringIO(), force_terminal=True, width=80, height=24)


class TestLiveSurface:
    """Rendering, resizing, and explicit destroy."""

    def test_render_draws_to_console(self) -> None:
        console = _console()
        surface = LiveSurface(console)
        surface.render(Text("run-1 feature-dev"))
        surface.destroy()
        assert "run-1 feature-dev" in console.file.getvalue()  # type: ignore[attr-defined]

    def test_resize_sets_console_size(self) -> None:
        console = _console()
        surface = LiveSurface(console)
        surface.resize(100, 30)
        assert console.size == (100, 30)
        surface.destroy()

    def test_destroy_releases_children_and_textures(self) -> None:
        surface = LiveSurface(_console())
        surface.layout.split_column(Layout(name="header"), Layout(name="body"))
        surface.textures["run-1"] = Text("●")
        surface.destroy(children=True, texture=True)
        assert surface.destroyed
        assert surface.textures == {}
        assert surface.layout.children == []

    def test_destroy_without_flags_keeps_textures(self) -> None:
        surface = LiveSurface(_console())
        surface.textures["run-1"] = Text("●")
        surface.destroy()
        assert surface.textures == {"run-1": surface.textures["run-1"]}

    def test_destroy_is_idempotent(self) -> None:
        surface = LiveSurface(_console())
        surface.destroy(children=True, texture=True)
        surface.destroy(children=True, texture=True)
        assert surface.destroyed

    def test_render_after_destroy_is_ignored(self) -> None:
        console = _console()
        surface = LiveSurface(console)
        surface.destroy()
        before = console.file.getvalue()  # type: ignore[attr-defined]
        surface.render(Text("late frame"))
        surface.resize(10, 10)
        assert console.file.getvalue() == before  # type: ignore[attr-defined]
