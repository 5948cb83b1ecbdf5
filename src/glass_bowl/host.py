"""Host environment signals: resize, visibility, unload, and key commands.

``EventEmitter`` keeps the listener registry. ``TerminalHost`` feeds it
from POSIX signals and single-key stdin input:

- ``resize(width, height)`` on SIGWINCH
- ``visibilitychange(hidden)`` on SIGTSTP (hidden) and SIGCONT (visible)
- ``unload()`` on SIGTERM and SIGHUP
- ``quit()`` on SIGINT and the ``q`` key
- ``retry()`` on the ``r`` key
"""

from __future__ import annotations

import os
import shutil
import signal
import sys
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Protocol

import structlog

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Callable
    from typing import TextIO

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

RESIZE = "resize"
VISIBILITY_CHANGE = "visibilitychange"
UNLOAD = "unload"
QUIT = "quit"
RETRY = "retry"

_KEY_EVENTS = {"r": RETRY, "q": QUIT}


class HostEnvironment(Protocol):
    """Where the viewer runs and how it learns about changes."""

    hidden: bool

    def add_listener(self, event: str, callback: Callable[..., Any]) -> None: ...

    def remove_listener(self, event: str, callback: Callable[..., Any]) -> None: ...


class EventEmitter:
    """Listener registry shared by every host implementation."""

    def __init__(self) -> None:
        self.hidden = False
        self._listeners: dict[str, list[Callable[..., Any]]] = defaultdict(list)

    def add_listener(self, event: str, callback: Callable[..., Any]) -> None:
        self._listeners[event].append(callback)

    def remove_listener(self, event: str, callback: Callable[..., Any]) -> None:
        """Remove one registration of ``callback``. Unknown callbacks are ignored."""
        listeners = self._listeners.get(event)
        if listeners and callback in listeners:
            listeners.remove(callback)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, *args: Any) -> None:
        if event == VISIBILITY_CHANGE and args:
            self.hidden = bool(args[0])
        for callback in list(self._listeners.get(event, ())):
            callback(*args)


class TerminalHost(EventEmitter):
    """Maps terminal signals and key presses onto host events (POSIX only)."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        stdin: TextIO | None = None,
    ) -> None:
        super().__init__()
        self._loop = loop
        self._stdin = stdin if stdin is not None else sys.stdin
        self._signals: list[int] = []
        self._saved_tty: list[Any] | None = None
        self._reading = False

    def size(self) -> tuple[int, int]:
        columns, lines = shutil.get_terminal_size()
        return columns, lines

    def install(self) -> None:
        """Register signal handlers and start reading single keys."""
        handlers: dict[str, Callable[[], None]] = {
            "SIGWINCH": self._on_winch,
            "SIGTSTP": self._on_suspend,
            "SIGCONT": self._on_continue,
            "SIGTERM": lambda: self.emit(UNLOAD),
            "SIGHUP": lambda: self.emit(UNLOAD),
            "SIGINT": lambda: self.emit(QUIT),
        }
        for name, handler in handlers.items():
            signum = getattr(signal, name, None)
            if signum is None:
                continue
            self._loop.add_signal_handler(signum, handler)
            self._signals.append(signum)
        if self._stdin.isatty():
            self._enter_cbreak()
            self._loop.add_reader(self._stdin.fileno(), self._on_key)
            self._reading = True
        logger.debug("host_installed", signals=len(self._signals), keys=self._reading)

    def uninstall(self) -> None:
        """Remove everything ``install`` registered and restore the tty."""
        for signum in self._signals:
            self._loop.remove_signal_handler(signum)
        self._signals.clear()
        if self._reading:
            self._loop.remove_reader(self._stdin.fileno())
            self._reading = False
        self._restore_tty()

    # -- tty -----------------------------------------------------------------

    def _enter_cbreak(self) -> None:
        import termios
        import tty

        fd = self._stdin.fileno()
        if self._saved_tty is None:
            self._saved_tty = termios.tcgetattr(fd)
        tty.setcbreak(fd)

    def _restore_tty(self) -> None:
        if self._saved_tty is None:
            return
        import termios

        termios.tcsetattr(self._stdin.fileno(), termios.TCSADRAIN, self._saved_tty)
        self._saved_tty = None

    # -- callbacks -----------------------------------------------------------

    def _on_winch(self) -> None:
        self.emit(RESIZE, *self.size())

    def _on_suspend(self) -> None:
        self.emit(VISIBILITY_CHANGE, True)
        self._restore_tty()
        os.kill(os.getpid(), signal.SIGSTOP)

    def _on_continue(self) -> None:
        if self._reading:
            self._enter_cbreak()
        self.emit(VISIBILITY_CHANGE, False)

    def _on_key(self) -> None:
        data = os.read(self._stdin.fileno(), 1)
        event = _KEY_EVENTS.get(data.decode("utf-8", errors="ignore").lower())
        if event is not None:
            self.emit(event)
