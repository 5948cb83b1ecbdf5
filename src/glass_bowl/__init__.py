"""glass-bowl: live terminal viewer for antfarm workflow runs."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("glass-bowl")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = ["__version__"]
