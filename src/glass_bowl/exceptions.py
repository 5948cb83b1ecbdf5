"""Centralized exception hierarchy for the glass-bowl package.

All domain-specific exceptions inherit from ``GlassBowlError`` so
callers can catch the entire family with a single ``except`` clause.
"""

from __future__ import annotations


class GlassBowlError(Exception):
    """Base exception for all glass-bowl errors."""


# ---------------------------------------------------------------------------
# Network errors
# ---------------------------------------------------------------------------


class FetchError(GlassBowlError):
    """Raised when the snapshot download fails after every allowed attempt."""

    def __init__(self, url: str, attempts: int, reason: str = "") -> None:
        self.url = url
        self.attempts = attempts
        self.reason = reason
        message = f"Failed to fetch {url} after {attempts} attempt(s)"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------


class StoreError(GlassBowlError):
    """Base exception for snapshot store operations."""


class StoreClosedError(StoreError):
    """Raised when a query is issued against a closed store connection."""


class QueryError(StoreError):
    """Raised when a statement fails to acquire, bind, or step."""


# ---------------------------------------------------------------------------
# Lifecycle errors
# ---------------------------------------------------------------------------


class GuardViolation(GlassBowlError):
    """Raised when a resource is used after its session was torn down."""
