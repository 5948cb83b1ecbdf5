"""In-memory SQLite store for the run snapshot and its scoped queries.

The downloaded snapshot is deserialized into an in-memory connection.
Every query acquires its own cursor and closes it before returning, on
success and on failure alike, so no statement outlives the call that
created it.
"""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from pydantic import ValidationError

from glass_bowl.exceptions import QueryError, StoreClosedError, StoreError
from glass_bowl.models import Run, Step

if TYPE_CHECKING:
    from collections.abc import Sequence

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

RowT = TypeVar("RowT", Run, Step)

SQLITE_HEADER = b"SQLite format 3\x00"

ACTIVE_RUNS_SQL = """
SELECT id,
       workflow_id,
       COALESCE(task, '') AS task,
       status,
       COALESCE(created_at, '') AS created_at,
       COALESCE(updated_at, '') AS updated_at
FROM runs
WHERE status = 'running'
ORDER BY created_at DESC
"""

EMPTY_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS runs (
    id TEXT PRIMARY KEY,
    workflow_id TEXT NOT NULL,
    task TEXT,
    status TEXT NOT NULL,
    created_at TEXT,
    updated_at TEXT
);
CREATE TABLE IF NOT EXISTS steps (
    id TEXT PRIMARY KEY,
    run_id TEXT NOT NULL,
    step_id TEXT NOT NULL,
    agent_id TEXT,
    step_index INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL,
    retry_count INTEGER,
    max_retries INTEGER,
    updated_at TEXT
);
"""

STEPS_FOR_RUN_SQL = """
SELECT id,
       run_id,
       step_id,
       COALESCE(agent_id, '') AS agent_id,
       step_index,
       status,
       COALESCE(retry_count, 0) AS retry_count,
       COALESCE(max_retries, 0) AS max_retries,
       COALESCE(updated_at, '') AS updated_at
FROM steps
WHERE run_id = ?
ORDER BY step_index
"""


# ---------------------------------------------------------------------------
# Scoped query executor
# ---------------------------------------------------------------------------


class QueryExecutor:
    """Runs one statement per call with guaranteed cursor release.

    Attributes:
        acquired: Number of cursors successfully acquired.
        released: Number of cursors closed.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self.acquired = 0
        self.released = 0

    def _acquire(self) -> sqlite3.Cursor:
        return self._connection.cursor()

    def execute(
        self, sql: str, params: Sequence[Any] = ()
    ) -> list[dict[str, Any]]:
        """Execute ``sql`` and collect every row as a column -> value dict.

        Args:
            sql: The statement text.
            params: Positional parameters bound to ``?`` placeholders.

        Returns:
            Rows in the order the statement produced them.

        Raises:
            QueryError: If acquiring, binding, or stepping fails.
        """
        cursor: sqlite3.Cursor | None = None
        try:
            cursor = self._acquire()
            self.acquired += 1
            cursor.execute(sql, tuple(params))
            columns = [column[0] for column in cursor.description or ()]
            return [dict(zip(columns, row, strict=True)) for row in cursor]
        except sqlite3.Error as exc:
            logger.warning("query_failed", error=str(exc), acquired=cursor is not None)
            raise QueryError(str(exc)) from exc
        finally:
            if cursor is not None:
                cursor.close()
                self.released += 1


def _validate_rows(model: type[RowT], rows: list[dict[str, Any]]) -> list[RowT]:
    try:
        return [model.model_validate(row) for row in rows]
    except ValidationError as exc:
        logger.warning("row_validation_failed", model=model.__name__, errors=exc.error_count())
        raise QueryError(f"Malformed {model.__name__.lower()} row: {exc}") from exc


# ---------------------------------------------------------------------------
# Snapshot store
# ---------------------------------------------------------------------------


class SnapshotStore:
    """Owns the in-memory connection holding the current snapshot."""

    def __init__(self) -> None:
        self._connection: sqlite3.Connection | None = None
        self._executor: QueryExecutor | None = None

    @classmethod
    def open(cls) -> SnapshotStore:
        """Create a store with an open in-memory connection and empty tables."""
        store = cls()
        store._connection = sqlite3.connect(":memory:")
        store._connection.executescript(EMPTY_SCHEMA_SQL)
        store._executor = QueryExecutor(store._connection)
        logger.debug("store_opened")
        return store

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    @property
    def executor(self) -> QueryExecutor:
        if self._executor is None:
            msg = "Snapshot store is closed"
            raise StoreClosedError(msg)
        return self._executor

    def load(self, payload: bytes) -> None:
        """Replace the store's contents with a serialized SQLite database.

        Args:
            payload: Raw bytes of a SQLite database file.

        Raises:
            StoreClosedError: If the store is closed.
            StoreError: If the payload is not a SQLite database.
        """
        if self._connection is None:
            msg = "Snapshot store is closed"
            raise StoreClosedError(msg)
        if not payload.startswith(SQLITE_HEADER):
            msg = f"Snapshot is not a SQLite database ({len(payload)} bytes)"
            raise StoreError(msg)
        try:
            self._connection.deserialize(payload)
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to load snapshot: {exc}") from exc
        logger.debug("snapshot_loaded", size=len(payload))

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._connection is None:
            return
        self._connection.close()
        self._connection = None
        self._executor = None
        logger.debug("store_closed")

    # -- Read queries -------------------------------------------------------

    def get_active_runs(self) -> list[Run]:
        """Return every run whose status is ``running``, newest first."""
        rows = self.executor.execute(ACTIVE_RUNS_SQL)
        return _validate_rows(Run, rows)

    def get_steps_for_run(self, run_id: str) -> list[Step]:
        """Return the steps of ``run_id`` ordered by their index."""
        rows = self.executor.execute(STEPS_FOR_RUN_SQL, (run_id,))
        return _validate_rows(Step, rows)
