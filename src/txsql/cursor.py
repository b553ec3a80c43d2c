"""
Cursor sessions: bounded-memory reads of large result sets.

A session declares a named cursor inside its own transaction and pulls
fixed-size batches until the first empty one::

    IDLE ──declare──▶ DECLARED ──fetch──▶ FETCHING ──empty batch──▶ CLOSED
      │                  │                   │
      └──────────────────┴───── error ───────┴──▶ FAILED (rolled back)

On PostgreSQL this is a real ``DECLARE``/``FETCH n``/``CLOSE`` server-side
cursor. MySQL and SQLite stream through the driver cursor with
``fetchmany``; the state machine and results are the same.

Examples:
    >>> session = CursorSession(adapter, "SELECT * FROM events", "events_cur", batch_size=500)
    >>> for batch in session.iter_batches():
    ...     handle(batch)
    >>> session.batch_sizes
    [500, 500, 137]
"""

from __future__ import annotations

from collections.abc import Iterator
from enum import Enum
from typing import Any

from txsql.adapters.base import DatabaseAdapter
from txsql.errors import ExceptionContext, StorageError, TransactionError, ValidationError
from txsql.logging import get_logger

logger = get_logger(__name__)


class CursorState(str, Enum):
    IDLE = "idle"
    DECLARED = "declared"
    FETCHING = "fetching"
    CLOSED = "closed"
    FAILED = "failed"


class CursorSession:
    """
    One named cursor bound to one transaction on an adapter.

    A session runs once; it never outlives the transaction it opened.
    """

    path = "storage.db.cursor"

    def __init__(
        self,
        adapter: DatabaseAdapter,
        sql: str,
        cursor_name: str,
        batch_size: int,
        *,
        context: ExceptionContext | str | None = None,
    ):
        self._context = ExceptionContext.parse(context) if context is not None else adapter.context
        if not isinstance(sql, str) or not sql.strip():
            raise ValidationError(
                "Cursor statement is empty", path=self.path, context=self._context, field="sql"
            )
        try:
            if not isinstance(cursor_name, str):
                raise ValidationError(
                    "Cursor name must be a plain identifier", field="cursor_name", value=cursor_name
                )
            adapter.check_cursor(sql, cursor_name)
        except ValidationError as exc:
            exc.with_context(path=self.path, context=self._context)
            raise
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
            raise ValidationError(
                "batch_size must be a positive integer",
                path=self.path,
                context=self._context,
                field="batch_size",
                value=batch_size,
            )
        self._adapter = adapter
        self.sql = sql
        self.cursor_name = cursor_name
        self.batch_size = batch_size
        self.state = CursorState.IDLE
        self.batch_sizes: list[int] = []

    def iter_batches(self) -> Iterator[list[dict[str, Any]]]:
        """
        Yield non-empty batches of at most ``batch_size`` rows.

        The cursor is closed and the transaction committed after the first
        empty batch. Abandoning the iterator early rolls the transaction back.

        Raises:
            TransactionError: Any failure after the transaction was opened.
        """
        if self.state is not CursorState.IDLE:
            raise TransactionError(
                f"Cursor session {self.cursor_name!r} already ran",
                path=self.path,
                context=self._context,
            )
        adapter = self._adapter
        adapter.connect()

        try:
            adapter.begin()
            adapter.declare_cursor(self.sql, self.cursor_name)
            self.state = CursorState.DECLARED

            while True:
                batch = adapter.fetch_cursor(self.cursor_name, self.batch_size)
                self.state = CursorState.FETCHING
                if not batch:
                    break
                self.batch_sizes.append(len(batch))
                logger.debug("cursor_batch_fetched", cursor=self.cursor_name, rows=len(batch))
                yield batch

            adapter.close_cursor(self.cursor_name)
            adapter.commit()
            self.state = CursorState.CLOSED
        except GeneratorExit:
            self._abandon()
            raise
        except Exception as exc:
            raise self._failed(exc) from exc

        logger.debug(
            "cursor_closed",
            cursor=self.cursor_name,
            batches=len(self.batch_sizes),
            rows=sum(self.batch_sizes),
        )

    def fetch_all(self) -> list[dict[str, Any]]:
        """Accumulate every batch into one list."""
        rows: list[dict[str, Any]] = []
        for batch in self.iter_batches():
            rows.extend(batch)
        return rows

    def _abandon(self) -> None:
        self.state = CursorState.FAILED
        try:
            self._adapter.close_cursor(self.cursor_name)
        except StorageError as exc:
            logger.debug("cursor_close_failed", cursor=self.cursor_name, error=exc.message)
        try:
            self._adapter.rollback()
        except StorageError as exc:
            logger.debug("cursor_rollback_failed", cursor=self.cursor_name, error=exc.message)

    def _failed(self, exc: Exception) -> TransactionError:
        self.state = CursorState.FAILED
        if isinstance(exc, StorageError):
            message, details, cause = exc.message, dict(exc.details), exc.cause or exc
        else:
            message, details, cause = str(exc) or exc.__class__.__name__, {}, exc
        rolled_back = self._safe_rollback(details)
        return TransactionError(
            message,
            path=self.path,
            context=self._context,
            details={**details, "cursor": self.cursor_name},
            cause=cause,
            payload=[{"kind": "cursor", "text": self.sql, "batch_size": self.batch_size}],
            rolled_back=rolled_back,
        )

    def _safe_rollback(self, details: dict[str, Any]) -> bool:
        try:
            return self._adapter.rollback()
        except StorageError as rollback_exc:
            details["rollback_error"] = rollback_exc.message
            return False


__all__ = ["CursorState", "CursorSession"]
