"""SQLite database adapter."""

from __future__ import annotations

from types import ModuleType
from typing import Any

from txsql.result import QueryResult

from .base import DatabaseAdapter


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite database adapter.

    Uses the built-in sqlite3 module. Suitable for:
    - Development and testing
    - Single-process tools

    ``database`` is the file path (``:memory:`` and ``file:`` URIs work).
    The connection runs with ``isolation_level=None`` so transactions are
    only the explicit ``BEGIN``/``COMMIT``/``ROLLBACK`` issued here.
    """

    driver_module = "sqlite3"
    driver_package = "(bundled with Python)"

    def _open(self, driver: ModuleType) -> Any:
        config = self._config
        path = config.database or ":memory:"
        timeout = float(config.statement_timeout or config.connect_timeout)

        conn = driver.connect(
            path,
            timeout=timeout,
            isolation_level=None,
            uri=path.startswith("file:"),
        )
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def diagnostics(self, exc: BaseException) -> dict[str, Any]:
        details = {
            "sqlite_errorcode": getattr(exc, "sqlite_errorcode", None),
            "sqlite_errorname": getattr(exc, "sqlite_errorname", None),
        }
        return {key: value for key, value in details.items() if value is not None}

    def _total_changes(self, conn: Any) -> int | None:
        return conn.total_changes

    def _commit(self, conn: Any) -> None:
        conn.execute("COMMIT")

    def _rollback(self, conn: Any) -> None:
        conn.execute("ROLLBACK")

    def last_insert_id(self, result: QueryResult) -> Any:
        if result.returns_rows:
            return result.rows[0][0] if result.rows else None
        return result.lastrowid


__all__ = [
    "SQLiteAdapter",
]
