"""PostgreSQL database adapter (psycopg2).

The connection runs in autocommit mode between transactions; ``begin()``
switches autocommit off so psycopg2 opens the transaction on the next
statement, and commit/rollback switch it back on.

Streaming uses real server-side cursors: ``DECLARE`` inside the
transaction, ``FETCH n`` until empty, then ``CLOSE``.
"""

from __future__ import annotations

from types import ModuleType
from typing import Any

from txsql.result import QueryResult

from .base import DatabaseAdapter


class PostgreSQLAdapter(DatabaseAdapter):
    """
    PostgreSQL database adapter.

    Last insert id: the first column of a ``RETURNING`` row when the INSERT
    returns one, otherwise ``LASTVAL()`` (None when no sequence was used).
    """

    driver_module = "psycopg2"
    driver_package = "psycopg2-binary"

    def _open(self, driver: ModuleType) -> Any:
        config = self._config
        options = [f"-c client_encoding={config.effective_encoding}"]
        if config.statement_timeout:
            options.append(f"-c statement_timeout={int(config.statement_timeout) * 1000}")

        conn = driver.connect(
            host=config.host,
            port=config.effective_port,
            dbname=config.database,
            user=config.username,
            password=config.password_value(),
            connect_timeout=config.connect_timeout,
            options=" ".join(options),
            **config.options,
        )
        conn.autocommit = True
        return conn

    def diagnostics(self, exc: BaseException) -> dict[str, Any]:
        details: dict[str, Any] = {
            "sqlstate": getattr(exc, "pgcode", None),
            "native_message": (getattr(exc, "pgerror", None) or "").strip() or None,
        }
        diag = getattr(exc, "diag", None)
        if diag is not None:
            details["detail"] = getattr(diag, "message_detail", None)
            details["hint"] = getattr(diag, "message_hint", None)
            details["constraint"] = getattr(diag, "constraint_name", None)
        return {key: value for key, value in details.items() if value is not None}

    # -- Transactions -------------------------------------------------------

    def _begin(self, conn: Any) -> None:
        conn.autocommit = False

    def _commit(self, conn: Any) -> None:
        try:
            conn.commit()
        finally:
            conn.autocommit = True

    def _rollback(self, conn: Any) -> None:
        try:
            conn.rollback()
        finally:
            conn.autocommit = True

    # -- Insert ids ---------------------------------------------------------

    def last_insert_id(self, result: QueryResult) -> Any:
        if result.returns_rows:
            return result.rows[0][0] if result.rows else None

        # LASTVAL() fails when no sequence was touched in this session, which
        # would abort an open transaction unless it runs in a savepoint.
        driver = self._load_driver()
        conn = self.get_connection()
        with self._native_errors("storage.db.last_insert_id"):
            cursor = conn.cursor()
            try:
                if self._in_transaction:
                    cursor.execute("SAVEPOINT txsql_lastval")
                try:
                    cursor.execute("SELECT LASTVAL()")
                    row = cursor.fetchone()
                except driver.Error:
                    if self._in_transaction:
                        cursor.execute("ROLLBACK TO SAVEPOINT txsql_lastval")
                    return None
                if self._in_transaction:
                    cursor.execute("RELEASE SAVEPOINT txsql_lastval")
                return row[0] if row else None
            finally:
                cursor.close()

    # -- Quoting ------------------------------------------------------------

    def quote(self, text: str) -> str:
        """Quote through the driver so the session's string settings apply."""
        conn = self.get_connection()
        with self._native_errors("storage.db.quote"):
            cursor = conn.cursor()
            try:
                quoted = cursor.mogrify("%s", (text,))
            finally:
                cursor.close()
        if isinstance(quoted, bytes):
            codec = self._load_driver().extensions.encodings.get(conn.encoding, "utf-8")
            return quoted.decode(codec)
        return quoted


__all__ = [
    "PostgreSQLAdapter",
]
