"""MySQL database adapter.

Uses ``mysql.connector`` from the ``mysql-connector-python`` package.
Callers still write ``:name`` placeholders; the dialect rewrites them to
``%(name)s`` for the driver.

Install the driver::

    pip install mysql-connector-python
    # or:  pip install txsql[mysql]

MySQL has no ``DECLARE ... CURSOR`` outside stored programs, so cursor
sessions stream through an unbuffered driver cursor with ``fetchmany``.
"""

from __future__ import annotations

from types import ModuleType
from typing import Any

from txsql.result import QueryResult

from .base import DatabaseAdapter


class MySQLAdapter(DatabaseAdapter):
    """MySQL / MariaDB database adapter.

    Autocommit is on between transactions; ``begin()`` calls
    ``start_transaction()``.
    """

    driver_module = "mysql.connector"
    driver_package = "mysql-connector-python"

    def _open(self, driver: ModuleType) -> Any:
        config = self._config
        conn = driver.connect(
            host=config.host,
            port=config.effective_port,
            database=config.database,
            user=config.username,
            password=config.password_value(),
            charset=config.effective_encoding,
            connection_timeout=config.connect_timeout,
            autocommit=True,
            **config.options,
        )
        if config.statement_timeout:
            cursor = conn.cursor()
            try:
                cursor.execute(
                    f"SET SESSION max_execution_time = {int(config.statement_timeout) * 1000}"
                )
            finally:
                cursor.close()
        return conn

    def diagnostics(self, exc: BaseException) -> dict[str, Any]:
        details = {
            "errno": getattr(exc, "errno", None),
            "sqlstate": getattr(exc, "sqlstate", None),
            "native_message": getattr(exc, "msg", None),
        }
        return {key: value for key, value in details.items() if value not in (None, -1)}

    def _begin(self, conn: Any) -> None:
        conn.start_transaction()

    def last_insert_id(self, result: QueryResult) -> Any:
        return result.lastrowid or None

    def _streaming_cursor(self, conn: Any) -> Any:
        return conn.cursor(buffered=False)


__all__ = [
    "MySQLAdapter",
]
