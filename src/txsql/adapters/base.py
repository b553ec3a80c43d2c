"""Database adapter base class.

Manifesto:
    Every dialect shares the same lifecycle (lazy connect, one connection per
    adapter, explicit begin/commit/rollback) and the same failure policy:
    native driver exceptions never leave the adapter. They are wrapped in the
    matching :class:`~txsql.errors.StorageError` with the driver's
    diagnostics and the caller's context tag.

Features:
    - ``connect(test_only)``: lazily opens the single owned connection
    - ``execute()`` / ``execute_prepared()`` / ``run()``: literal and bound statements
    - ``begin()`` / ``commit()`` / ``rollback()`` and a ``transaction()`` scope
    - ``declare_cursor()`` / ``fetch_cursor()`` / ``close_cursor()`` for streaming
    - ``introspect_columns()`` and ``quote()``
    - Context-manager protocol that always disconnects

Subclasses provide the driver module, the connection call, per-driver
diagnostics and last-insert-id semantics.

Tags:
    txsql, database, abstract-base, adapter-pattern

Doc-Types:
    api-reference
"""

from __future__ import annotations

import importlib
import re
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from types import ModuleType
from typing import Any

from txsql.dialect import Dialect, get_dialect, is_identifier
from txsql.errors import (
    ConfigurationError,
    DatabaseConnectionError,
    ExceptionContext,
    ExecutionError,
    StorageError,
    ValidationError,
)
from txsql.logging import get_logger
from txsql.result import ColumnInfo, FetchShape, QueryResult
from txsql.statements import PreparedStatement, validate_statement

from .types import BackendConfig, DatabaseType

logger = get_logger(__name__)

# Raised by drivers for unbindable values outside their DB-API hierarchy
# (sqlite3 OverflowError on huge ints, psycopg2 KeyError on unbound names).
_BINDING_ERRORS = (TypeError, ValueError, KeyError, OverflowError)

_DECLARE_PREFIX_RE = re.compile(
    r"^\s*DECLARE\s+(\w+)\s+(?:\w+\s+)*?CURSOR\s+(?:WITH(?:OUT)?\s+HOLD\s+)?FOR\s+",
    re.IGNORECASE,
)


def strip_declare(sql: str) -> str:
    """``DECLARE c CURSOR FOR SELECT ...`` -> ``SELECT ...`` (other text unchanged)."""
    return _DECLARE_PREFIX_RE.sub("", sql, count=1)


def declared_cursor_name(sql: str) -> str | None:
    """Name in a leading ``DECLARE <name> ... CURSOR FOR``, else None."""
    match = _DECLARE_PREFIX_RE.match(sql)
    return match.group(1) if match else None


class DatabaseAdapter(ABC):
    """
    Abstract base class for database adapters.

    One adapter owns at most one live connection, opened on first use and
    never shared. At most one transaction is open on it at any time.
    """

    #: Import name of the DB-API driver module
    driver_module: str = ""
    #: Distribution to install when the driver is missing
    driver_package: str = ""

    def __init__(
        self,
        config: BackendConfig,
        *,
        context: ExceptionContext | str | None = None,
    ):
        self._config = config
        self._context = ExceptionContext.parse(context)
        self._dialect: Dialect = get_dialect(config.db_type)
        self._driver: ModuleType | None = None
        self._conn: Any = None
        self._in_transaction = False
        self._cursors: dict[str, Any] = {}

    # -- Properties ---------------------------------------------------------

    @property
    def config(self) -> BackendConfig:
        return self._config

    @property
    def dialect(self) -> Dialect:
        """SQL dialect for this adapter's database type."""
        return self._dialect

    @property
    def db_type(self) -> DatabaseType:
        return self._config.db_type

    @property
    def context(self) -> ExceptionContext:
        """Surface tag attached to every error this adapter raises."""
        return self._context

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    # -- Driver hooks -------------------------------------------------------

    @abstractmethod
    def _open(self, driver: ModuleType) -> Any:
        """Open and configure a native connection."""
        ...

    @abstractmethod
    def diagnostics(self, exc: BaseException) -> dict[str, Any]:
        """Backend diagnostic fields of a native driver exception."""
        ...

    @abstractmethod
    def last_insert_id(self, result: QueryResult) -> Any:
        """Identifier generated by the INSERT that produced ``result``."""
        ...

    def _total_changes(self, conn: Any) -> int | None:
        """Connection-wide count of changed rows, where the driver keeps one."""
        return None

    def _begin(self, conn: Any) -> None:
        conn.cursor().execute("BEGIN")

    def _commit(self, conn: Any) -> None:
        conn.commit()

    def _rollback(self, conn: Any) -> None:
        conn.rollback()

    # -- Connection lifecycle -----------------------------------------------

    def _load_driver(self) -> ModuleType:
        if self._driver is None:
            try:
                self._driver = importlib.import_module(self.driver_module)
            except ImportError:
                raise ConfigurationError(
                    f"{self.driver_module} is required for {self.db_type.value}. "
                    f"Install with: pip install {self.driver_package}",
                    path="storage.db.connect",
                    context=self._context,
                ) from None
        return self._driver

    def connect(self, test_only: bool = False) -> bool:
        """
        Open the connection unless it is already open.

        With ``test_only`` a failed connect returns False instead of raising,
        and the connection is closed again when it succeeds.

        Raises:
            DatabaseConnectionError: Connect failed and ``test_only`` is False.
        """
        if self._conn is not None:
            return True

        driver = self._load_driver()
        try:
            conn = self._open(driver)
        except driver.Error as exc:
            if test_only:
                return False
            raise DatabaseConnectionError(
                f"Failed to connect to {self.db_type.value} backend {self._config.name!r}: {exc}",
                path="storage.db.connect",
                context=self._context,
                details={
                    "backend": self._config.name,
                    "host": self._config.host,
                    "database": self._config.database,
                    **self.diagnostics(exc),
                },
                cause=exc,
            ) from exc

        logger.debug(
            "storage_connected",
            backend=self._config.name,
            db_type=self.db_type.value,
            test_only=test_only,
        )
        if test_only:
            self._close(conn)
            return True
        self._conn = conn
        return True

    def disconnect(self) -> None:
        """Close the connection, rolling back a transaction left open."""
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        self._cursors.clear()
        if self._in_transaction:
            self._in_transaction = False
            try:
                self._rollback(conn)
            except self._load_driver().Error as exc:
                logger.debug("storage_disconnect_rollback_failed", error=str(exc))
        self._close(conn)

    def _close(self, conn: Any) -> None:
        try:
            conn.close()
        except self._load_driver().Error as exc:
            logger.debug("storage_close_failed", backend=self._config.name, error=str(exc))

    def get_connection(self) -> Any:
        """The owned native connection, opened on first use."""
        if self._conn is None:
            self.connect()
        return self._conn

    # -- Error wrapping -----------------------------------------------------

    @contextmanager
    def _native_errors(
        self,
        path: str,
        error_cls: type[StorageError] = ExecutionError,
        **details: Any,
    ) -> Iterator[None]:
        driver = self._load_driver()
        try:
            yield
        except (driver.Error, *_BINDING_ERRORS) as exc:
            raise error_cls(
                str(exc).strip() or exc.__class__.__name__,
                path=path,
                context=self._context,
                details={**details, **self.diagnostics(exc)},
                cause=exc,
            ) from exc

    # -- Execution ----------------------------------------------------------

    def _cursor(self) -> Any:
        return self.get_connection().cursor()

    def run(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        path: str = "storage.db.execute",
    ) -> QueryResult:
        """
        Execute one statement and materialise its result.

        ``params`` binds by placeholder name; without it the text runs
        as-is. Rows are fetched in full when the statement returns any.
        """
        conn = self.get_connection()
        with self._native_errors(path, statement=sql):
            cursor = conn.cursor()
            try:
                before = self._total_changes(conn)
                if params is None:
                    cursor.execute(sql)
                else:
                    cursor.execute(self._dialect.bind_named(sql), dict(params))
                columns = [desc[0] for desc in cursor.description] if cursor.description else []
                rows = [tuple(row) for row in cursor.fetchall()] if columns else []
                rowcount = cursor.rowcount
                if before is not None and not columns and rowcount < 0:
                    # CTE-prefixed DML reports -1 on some driver versions
                    rowcount = self._total_changes(conn) - before
                return QueryResult(
                    columns=columns,
                    rows=rows,
                    rowcount=rowcount,
                    lastrowid=getattr(cursor, "lastrowid", None),
                )
            finally:
                cursor.close()

    def execute(self, sql: str, *, path: str = "storage.db.exec") -> QueryResult:
        """Run a literal statement, no parameter binding."""
        return self.run(sql, path=path)

    def execute_prepared(
        self,
        statement: PreparedStatement | Mapping[str, Any],
    ) -> list[Any]:
        """
        Bind and run a one-shot statement exactly once.

        Returns the fetched rows in the statement's fetch shape (empty for
        statements without a result set).
        """
        try:
            prepared = validate_statement(statement)
        except ValidationError as exc:
            exc.with_context(context=self._context)
            raise
        result = self.run(prepared.text, prepared.bindings(), path="storage.db.execute")
        result.set_shape(prepared.fetch_shape)
        return result.fetch_all()

    def fetch_all(self, sql: str, shape: FetchShape | str = FetchShape.MAPPING) -> list[Any]:
        result = self.run(sql, path="storage.db.query")
        return result.set_shape(shape).fetch_all()

    # -- Transactions -------------------------------------------------------

    def begin(self) -> None:
        """Open a transaction; a second begin on the same handle is an error."""
        if self._in_transaction:
            raise ExecutionError(
                "A transaction is already open on this connection",
                path="storage.db.transactions.begin",
                context=self._context,
            )
        conn = self.get_connection()
        with self._native_errors("storage.db.transactions.begin"):
            self._begin(conn)
        self._in_transaction = True
        logger.debug("transaction_begin", backend=self._config.name)

    def commit(self) -> None:
        if not self._in_transaction:
            return
        with self._native_errors("storage.db.transactions.commit"):
            self._commit(self._conn)
        self._in_transaction = False
        logger.debug("transaction_commit", backend=self._config.name)

    def rollback(self) -> bool:
        """
        Roll back the open transaction.

        Returns whether a rollback was performed.
        """
        if not self._in_transaction or self._conn is None:
            return False
        self._in_transaction = False
        with self._native_errors("storage.db.transactions.rollback"):
            self._rollback(self._conn)
        logger.debug("transaction_rollback", backend=self._config.name)
        return True

    @contextmanager
    def transaction(self) -> Iterator[DatabaseAdapter]:
        """Commit on success, roll back on any exception."""
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    # -- Cursor streaming ---------------------------------------------------

    def check_cursor(self, sql: str, cursor_name: str) -> None:
        """
        Validate a cursor name and statement without touching the connection.

        A statement written as ``DECLARE <name> CURSOR FOR ...`` must declare
        ``cursor_name`` itself.
        """
        if not is_identifier(cursor_name):
            raise ValidationError(
                "Cursor name must be a plain identifier",
                path="storage.db.cursor",
                context=self._context,
                field="cursor_name",
                value=cursor_name,
            )
        declared = declared_cursor_name(sql)
        if declared is not None and declared.lower() != cursor_name.lower():
            raise ValidationError(
                f"Statement declares cursor {declared!r}, expected {cursor_name!r}",
                path="storage.db.cursor",
                context=self._context,
                field="cursor_name",
                value=cursor_name,
            )

    def declare_cursor(self, sql: str, cursor_name: str) -> None:
        """
        Start streaming ``sql`` under ``cursor_name``.

        Dialects with server-side cursors run a ``DECLARE`` (a bare SELECT is
        wrapped in one) and later ``FETCH n``. The others stream through a
        driver cursor pulled with ``fetchmany``, with any leading
        ``DECLARE <name> CURSOR FOR`` dropped.
        """
        self.check_cursor(sql, cursor_name)
        if self._dialect.supports_declare_cursor:
            if declared_cursor_name(sql) is None:
                sql = self._dialect.declare_cursor(cursor_name, sql)
            self.run(sql, path="storage.db.cursor.declare")
            self._cursors[cursor_name] = cursor_name
            return

        conn = self.get_connection()
        with self._native_errors("storage.db.cursor.declare", statement=sql):
            cursor = self._streaming_cursor(conn)
            cursor.execute(strip_declare(sql))
        self._cursors[cursor_name] = cursor

    def _streaming_cursor(self, conn: Any) -> Any:
        return conn.cursor()

    def fetch_cursor(self, cursor_name: str, batch_size: int) -> list[dict[str, Any]]:
        """Next ``batch_size`` rows as dicts; an empty list means exhausted."""
        cursor = self._cursors.get(cursor_name)
        if cursor is None:
            raise ExecutionError(
                f"Cursor {cursor_name!r} is not declared",
                path="storage.db.cursor.fetch",
                context=self._context,
            )
        if self._dialect.supports_declare_cursor:
            result = self.run(
                self._dialect.fetch_cursor(cursor_name, batch_size),
                path="storage.db.cursor.fetch",
            )
            return result.fetch_all()

        with self._native_errors("storage.db.cursor.fetch", cursor=cursor_name):
            rows = cursor.fetchmany(batch_size)
            columns = [desc[0] for desc in cursor.description] if cursor.description else []
        return [dict(zip(columns, row, strict=False)) for row in rows]

    def close_cursor(self, cursor_name: str) -> None:
        cursor = self._cursors.pop(cursor_name, None)
        if cursor is None:
            return
        if self._dialect.supports_declare_cursor:
            self.run(self._dialect.close_cursor(cursor_name), path="storage.db.cursor.close")
            return
        with self._native_errors("storage.db.cursor.close", cursor=cursor_name):
            cursor.close()

    # -- Introspection / quoting --------------------------------------------

    def introspect_columns(
        self,
        schema: str,
        table: str,
        columns: Sequence[str] | None = None,
    ) -> list[ColumnInfo]:
        """Column metadata of ``schema.table``, optionally limited to ``columns``."""
        columns = list(columns or [])
        params: dict[str, Any] = {"schema": schema, "table": table}
        params.update({f"col_{index}": name for index, name in enumerate(columns)})
        result = self.run(
            self._dialect.columns_query(len(columns)),
            params,
            path="storage.db.introspect_columns",
        )
        return [ColumnInfo.from_row(row) for row in result.fetch_all()]

    def quote(self, text: str) -> str:
        """Escaped string literal for ``text``, quotes included."""
        self.get_connection()
        return self._dialect.quote_literal(text)

    # -- Context manager ----------------------------------------------------

    def __enter__(self) -> DatabaseAdapter:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(backend={self._config.name!r}, "
            f"connected={self.is_connected}, in_transaction={self._in_transaction})"
        )


__all__ = [
    "DatabaseAdapter",
    "declared_cursor_name",
    "strip_declare",
]
