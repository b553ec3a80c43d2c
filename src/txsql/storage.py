"""
Execution facade: named backends in, rows and envelopes out.

:class:`Storage` resolves a backend name to a fresh adapter for every call,
runs one operation on it and closes the connection again. Nothing is
reused across calls, so concurrent callers never share a connection.

Every public operation takes an optional backend name (``conf``, None for
the default backend) and the exception-context tag of the calling surface
(``page``, ``async``, ``api``, ``strong-api`` or ``cli``), which is attached
to any error raised.

Examples:
    >>> storage = Storage(StorageConfig.from_files(["config/storage.json"]))
    >>> storage.execute_one({"text": "SELECT * FROM users WHERE id = :id", "id": 7})
    [{'id': 7, 'name': 'ada'}]
    >>> storage.execute_batch([
    ...     {"template": "INSERT INTO tags (name) VALUES (:name)", "name": ["a", "b"]},
    ... ], conf="reports", context="cli").inserted_ids
    [41, 42]

Tags:
    facade, storage, execution, txsql

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

from txsql.adapters.base import DatabaseAdapter
from txsql.adapters.registry import AdapterRegistry, adapter_registry
from txsql.config import StorageConfig, StorageSettings, get_settings
from txsql.cursor import CursorSession
from txsql.errors import ExceptionContext, StorageError
from txsql.result import ColumnInfo, FetchShape, QueryResult, ResultEnvelope
from txsql.statements import Operation, PreparedStatement, validate_statement
from txsql.transactions import TransactionOrchestrator


@contextmanager
def _tagged(context: ExceptionContext) -> Iterator[None]:
    """Stamp the caller's context tag on any storage error passing through."""
    try:
        yield
    except StorageError as exc:
        exc.with_context(context=context)
        raise


class Storage:
    """Public operation set over the configured backends."""

    def __init__(
        self,
        config: StorageConfig | None = None,
        *,
        settings: StorageSettings | None = None,
        registry: AdapterRegistry | None = None,
    ):
        self._config = config
        self._settings = settings
        self._registry = registry or adapter_registry

    @property
    def settings(self) -> StorageSettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def config(self) -> StorageConfig:
        """Backend definitions, loaded from the settings' files on first use."""
        if self._config is None:
            self._config = StorageConfig.from_settings(self.settings)
        return self._config

    def adapter(
        self,
        conf: str | None = None,
        context: ExceptionContext | str | None = None,
    ) -> DatabaseAdapter:
        """
        A fresh, unconnected adapter for backend ``conf``.

        Raises:
            ConfigurationError: Unknown backend name or dialect.
        """
        ctx = ExceptionContext.parse(context)
        with _tagged(ctx):
            return self._registry.create(self.config.get(conf), context=ctx)

    # -- Connection ---------------------------------------------------------

    def test_connection(
        self,
        conf: str | None = None,
        context: ExceptionContext | str | None = None,
    ) -> bool:
        """Whether backend ``conf`` accepts a connection; never raises on refusal."""
        with self.adapter(conf, context) as adapter:
            return adapter.connect(test_only=True)

    # -- Raw statements -----------------------------------------------------

    def exec_raw(
        self,
        sql: str,
        conf: str | None = None,
        context: ExceptionContext | str | None = None,
    ) -> int:
        """Run a literal statement and return the affected row count."""
        with self.adapter(conf, context) as adapter:
            return adapter.execute(sql, path="storage.db.exec").affected_rows

    def query_raw(
        self,
        sql: str,
        conf: str | None = None,
        context: ExceptionContext | str | None = None,
    ) -> QueryResult:
        """Run a literal query; rows are read later with :meth:`fetch_result`."""
        with self.adapter(conf, context) as adapter:
            return adapter.execute(sql, path="storage.db.query")

    def set_fetch_shape(
        self,
        result: QueryResult,
        shape: FetchShape | str,
        context: ExceptionContext | str | None = None,
    ) -> QueryResult:
        """Change how ``result`` hands out rows; unknown shapes raise ExecutionError."""
        with _tagged(ExceptionContext.parse(context)):
            return result.set_shape(shape)

    def fetch_result(self, result: QueryResult) -> list[Any]:
        """Remaining rows of ``result`` in its current fetch shape."""
        return result.fetch_all()

    def fetch_all_assoc(
        self,
        sql: str,
        conf: str | None = None,
        context: ExceptionContext | str | None = None,
    ) -> list[dict[str, Any]]:
        with self.adapter(conf, context) as adapter:
            return adapter.fetch_all(sql, FetchShape.MAPPING)

    def fetch_all_scalar(
        self,
        sql: str,
        conf: str | None = None,
        context: ExceptionContext | str | None = None,
    ) -> list[Any]:
        """First column of every row."""
        with self.adapter(conf, context) as adapter:
            return adapter.fetch_all(sql, FetchShape.SCALAR)

    # -- Prepared / batch ---------------------------------------------------

    def execute_one(
        self,
        descriptor: Mapping[str, Any] | PreparedStatement,
        conf: str | None = None,
        context: ExceptionContext | str | None = None,
    ) -> list[Any]:
        """
        Validate and run one statement with bound parameters.

        Validation happens before the backend is even resolved, so a
        malformed descriptor never opens a connection.
        """
        ctx = ExceptionContext.parse(context)
        with _tagged(ctx):
            statement = validate_statement(descriptor)
        with self.adapter(conf, ctx) as adapter:
            return adapter.execute_prepared(statement)

    def execute_batch(
        self,
        descriptors: Sequence[Mapping[str, Any] | Operation],
        conf: str | None = None,
        context: ExceptionContext | str | None = None,
    ) -> ResultEnvelope:
        """Run ``descriptors`` as one atomic transaction."""
        with self.adapter(conf, context) as adapter:
            return TransactionOrchestrator(adapter).run(descriptors)

    # -- Cursors ------------------------------------------------------------

    def stream_cursor(
        self,
        sql: str,
        cursor_name: str,
        batch_size: int | None = None,
        conf: str | None = None,
        context: ExceptionContext | str | None = None,
    ) -> list[dict[str, Any]]:
        """Read a large result set in ``batch_size`` steps and return all rows."""
        with self.adapter(conf, context) as adapter:
            size = batch_size if batch_size is not None else self.settings.cursor_batch_size
            return CursorSession(adapter, sql, cursor_name, size).fetch_all()

    def iter_cursor(
        self,
        sql: str,
        cursor_name: str,
        batch_size: int | None = None,
        conf: str | None = None,
        context: ExceptionContext | str | None = None,
    ) -> Iterator[list[dict[str, Any]]]:
        """Like :meth:`stream_cursor` but yields batches without accumulating them."""
        with self.adapter(conf, context) as adapter:
            size = batch_size if batch_size is not None else self.settings.cursor_batch_size
            yield from CursorSession(adapter, sql, cursor_name, size).iter_batches()

    # -- Introspection / quoting --------------------------------------------

    def introspect_columns(
        self,
        schema: str,
        table: str,
        columns: Sequence[str] | None = None,
        conf: str | None = None,
        context: ExceptionContext | str | None = None,
    ) -> list[ColumnInfo]:
        with self.adapter(conf, context) as adapter:
            return adapter.introspect_columns(schema, table, columns)

    def quote(
        self,
        text: str,
        conf: str | None = None,
        context: ExceptionContext | str | None = None,
    ) -> str:
        with self.adapter(conf, context) as adapter:
            return adapter.quote(text)


# =============================================================================
# Process-wide instance
# =============================================================================

_storage: Storage | None = None


def get_storage() -> Storage:
    """The process-wide :class:`Storage`, built from settings on first use."""
    global _storage
    if _storage is None:
        _storage = Storage()
    return _storage


def set_storage(storage: Storage | None) -> None:
    """Replace (or reset with None) the process-wide :class:`Storage`."""
    global _storage
    _storage = storage


__all__ = ["Storage", "get_storage", "set_storage"]
