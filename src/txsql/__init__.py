"""txsql -- transactional SQL execution over pluggable backends.

Manifesto:
    Application code hands the execution layer declarative operations
    (literal SQL or parameterised templates) and a backend name. The layer
    validates them before any I/O, runs them on a connection it owns for
    exactly one call, and either commits a whole batch or leaves no trace.
    Failures are raised as typed errors carrying the caller's context tag;
    the layer never renders or logs them.

Architecture::

    Layer 1 -- Errors, results, logging
        errors.py          StorageError hierarchy + ExceptionContext tags
        result.py          QueryResult, ResultEnvelope, ColumnInfo, FetchShape
        logging.py         structlog configuration (DEBUG lifecycle events only)

    Layer 2 -- Configuration
        config/            StorageSettings (pydantic-settings), StorageConfig
        secrets.py         secret: reference resolution for credentials

    Layer 3 -- Statements
        dialect.py         :name placeholders, quoting, catalog SQL per engine
        verbs.py           SELECT/INSERT/UPDATE/DELETE classification
        statements.py      Descriptor validation, Literal/Templated operations

    Layer 4 -- Execution
        adapters/          PostgreSQL, MySQL, SQLite adapters + registry
        transactions.py    Atomic batches with per-verb aggregation
        cursor.py          Cursor sessions (DECLARE/FETCH or fetchmany)
        storage.py         Storage facade: one fresh adapter per call

Examples:
    >>> from txsql import Storage, StorageConfig
    >>> storage = Storage(StorageConfig.from_mapping(
    ...     {"storage": [{"local": {"type": "sqlite", "name": "app.db"}}]}
    ... ))
    >>> storage.execute_batch([{"text": "CREATE TABLE t (id INTEGER PRIMARY KEY, v TEXT)"},
    ...                        {"template": "INSERT INTO t (v) VALUES (:v)", "v": ["a", "b"]}])
    ResultEnvelope(success=True, rows=[], affected_row_count=2, inserted_ids=[1, 2])

Tags:
    txsql, database, transactions, execution-layer

Doc-Types:
    package-overview, module-index
"""

__version__ = "0.1.0"

from txsql.adapters import BackendConfig, DatabaseAdapter, DatabaseType, get_adapter
from txsql.config import BackendEntry, StorageConfig, StorageSettings, get_settings
from txsql.cursor import CursorSession, CursorState
from txsql.errors import (
    ConfigurationError,
    DatabaseConnectionError,
    ErrorCategory,
    ExceptionContext,
    ExecutionError,
    StorageError,
    TransactionError,
    ValidationError,
)
from txsql.logging import configure_logging, configure_logging_from_settings, get_logger
from txsql.result import ColumnInfo, FetchShape, QueryResult, ResultEnvelope
from txsql.statements import (
    BindStyle,
    LiteralOperation,
    ParamType,
    PreparedStatement,
    TemplatedOperation,
    build_batch,
    validate_statement,
)
from txsql.storage import Storage, get_storage, set_storage
from txsql.transactions import TransactionOrchestrator, execute_batch
from txsql.verbs import Verb, classify

__all__ = [
    "__version__",
    # Facade
    "Storage",
    "get_storage",
    "set_storage",
    # Configuration
    "StorageSettings",
    "StorageConfig",
    "BackendEntry",
    "BackendConfig",
    "get_settings",
    # Logging
    "configure_logging",
    "configure_logging_from_settings",
    "get_logger",
    # Adapters
    "DatabaseType",
    "DatabaseAdapter",
    "get_adapter",
    # Statements
    "BindStyle",
    "ParamType",
    "LiteralOperation",
    "TemplatedOperation",
    "PreparedStatement",
    "validate_statement",
    "build_batch",
    "Verb",
    "classify",
    # Execution
    "TransactionOrchestrator",
    "execute_batch",
    "CursorSession",
    "CursorState",
    # Results
    "QueryResult",
    "ResultEnvelope",
    "ColumnInfo",
    "FetchShape",
    # Errors
    "StorageError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "ValidationError",
    "ExecutionError",
    "TransactionError",
    "ErrorCategory",
    "ExceptionContext",
]
