"""Database adapters: one execution contract for three backends.

Manifesto:
    The execution layer must behave identically on PostgreSQL (production),
    MySQL / MariaDB (legacy deployments) and SQLite (development and tests).
    Each adapter owns exactly one connection, wraps every native driver
    exception in a typed storage error and never logs or renders errors.

    Drivers are imported when an adapter first connects, not at import time.
    Install the corresponding extra::

        pip install txsql[postgresql]   # psycopg2-binary
        pip install txsql[mysql]        # mysql-connector-python

Architecture::

    DatabaseAdapter (base.py)        connect/run/begin/commit/rollback/cursor/introspect
        |-- PostgreSQLAdapter        psycopg2, server-side DECLARE/FETCH cursors
        |-- MySQLAdapter             mysql.connector, unbuffered fetchmany streaming
        |-- SQLiteAdapter            stdlib sqlite3

    AdapterRegistry (registry.py)    DatabaseType -> adapter class
    BackendConfig (types.py)         Resolved connection parameters
    DatabaseType (types.py)          Closed enum of supported dialects

Guardrails:
    ❌ ``adapter.run("SELECT * FROM t WHERE id=" + user_input)``
    ✅ ``adapter.run("SELECT * FROM t WHERE id = :id", {"id": user_input})``
    ❌ Sharing one adapter between concurrent callers
    ✅ ``get_adapter(config)`` per call; the adapter owns its connection

Tags:
    txsql, database, adapters, multi-backend, registry-pattern,
    postgresql, mysql, sqlite

Doc-Types:
    package-overview, architecture-map, module-index
"""

from txsql.dialect import Dialect, get_dialect

from .base import DatabaseAdapter
from .mysql import MySQLAdapter
from .postgresql import PostgreSQLAdapter
from .registry import AdapterRegistry, adapter_registry, get_adapter
from .sqlite import SQLiteAdapter
from .types import BackendConfig, DatabaseType

__all__ = [
    # Types
    "DatabaseType",
    "BackendConfig",
    # Dialects
    "Dialect",
    "get_dialect",
    # Base class
    "DatabaseAdapter",
    # Implementations
    "PostgreSQLAdapter",
    "MySQLAdapter",
    "SQLiteAdapter",
    # Registry
    "AdapterRegistry",
    "adapter_registry",
    "get_adapter",
]
