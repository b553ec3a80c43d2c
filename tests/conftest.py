"""
Shared pytest fixtures and configuration for txsql tests.

This module provides:
- Global state cleanup (settings cache, secrets resolver, process-wide storage)
- Resolved backend configurations for every dialect
- SQLite adapters and facades backed by a throwaway database file

Usage:
    Fixtures are auto-discovered by pytest. Simply use them as function
    arguments (pytest injects them automatically).

    def test_something(sqlite_adapter, users_table):
        ...
"""

import sys
from pathlib import Path
from typing import Generator

import pytest

# Ensure txsql package is importable without an editable install
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from txsql.adapters.sqlite import SQLiteAdapter
from txsql.adapters.types import BackendConfig, DatabaseType
from txsql.config import StorageConfig, StorageSettings, clear_settings_cache
from txsql.secrets import SecretValue, set_resolver
from txsql.storage import Storage, set_storage


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark all tests without explicit markers as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Global State Cleanup
# =============================================================================


@pytest.fixture(autouse=True)
def clean_global_state(monkeypatch) -> Generator[None, None, None]:
    """
    Reset module-level caches before and after each test.

    Also strips ``TXSQL_*`` variables so a developer's shell cannot leak
    into settings tests.
    """
    import os

    for key in list(os.environ):
        if key.startswith("TXSQL_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    set_resolver(None)
    set_storage(None)
    yield
    clear_settings_cache()
    set_resolver(None)
    set_storage(None)


# =============================================================================
# Backend Configurations
# =============================================================================


@pytest.fixture
def pg_config() -> BackendConfig:
    return BackendConfig(
        name="main",
        db_type=DatabaseType.POSTGRESQL,
        database="app",
        host="db.example.com",
        port=5432,
        username="app",
        password=SecretValue("pg-secret"),
    )


@pytest.fixture
def mysql_config() -> BackendConfig:
    return BackendConfig(
        name="reports",
        db_type=DatabaseType.MYSQL,
        database="reports",
        host="localhost",
        username="report",
        password=SecretValue("my-secret"),
    )


@pytest.fixture
def sqlite_path(tmp_path: Path) -> Path:
    return tmp_path / "app.db"


@pytest.fixture
def sqlite_config(sqlite_path: Path) -> BackendConfig:
    return BackendConfig(name="local", db_type=DatabaseType.SQLITE, database=str(sqlite_path))


# =============================================================================
# SQLite Adapters
# =============================================================================


USERS_DDL = (
    "CREATE TABLE users ("
    " id INTEGER PRIMARY KEY AUTOINCREMENT,"
    " name TEXT NOT NULL UNIQUE,"
    " active INTEGER DEFAULT 0"
    ")"
)


@pytest.fixture
def sqlite_adapter(sqlite_config: BackendConfig) -> Generator[SQLiteAdapter, None, None]:
    adapter = SQLiteAdapter(sqlite_config)
    yield adapter
    adapter.disconnect()


@pytest.fixture
def users_table(sqlite_adapter: SQLiteAdapter) -> SQLiteAdapter:
    """``users`` table with rows a, b, c (ids 1-3)."""
    sqlite_adapter.execute(USERS_DDL)
    for name in ("a", "b", "c"):
        sqlite_adapter.run("INSERT INTO users (name) VALUES (:name)", {"name": name})
    return sqlite_adapter


# =============================================================================
# Facade
# =============================================================================


@pytest.fixture
def storage_config(sqlite_path: Path) -> StorageConfig:
    return StorageConfig.from_mapping(
        {
            "storage": [
                {"local": {"type": "sqlite", "name": str(sqlite_path)}},
                {
                    "main": {
                        "type": "pgsql",
                        "host": "db.example.com",
                        "port": 5432,
                        "name": "app",
                        "user": "app",
                        "pass": "pg-secret",
                    }
                },
            ]
        }
    )


@pytest.fixture
def storage(storage_config: StorageConfig) -> Storage:
    return Storage(storage_config, settings=StorageSettings(_env_file=None, cursor_batch_size=2))


@pytest.fixture
def seeded_storage(storage: Storage) -> Storage:
    """Facade whose default backend has the ``users`` table with a, b, c."""
    storage.execute_batch(
        [
            {"text": USERS_DDL},
            {"template": "INSERT INTO users (name) VALUES (:name)", "name": ["a", "b", "c"]},
        ]
    )
    return storage
