"""Tests for ``txsql.storage``: the execution facade over named backends."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from txsql.adapters.registry import AdapterRegistry
from txsql.config import StorageConfig, StorageSettings
from txsql.errors import (
    ConfigurationError,
    ExceptionContext,
    ExecutionError,
    TransactionError,
    ValidationError,
)
from txsql.result import FetchShape, QueryResult
from txsql.storage import Storage, get_storage, set_storage


class TestConfigurationLookup:
    def test_unknown_backend(self, storage):
        with pytest.raises(ConfigurationError) as exc_info:
            storage.exec_raw("SELECT 1", conf="nope", context="page")
        err = exc_info.value
        assert err.context is ExceptionContext.PAGE
        assert err.path == "storage.db.select_strategy"
        assert err.details["conf"] == "nope"

    def test_adapter_is_fresh_per_call(self, storage):
        first = storage.adapter()
        assert first is not storage.adapter()
        assert first.is_connected is False
        assert first.config.name == "local"

    def test_named_backend(self, storage):
        adapter = storage.adapter("main", context="cli")
        assert adapter.db_type.value == "postgresql"
        assert adapter.context is ExceptionContext.CLI

    def test_config_loaded_from_settings(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text(json.dumps({"storage": [{"files": {"type": "sqlite", "name": str(tmp_path / "f.db")}}]}))
        storage = Storage(settings=StorageSettings(_env_file=None, config_files=[path]))
        assert storage.config.default_name == "files"
        assert storage.test_connection() is True

    def test_custom_registry(self, storage_config):
        registry = MagicMock(spec=AdapterRegistry)
        storage = Storage(storage_config, registry=registry)
        storage.adapter("main")
        config = registry.create.call_args.args[0]
        assert config.name == "main"


class TestConnection:
    def test_test_connection(self, storage):
        assert storage.test_connection() is True

    def test_unreachable(self, tmp_path):
        config = StorageConfig.from_mapping(
            {"storage": [{"gone": {"type": "sqlite", "name": str(tmp_path / "no" / "dir.db")}}]}
        )
        assert Storage(config).test_connection() is False


class TestRawStatements:
    def test_exec_raw_returns_affected_rows(self, seeded_storage):
        assert seeded_storage.exec_raw("UPDATE users SET active = 1 WHERE id < 3") == 2

    def test_query_raw_outlives_connection(self, seeded_storage):
        result = seeded_storage.query_raw("SELECT id, name FROM users ORDER BY id")
        assert isinstance(result, QueryResult)
        seeded_storage.set_fetch_shape(result, "sequence")
        assert seeded_storage.fetch_result(result) == [(1, "a"), (2, "b"), (3, "c")]

    def test_set_fetch_shape_unknown(self, seeded_storage):
        result = seeded_storage.query_raw("SELECT 1")
        with pytest.raises(ExecutionError) as exc_info:
            seeded_storage.set_fetch_shape(result, "xml", context="strong-api")
        assert exc_info.value.context is ExceptionContext.STRONG_API
        assert result.shape is FetchShape.MAPPING

    def test_fetch_all_assoc(self, seeded_storage):
        assert seeded_storage.fetch_all_assoc("SELECT id, name FROM users WHERE id = 2") == [
            {"id": 2, "name": "b"}
        ]

    def test_fetch_all_scalar(self, seeded_storage):
        assert seeded_storage.fetch_all_scalar("SELECT name FROM users ORDER BY id") == ["a", "b", "c"]

    def test_native_error_tagged(self, seeded_storage):
        with pytest.raises(ExecutionError) as exc_info:
            seeded_storage.exec_raw("DROP TABLE nothing_here", context="cli")
        assert exc_info.value.context is ExceptionContext.CLI
        assert exc_info.value.path == "storage.db.exec"


class TestExecuteOne:
    def test_bound_select(self, seeded_storage):
        rows = seeded_storage.execute_one(
            {"text": "SELECT name FROM users WHERE id = :id", "paramTypes": ["int"], "id": "1"}
        )
        assert rows == [{"name": "a"}]

    def test_write_returns_no_rows(self, seeded_storage):
        rows = seeded_storage.execute_one({"text": "DELETE FROM users WHERE name = :name", "name": "c"})
        assert rows == []
        assert seeded_storage.fetch_all_scalar("SELECT COUNT(*) FROM users") == [2]

    def test_validation_runs_before_backend_lookup(self, seeded_storage):
        with pytest.raises(ValidationError, match="not a recognized statement") as exc_info:
            seeded_storage.execute_one({"text": "DANGEROUS not sql"}, conf="nope", context="cli")
        assert exc_info.value.context is ExceptionContext.CLI

    def test_missing_value(self, seeded_storage):
        with pytest.raises(ValidationError, match="missing parameter value"):
            seeded_storage.execute_one({"text": "SELECT * FROM users WHERE id = :id"})


class TestExecuteBatch:
    def test_envelope(self, seeded_storage):
        envelope = seeded_storage.execute_batch(
            [
                {"template": "INSERT INTO users (name) VALUES (:name)", "name": ["d", "e"]},
                {"text": "SELECT name FROM users WHERE id > 3 ORDER BY id"},
            ]
        )
        assert envelope.to_dict() == {
            "success": True,
            "rows": [{"name": "d"}, {"name": "e"}],
            "affectedRowCount": 2,
            "insertedIds": [4, 5],
        }

    def test_rollback_leaves_no_trace(self, seeded_storage):
        with pytest.raises(TransactionError) as exc_info:
            seeded_storage.execute_batch(
                [
                    {"text": "DELETE FROM users"},
                    {"template": "INSERT INTO users (name) VALUES (:name)", "name": [None]},
                ],
                context="async",
            )
        assert exc_info.value.rolled_back is True
        assert exc_info.value.context is ExceptionContext.ASYNC
        assert seeded_storage.fetch_all_scalar("SELECT COUNT(*) FROM users") == [3]

    def test_invalid_batch(self, seeded_storage):
        with pytest.raises(ValidationError):
            seeded_storage.execute_batch([], context="page")


class TestCursors:
    def test_stream_cursor_default_batch_size(self, seeded_storage):
        rows = seeded_storage.stream_cursor("SELECT id FROM users ORDER BY id", "users_cur")
        assert rows == [{"id": 1}, {"id": 2}, {"id": 3}]

    def test_iter_cursor(self, seeded_storage):
        batches = list(seeded_storage.iter_cursor("SELECT id FROM users ORDER BY id", "users_cur"))
        assert [len(batch) for batch in batches] == [2, 1]

    def test_explicit_batch_size(self, seeded_storage):
        batches = list(
            seeded_storage.iter_cursor("SELECT id FROM users", "users_cur", batch_size=1)
        )
        assert [len(batch) for batch in batches] == [1, 1, 1]

    def test_invalid_cursor_name(self, seeded_storage):
        with pytest.raises(ValidationError, match="plain identifier"):
            seeded_storage.stream_cursor("SELECT 1", "1bad")


class TestIntrospectionAndQuoting:
    def test_introspect_columns(self, seeded_storage):
        columns = seeded_storage.introspect_columns("main", "users", ["id"])
        assert len(columns) == 1
        assert columns[0].is_auto_increment is True
        assert columns[0].to_dict()["name"] == "id"

    def test_quote(self, storage):
        assert storage.quote("a'b") == "'a''b'"


class TestProcessWideStorage:
    def test_set_and_get(self, storage):
        set_storage(storage)
        assert get_storage() is storage

    def test_lazy_default(self):
        storage = get_storage()
        assert isinstance(storage, Storage)
        assert get_storage() is storage
