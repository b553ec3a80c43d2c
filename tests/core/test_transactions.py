"""Tests for ``txsql.transactions``: atomic batches on a real SQLite file."""

from __future__ import annotations

import sqlite3
from unittest.mock import patch

import pytest

from txsql.errors import ExceptionContext, TransactionError, ValidationError
from txsql.statements import LiteralOperation
from txsql.transactions import TransactionOrchestrator, execute_batch


def count_users(adapter) -> int:
    return adapter.fetch_all("SELECT COUNT(*) FROM users", "scalar")[0]


class TestAggregation:
    def test_insert_and_update(self, users_table):
        envelope = TransactionOrchestrator(users_table).run(
            [
                {"template": "INSERT INTO users (name) VALUES (:name)", "name": ["d", "e", "f"]},
                {"text": "UPDATE users SET active = 1 WHERE name = 'a'"},
            ]
        )
        assert envelope.success is True
        assert envelope.affected_row_count == 4
        assert envelope.inserted_ids == [4, 5, 6]
        assert envelope.rows == []

    def test_templated_select_concatenates_rows(self, users_table):
        envelope = TransactionOrchestrator(users_table).run(
            [
                {
                    "template": "SELECT id, name FROM users WHERE id = :id",
                    "paramTypes": ["int"],
                    "id": [3, 1, 2, 1, 99],
                }
            ]
        )
        assert envelope.rows == [
            {"id": 3, "name": "c"},
            {"id": 1, "name": "a"},
            {"id": 2, "name": "b"},
            {"id": 1, "name": "a"},
        ]
        assert envelope.affected_row_count == 0

    def test_mixed_batch_sees_own_writes(self, users_table):
        envelope = TransactionOrchestrator(users_table).run(
            [
                {"text": "DELETE FROM users WHERE name IN ('b', 'c')"},
                {"template": "INSERT INTO users (name) VALUES (:name)", "name": ["z"]},
                {"text": "SELECT name FROM users ORDER BY name"},
            ]
        )
        assert envelope.affected_row_count == 3
        assert envelope.rows == [{"name": "a"}, {"name": "z"}]

    def test_cte_update_is_counted(self, users_table):
        envelope = TransactionOrchestrator(users_table).run(
            [
                {
                    "text": "WITH t AS (SELECT id FROM users WHERE name = 'b') "
                    "UPDATE users SET active = 1 WHERE id IN (SELECT id FROM t)"
                }
            ]
        )
        assert envelope.affected_row_count == 1
        assert envelope.rows == []

    def test_other_verbs_aggregate_nothing(self, sqlite_adapter):
        envelope = TransactionOrchestrator(sqlite_adapter).run(
            [
                {"text": "CREATE TABLE tags (id INTEGER PRIMARY KEY, name TEXT)"},
                {"template": "INSERT INTO tags (name) VALUES (:name)", "name": ["x", "y"]},
            ]
        )
        assert envelope.affected_row_count == 2
        assert envelope.inserted_ids == [1, 2]

    def test_empty_value_arrays(self, users_table):
        envelope = TransactionOrchestrator(users_table).run(
            [{"template": "INSERT INTO users (name) VALUES (:name)", "name": []}]
        )
        assert envelope.success is True
        assert envelope.inserted_ids == []

    def test_insert_returning(self, users_table):
        envelope = TransactionOrchestrator(users_table).run(
            [{"template": "INSERT INTO users (name) VALUES (:name) RETURNING id", "name": ["q"]}]
        )
        assert envelope.inserted_ids == [4]
        assert envelope.rows == []

    def test_accepts_operations(self, users_table):
        envelope = execute_batch(users_table, [LiteralOperation("DELETE FROM users")])
        assert envelope.affected_row_count == 3

    def test_commit_is_durable(self, users_table):
        TransactionOrchestrator(users_table).run([{"text": "DELETE FROM users WHERE id = 1"}])
        assert not users_table.in_transaction
        users_table.disconnect()
        assert count_users(users_table) == 2


class TestAtomicity:
    def test_failure_rolls_back_everything(self, users_table):
        with pytest.raises(TransactionError) as exc_info:
            TransactionOrchestrator(users_table, context="cli").run(
                [
                    {"text": "DELETE FROM users WHERE name = 'c'"},
                    {"template": "INSERT INTO users (name) VALUES (:name)", "name": ["x", "a"]},
                ]
            )
        err = exc_info.value
        assert err.rolled_back is True
        assert err.context is ExceptionContext.CLI
        assert err.path == "storage.db.transactions"
        assert isinstance(err.cause, sqlite3.IntegrityError)
        assert err.details["sqlite_errorname"].startswith("SQLITE_CONSTRAINT")
        assert [op["kind"] for op in err.payload] == ["literal", "templated"]
        assert err.payload[1]["values"] == {"name": ["x", "a"]}

        assert not users_table.in_transaction
        assert count_users(users_table) == 3
        assert users_table.fetch_all("SELECT name FROM users WHERE name = 'x'") == []

    def test_unbindable_value_rolls_back(self, users_table):
        with pytest.raises(TransactionError) as exc_info:
            TransactionOrchestrator(users_table).run(
                [
                    {"text": "DELETE FROM users"},
                    {"template": "UPDATE users SET active = :n", "paramTypes": ["int"], "n": [2**70]},
                ]
            )
        err = exc_info.value
        assert err.rolled_back is True
        assert isinstance(err.cause, OverflowError)
        assert not users_table.in_transaction
        assert count_users(users_table) == 3

    def test_unexpected_exception_rolls_back(self, users_table):
        failure = RuntimeError("id lookup failed")
        with patch.object(type(users_table), "last_insert_id", side_effect=failure):
            with pytest.raises(TransactionError, match="id lookup failed") as exc_info:
                TransactionOrchestrator(users_table).run(
                    [{"template": "INSERT INTO users (name) VALUES (:name)", "name": ["d"]}]
                )
        assert exc_info.value.rolled_back is True
        assert exc_info.value.cause is failure
        assert not users_table.in_transaction
        assert count_users(users_table) == 3

    def test_context_defaults_to_adapter(self, users_table):
        with pytest.raises(TransactionError) as exc_info:
            TransactionOrchestrator(users_table).run([{"text": "SELECT * FROM missing"}])
        assert exc_info.value.context is users_table.context

    def test_adapter_usable_after_failure(self, users_table):
        orchestrator = TransactionOrchestrator(users_table)
        with pytest.raises(TransactionError):
            orchestrator.run([{"text": "INSERT INTO users (name) VALUES ('a')"}])
        envelope = orchestrator.run([{"text": "INSERT INTO users (name) VALUES ('d')"}])
        assert envelope.inserted_ids == [4]


class TestValidationBeforeIo:
    @pytest.mark.parametrize(
        "descriptors",
        [
            [],
            [{"template": "INSERT INTO users (name) VALUES (:name)", "name": ["a"]}, {"template": "DELETE FROM users"}],
            [{"template": "INSERT INTO t VALUES (:a, :b)", "a": [1, 2], "b": [1]}],
            [{"text": "SELECT 1", "template": "SELECT :a", "a": [1]}],
        ],
    )
    def test_never_connects(self, sqlite_adapter, descriptors):
        with pytest.raises(ValidationError) as exc_info:
            TransactionOrchestrator(sqlite_adapter, context="page").run(descriptors)
        assert exc_info.value.context is ExceptionContext.PAGE
        assert sqlite_adapter.is_connected is False
