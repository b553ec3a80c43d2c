"""Tests for ``txsql.config.storage``: storage files and backend lookup."""

from __future__ import annotations

import json

import pytest

from txsql.adapters.types import DatabaseType
from txsql.config import (
    BackendEntry,
    StorageConfig,
    StorageSettings,
    load_storage_file,
    merge_storage_sections,
    validate_entries,
)
from txsql.errors import ConfigurationError
from txsql.secrets import DictSecretBackend, SecretsResolver


def pg_entry(**overrides):
    body = {
        "type": "pgsql",
        "host": "10.0.0.5",
        "port": 5432,
        "name": "app",
        "user": "app",
        "pass": "pw",
    }
    body.update(overrides)
    return body


class TestBackendEntry:
    def test_valid_entry(self):
        entry = BackendEntry.model_validate(pg_entry(encoding="UTF8"))
        assert entry.type == "pgsql"
        assert entry.db_type is DatabaseType.POSTGRESQL
        assert entry.password == "pw"

    def test_type_is_normalized(self):
        entry = BackendEntry.model_validate(pg_entry(type="MariaDB"))
        assert entry.type == "mariadb"
        assert entry.db_type is DatabaseType.MYSQL

    def test_sqlite_needs_no_credentials(self):
        entry = BackendEntry.model_validate({"type": "sqlite", "name": "app.db"})
        assert entry.user is None
        assert entry.host == "localhost"

    def test_port_string_is_parsed(self):
        assert BackendEntry.model_validate(pg_entry(port="6543")).port == 6543

    def test_secret_references_are_kept(self):
        entry = BackendEntry.model_validate(
            pg_entry(host="secret:PG_HOST", port="secret:PG_PORT", **{"pass": "secret:env:PG_PASS"})
        )
        assert entry.host == "secret:PG_HOST"
        assert entry.port == "secret:PG_PORT"
        assert entry.password == "secret:env:PG_PASS"

    @pytest.mark.parametrize("host", ["localhost", "127.0.0.1", "::1", "db-1.internal.example.com"])
    def test_valid_hosts(self, host):
        assert BackendEntry.model_validate(pg_entry(host=host)).host == host


class TestValidateEntries:
    def test_unknown_type(self):
        with pytest.raises(ConfigurationError, match="Invalid storage type") as exc_info:
            validate_entries({"main": pg_entry(type="oracle")})
        assert exc_info.value.path == "storage.config.validate"

    def test_every_failure_is_reported(self):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_entries(
                {
                    "main": pg_entry(host="bad host!", port=70000),
                    "reports": pg_entry(encoding="klingon"),
                }
            )
        errors = exc_info.value.details["errors"]
        assert any(err.startswith("main.host") for err in errors)
        assert any(err.startswith("main.port") for err in errors)
        assert any(err.startswith("reports.encoding") for err in errors)

    def test_missing_credentials(self):
        with pytest.raises(ConfigurationError, match="Empty credentials: user, pass"):
            validate_entries({"main": pg_entry(user="", **{"pass": None})})

    def test_empty_name(self):
        with pytest.raises(ConfigurationError, match="Empty database name"):
            validate_entries({"main": pg_entry(name=" ")})


class TestMergeStorageSections:
    def test_list_form(self):
        merged = merge_storage_sections([{"storage": [{"main": {"type": "sqlite", "name": "a.db"}}]}])
        assert merged == {"main": {"type": "sqlite", "name": "a.db"}}

    def test_table_form(self):
        merged = merge_storage_sections([{"storage": {"main": {"type": "sqlite", "name": "a.db"}}}])
        assert merged == {"main": {"type": "sqlite", "name": "a.db"}}

    def test_later_document_overrides_per_key(self):
        merged = merge_storage_sections(
            [
                {"storage": [{"main": pg_entry()}]},
                {"storage": [{"main": {"host": "localhost"}}, {"extra": {"type": "sqlite", "name": "x"}}]},
            ]
        )
        assert merged["main"]["host"] == "localhost"
        assert merged["main"]["user"] == "app"
        assert list(merged) == ["main", "extra"]

    def test_multi_key_element_rejected(self):
        with pytest.raises(ConfigurationError, match="single-key"):
            merge_storage_sections([{"storage": [{"a": {}, "b": {}}]}])


class TestLoadStorageFile:
    def test_json(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text(json.dumps({"storage": [{"main": pg_entry()}]}))
        assert load_storage_file(path)["storage"][0]["main"]["name"] == "app"

    def test_toml(self, tmp_path):
        path = tmp_path / "storage.toml"
        path.write_text('[storage.local]\ntype = "sqlite"\nname = "app.db"\n')
        assert load_storage_file(path) == {"storage": {"local": {"type": "sqlite", "name": "app.db"}}}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read storage file") as exc_info:
            load_storage_file(tmp_path / "absent.json")
        assert exc_info.value.path == "storage.config.load"

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError, match="Malformed storage file"):
            load_storage_file(path)


class TestStorageConfig:
    def test_default_is_first_declared(self, storage_config):
        assert storage_config.names == ["local", "main"]
        assert storage_config.default_name == "local"
        assert "main" in storage_config
        assert "nope" not in storage_config

    def test_explicit_default(self):
        config = StorageConfig.from_mapping(
            {"storage": [{"a": {"type": "sqlite", "name": "a.db"}}, {"b": {"type": "sqlite", "name": "b.db"}}]},
            default="b",
        )
        assert config.get().name == "b"

    def test_unknown_default(self):
        with pytest.raises(ConfigurationError, match="is not configured"):
            StorageConfig.from_mapping({"storage": [{"a": {"type": "sqlite", "name": "a.db"}}]}, default="z")

    def test_empty(self):
        with pytest.raises(ConfigurationError, match="No storage backends"):
            StorageConfig.from_mapping({"storage": []})

    def test_get_resolves_backend_config(self, storage_config):
        config = storage_config.get("main")
        assert config.name == "main"
        assert config.db_type is DatabaseType.POSTGRESQL
        assert config.database == "app"
        assert config.host == "db.example.com"
        assert config.effective_port == 5432
        assert config.username == "app"
        assert config.password_value() == "pg-secret"
        assert "pg-secret" not in repr(config)

    def test_get_unknown_name(self, storage_config):
        with pytest.raises(ConfigurationError) as exc_info:
            storage_config.get("nope")
        assert exc_info.value.path == "storage.db.select_strategy"
        assert exc_info.value.details == {"conf": "nope"}

    def test_secret_references_resolved_per_call(self):
        backend = DictSecretBackend({"PG_USER": "svc", "PG_PASS": "s3cret", "PG_PORT": "6543"})
        config = StorageConfig.from_mapping(
            {
                "storage": [
                    {
                        "main": pg_entry(
                            user="secret:dict:PG_USER",
                            port="secret:PG_PORT",
                            **{"pass": "secret:dict:PG_PASS"},
                        )
                    }
                ]
            },
            resolver=SecretsResolver([backend]),
        )
        first = config.get()
        assert first.username == "svc"
        assert first.port == 6543
        assert first.password_value() == "s3cret"

        backend.set("PG_PASS", "rotated")
        assert config.get().password_value() == "rotated"

    def test_unresolvable_secret(self):
        config = StorageConfig.from_mapping(
            {"storage": [{"main": pg_entry(**{"pass": "secret:dict:NOPE"})}]},
            resolver=SecretsResolver([DictSecretBackend()]),
        )
        with pytest.raises(ConfigurationError, match="Cannot resolve credentials") as exc_info:
            config.get("main")
        assert exc_info.value.path == "storage.config.decrypt"
        assert "s3cret" not in str(exc_info.value.to_dict())

    def test_timeouts_propagate(self):
        config = StorageConfig.from_mapping(
            {"storage": [{"main": pg_entry()}]}, connect_timeout=3, statement_timeout=30
        )
        resolved = config.get()
        assert resolved.connect_timeout == 3
        assert resolved.statement_timeout == 30

    def test_from_files_merges_in_order(self, tmp_path):
        global_file = tmp_path / "global.json"
        global_file.write_text(json.dumps({"storage": [{"main": pg_entry()}]}))
        local_file = tmp_path / "local.toml"
        local_file.write_text('[storage.main]\nhost = "localhost"\n')

        config = StorageConfig.from_files([global_file, local_file])
        resolved = config.get("main")
        assert resolved.host == "localhost"
        assert resolved.database == "app"

    def test_from_settings(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text(
            json.dumps({"storage": [{"a": {"type": "sqlite", "name": "a.db"}}, {"b": {"type": "sqlite", "name": "b.db"}}]})
        )
        settings = StorageSettings(
            _env_file=None, config_files=[path], default_backend="b", connect_timeout=4
        )
        config = StorageConfig.from_settings(settings)
        assert config.default_name == "b"
        assert config.get().connect_timeout == 4

    def test_from_settings_without_files(self):
        with pytest.raises(ConfigurationError, match="TXSQL_CONFIG_FILES"):
            StorageConfig.from_settings(StorageSettings(_env_file=None))
