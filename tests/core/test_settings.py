"""Tests for ``txsql.config.settings``: environment-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from txsql.config import StorageSettings, clear_settings_cache, get_settings


class TestStorageSettings:
    def test_defaults(self):
        settings = StorageSettings(_env_file=None)
        assert settings.config_files == []
        assert settings.default_backend is None
        assert settings.cursor_batch_size == 1000
        assert settings.connect_timeout == 10
        assert settings.statement_timeout == 0
        assert settings.log_format == "json"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("TXSQL_CURSOR_BATCH_SIZE", "250")
        monkeypatch.setenv("TXSQL_DEFAULT_BACKEND", "reports")
        settings = StorageSettings(_env_file=None)
        assert settings.cursor_batch_size == 250
        assert settings.default_backend == "reports"

    def test_config_files_from_json_list(self, monkeypatch):
        monkeypatch.setenv("TXSQL_CONFIG_FILES", '["config/global.json", "config/local.toml"]')
        settings = StorageSettings(_env_file=None)
        assert settings.config_files == [Path("config/global.json"), Path("config/local.toml")]

    def test_batch_size_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            StorageSettings(_env_file=None, cursor_batch_size=0)

    def test_log_level(self):
        assert StorageSettings(_env_file=None, log_level="debug").log_level == "DEBUG"
        with pytest.raises(PydanticValidationError, match="log_level"):
            StorageSettings(_env_file=None, log_level="chatty")

    def test_log_format(self):
        assert StorageSettings(_env_file=None, log_format="CONSOLE").log_format == "console"
        with pytest.raises(PydanticValidationError, match="log_format"):
            StorageSettings(_env_file=None, log_format="xml")


class TestGetSettings:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_force_reload(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("TXSQL_CONNECT_TIMEOUT", "3")
        assert get_settings() is first
        reloaded = get_settings(_force_reload=True)
        assert reloaded.connect_timeout == 3

    def test_clear_cache(self):
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
