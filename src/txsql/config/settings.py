"""
Process-level settings for txsql.

:class:`StorageSettings` is read from ``TXSQL_*`` environment variables and
an optional ``.env`` file. It says *where* the storage definitions live and
how sessions behave; the backend definitions themselves come from the
storage files listed in ``config_files``.

Tags:
    txsql, configuration, settings, pydantic

Doc-Types:
    api-reference
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """txsql configuration.

    All fields can be set via ``TXSQL_*`` environment variables, e.g.
    ``TXSQL_CONFIG_FILES='["config/global.json", "config/local.json"]'``.
    """

    model_config = SettingsConfigDict(
        env_prefix="TXSQL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage definitions ──────────────────────────────────────
    config_files: list[Path] = Field(
        default_factory=list,
        description="Storage files, loaded in order; later entries override earlier ones",
    )
    default_backend: str | None = Field(
        default=None,
        description="Default backend name (first declared name when unset)",
    )

    # ── Sessions ─────────────────────────────────────────────────
    cursor_batch_size: int = Field(default=1000, ge=1)
    connect_timeout: int = Field(default=10, ge=0, description="Seconds")
    statement_timeout: int = Field(default=0, ge=0, description="Seconds, 0 disables")

    # ── Secrets ──────────────────────────────────────────────────
    secrets_dir: Path = Field(default=Path("/run/secrets"))

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError("log_level must be DEBUG, INFO, WARNING, ERROR or CRITICAL")
        return value

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return value


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, StorageSettings] = {}


def get_settings(*, _force_reload: bool = False) -> StorageSettings:
    """Load, validate and cache a :class:`StorageSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = StorageSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = [
    "StorageSettings",
    "get_settings",
    "clear_settings_cache",
]
