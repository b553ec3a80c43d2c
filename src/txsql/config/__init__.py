"""
Configuration for txsql.

Two layers:

- :class:`StorageSettings` (pydantic-settings): process-level knobs from
  ``TXSQL_*`` environment variables, including which storage files to load.
- :class:`StorageConfig`: the named backend entries from those files,
  validated by :class:`BackendEntry` and resolved to a
  :class:`~txsql.adapters.types.BackendConfig` per call.

Tags:
    configuration, settings, storage, txsql

Doc-Types:
    - API Reference
"""

from .settings import StorageSettings, clear_settings_cache, get_settings
from .storage import (
    BackendEntry,
    StorageConfig,
    load_storage_file,
    merge_storage_sections,
    validate_entries,
)

__all__ = [
    "StorageSettings",
    "get_settings",
    "clear_settings_cache",
    "BackendEntry",
    "StorageConfig",
    "load_storage_file",
    "merge_storage_sections",
    "validate_entries",
]
