"""Storage definitions: named backend entries and their lookup.

Storage files list one single-key object per backend::

    {
        "storage": [
            {"main":    {"type": "pgsql", "host": "10.0.0.5", "port": 5432,
                         "name": "app", "user": "secret:env:PG_USER",
                         "pass": "secret:env:PG_PASS", "encoding": "UTF8"}},
            {"reports": {"type": "mysql", "host": "localhost", "port": 3306,
                         "name": "reports", "user": "report", "pass": "secret:REPORTS_PASS"}}
        ]
    }

TOML files may use tables instead (``[storage.main]``). When several files
are loaded, a later file's entry is merged key by key over the earlier one.
The first declared name is the default backend.
"""

from __future__ import annotations

import ipaddress
import json
import re
import tomllib
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from txsql.adapters.types import SUPPORTED_TAGS, BackendConfig, DatabaseType
from txsql.errors import ConfigurationError
from txsql.secrets import (
    MissingSecretError,
    SecretResolutionError,
    SecretsResolver,
    SecretValue,
    get_resolver,
    is_reference,
)

from .settings import StorageSettings

_ENCODING_RE = re.compile(
    r"^(UTF-?8|UTF8MB4|LATIN[0-9]|ASCII|UNICODE|WIN(1250|1251|1252)|ISO-?8859-[0-9]|CP[0-9]{3,4})$",
    re.IGNORECASE,
)
_HOSTNAME_RE = re.compile(r"^(?=.{1,253}$)[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?(\.[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$")


class BackendEntry(BaseModel):
    """One validated storage entry, credentials still unresolved."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    type: str
    name: str
    host: str = "localhost"
    port: int | str | None = None
    user: str | None = None
    password: str | None = Field(default=None, alias="pass")
    encoding: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def _check_type(cls, value: str) -> str:
        if value.strip().lower() not in SUPPORTED_TAGS:
            raise ValueError("Invalid storage type")
        return value.strip().lower()

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Empty database name")
        return value

    @field_validator("host")
    @classmethod
    def _check_host(cls, value: str) -> str:
        if is_reference(value) or value == "localhost":
            return value
        try:
            ipaddress.ip_address(value)
            return value
        except ValueError:
            pass
        if not _HOSTNAME_RE.match(value):
            raise ValueError("Invalid storage host")
        return value

    @field_validator("port", mode="before")
    @classmethod
    def _check_port(cls, value: Any) -> Any:
        if value is None or is_reference(value):
            return value
        return _parse_port(value)

    @field_validator("encoding")
    @classmethod
    def _check_encoding(cls, value: str | None) -> str | None:
        if value is not None and not _ENCODING_RE.match(value):
            raise ValueError(f"Invalid encoding format: {value}")
        return value

    @model_validator(mode="after")
    def _check_credentials(self) -> BackendEntry:
        if self.db_type is DatabaseType.SQLITE:
            return self
        missing = [label for label, value in (("user", self.user), ("pass", self.password)) if not value]
        if missing:
            raise ValueError(f"Empty credentials: {', '.join(missing)}")
        return self

    @property
    def db_type(self) -> DatabaseType:
        return DatabaseType.from_tag(self.type)


def _parse_port(value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ValueError("Storage port must be between 1 and 65535") from None
    if not 1 <= port <= 65535:
        raise ValueError("Storage port must be between 1 and 65535")
    return port


class StorageConfig:
    """
    Named backend entries with a designated default.

    Read-only once built; :meth:`get` resolves credentials on every call.
    """

    def __init__(
        self,
        entries: Mapping[str, BackendEntry],
        default: str | None = None,
        *,
        resolver: SecretsResolver | None = None,
        connect_timeout: int = 10,
        statement_timeout: int = 0,
    ):
        if not entries:
            raise ConfigurationError("No storage backends configured", path="storage.config")
        self._entries = dict(entries)
        self._default = default or next(iter(self._entries))
        if self._default not in self._entries:
            raise ConfigurationError(
                f"Default backend {self._default!r} is not configured",
                path="storage.config",
                details={"default": self._default},
            )
        self._resolver = resolver
        self._connect_timeout = connect_timeout
        self._statement_timeout = statement_timeout

    @property
    def names(self) -> list[str]:
        return list(self._entries)

    @property
    def default_name(self) -> str:
        return self._default

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def entry(self, name: str | None = None) -> BackendEntry:
        """Return the raw entry for ``name`` (None means the default)."""
        key = self._default if name is None else name
        try:
            return self._entries[key]
        except KeyError:
            raise ConfigurationError(
                f"Storage configuration not found: {key!r}",
                path="storage.db.select_strategy",
                details={"conf": key},
            ) from None

    def get(self, name: str | None = None) -> BackendConfig:
        """Resolve ``name`` to a :class:`BackendConfig` with plain credentials."""
        key = self._default if name is None else name
        entry = self.entry(key)
        resolver = self._resolver or get_resolver()
        try:
            host = resolver.decrypt(entry.host)
            port = resolver.decrypt(entry.port)
            user = resolver.decrypt(entry.user)
            password = resolver.decrypt(entry.password)
        except (MissingSecretError, SecretResolutionError) as exc:
            raise ConfigurationError(
                f"Cannot resolve credentials for {key!r}: {exc}",
                path="storage.config.decrypt",
                details={"conf": key},
                cause=exc,
            ) from exc

        try:
            port = _parse_port(port) if port is not None else None
        except ValueError as exc:
            raise ConfigurationError(
                str(exc), path="storage.config.decrypt", details={"conf": key}
            ) from None

        return BackendConfig(
            name=key,
            db_type=entry.db_type,
            database=entry.name,
            host=host,
            port=port,
            username=user,
            password=SecretValue(password) if password is not None else None,
            encoding=entry.encoding,
            connect_timeout=self._connect_timeout,
            statement_timeout=self._statement_timeout,
            options=dict(entry.options),
        )

    # -- Construction -------------------------------------------------------

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any] | Iterable[Mapping[str, Any]],
        default: str | None = None,
        **kwargs: Any,
    ) -> StorageConfig:
        """Build from a parsed document (``{"storage": [...]}``) or storage list."""
        raw = merge_storage_sections([data])
        return cls(validate_entries(raw), default, **kwargs)

    @classmethod
    def from_files(
        cls,
        paths: Iterable[str | Path],
        default: str | None = None,
        **kwargs: Any,
    ) -> StorageConfig:
        """Load and merge storage files (JSON or TOML) in order."""
        documents = [load_storage_file(path) for path in paths]
        raw = merge_storage_sections(documents)
        return cls(validate_entries(raw), default, **kwargs)

    @classmethod
    def from_settings(
        cls,
        settings: StorageSettings,
        resolver: SecretsResolver | None = None,
    ) -> StorageConfig:
        if not settings.config_files:
            raise ConfigurationError(
                "No storage files configured (set TXSQL_CONFIG_FILES)",
                path="storage.config",
            )
        return cls.from_files(
            settings.config_files,
            settings.default_backend,
            resolver=resolver,
            connect_timeout=settings.connect_timeout,
            statement_timeout=settings.statement_timeout,
        )


# -- Loading helpers --------------------------------------------------------


def load_storage_file(path: str | Path) -> dict[str, Any]:
    """Parse one storage file; ``.toml`` is read as TOML, anything else as JSON."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(
            f"Cannot read storage file: {path}",
            path="storage.config.load",
            details={"file": str(path)},
            cause=exc,
        ) from exc
    try:
        if path.suffix.lower() == ".toml":
            return tomllib.loads(text)
        return json.loads(text)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigurationError(
            f"Malformed storage file: {path}: {exc}",
            path="storage.config.load",
            details={"file": str(path)},
            cause=exc,
        ) from exc


def _storage_items(document: Any) -> list[tuple[str, dict[str, Any]]]:
    section = document.get("storage", document) if isinstance(document, Mapping) else document
    items: list[tuple[str, dict[str, Any]]] = []
    if isinstance(section, Mapping):
        for name, body in section.items():
            items.append((name, dict(body)))
        return items
    for element in section:
        if not isinstance(element, Mapping) or len(element) != 1:
            raise ConfigurationError(
                "Each storage element must be a single-key object",
                path="storage.config.load",
                details={"element": repr(element)},
            )
        ((name, body),) = element.items()
        items.append((name, dict(body)))
    return items


def merge_storage_sections(documents: Iterable[Any]) -> dict[str, dict[str, Any]]:
    """Merge storage sections; later documents override earlier ones per key."""
    merged: dict[str, dict[str, Any]] = {}
    for document in documents:
        for name, body in _storage_items(document):
            merged.setdefault(name, {}).update(body)
    return merged


def validate_entries(raw: Mapping[str, Mapping[str, Any]]) -> dict[str, BackendEntry]:
    """Validate raw entries, reporting every failing field at once."""
    entries: dict[str, BackendEntry] = {}
    errors: list[str] = []
    for name, body in raw.items():
        try:
            entries[name] = BackendEntry.model_validate(body)
        except PydanticValidationError as exc:
            for err in exc.errors():
                location = ".".join(str(part) for part in err["loc"]) or "entry"
                errors.append(f"{name}.{location}: {err['msg']}")
    if errors:
        raise ConfigurationError(
            "Configuration validation failed:\n" + "\n".join(errors),
            path="storage.config.validate",
            details={"errors": errors},
        )
    return entries


__all__ = [
    "BackendEntry",
    "StorageConfig",
    "load_storage_file",
    "merge_storage_sections",
    "validate_entries",
]
