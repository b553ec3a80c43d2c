"""Database types and resolved backend configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from txsql.errors import ConfigurationError
from txsql.secrets import SecretValue


class DatabaseType(str, Enum):
    """Supported database dialects.

    The set is closed: configuration tags map onto these members through
    :meth:`from_tag` and anything else is a :class:`ConfigurationError`.
    """

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"

    @classmethod
    def from_tag(cls, tag: DatabaseType | str) -> DatabaseType:
        if isinstance(tag, cls):
            return tag
        member = _TAG_ALIASES.get(str(tag).strip().lower())
        if member is None:
            raise ConfigurationError(
                f"Unsupported database type: {tag!r}",
                path="storage.db.select_strategy.type",
                details={"type": tag},
            )
        return member


_TAG_ALIASES: dict[str, DatabaseType] = {
    "pgsql": DatabaseType.POSTGRESQL,
    "postgresql": DatabaseType.POSTGRESQL,
    "postgres": DatabaseType.POSTGRESQL,
    "mysql": DatabaseType.MYSQL,
    "mariadb": DatabaseType.MYSQL,
    "sqlite": DatabaseType.SQLITE,
    "sqlite3": DatabaseType.SQLITE,
}

SUPPORTED_TAGS: frozenset[str] = frozenset(_TAG_ALIASES)

DEFAULT_PORTS: dict[DatabaseType, int] = {
    DatabaseType.POSTGRESQL: 5432,
    DatabaseType.MYSQL: 3306,
    DatabaseType.SQLITE: 0,
}

DEFAULT_ENCODINGS: dict[DatabaseType, str] = {
    DatabaseType.POSTGRESQL: "UTF8",
    DatabaseType.MYSQL: "utf8mb4",
    DatabaseType.SQLITE: "UTF-8",
}


@dataclass(frozen=True)
class BackendConfig:
    """
    Connection parameters for one named backend, credentials resolved.

    Built per call from a storage entry and never mutated afterwards.
    For SQLite ``database`` is the file path (``:memory:`` allowed).
    """

    name: str
    db_type: DatabaseType
    database: str
    host: str = "localhost"
    port: int | None = None
    username: str | None = None
    password: SecretValue | None = field(default=None, repr=False)
    encoding: str | None = None
    connect_timeout: int = 10
    statement_timeout: int = 0
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def effective_port(self) -> int:
        return self.port or DEFAULT_PORTS[self.db_type]

    @property
    def effective_encoding(self) -> str:
        return self.encoding or DEFAULT_ENCODINGS[self.db_type]

    def password_value(self) -> str | None:
        return self.password.get_secret() if self.password is not None else None


__all__ = [
    "DatabaseType",
    "BackendConfig",
    "SUPPORTED_TAGS",
    "DEFAULT_PORTS",
    "DEFAULT_ENCODINGS",
]
