"""SQL dialect layer: placeholders, quoting and catalog SQL per backend.

Callers always write named ``:name`` placeholders. Each ``Dialect`` turns
that text into what its driver binds (``%(name)s`` for psycopg2 and
mysql-connector, ``:name`` unchanged for sqlite3) and owns the SQL that
differs per engine: column introspection and cursor statements.

Manifesto:
    One placeholder syntax for callers, one scanner for the whole package.
    The scanner skips string literals, quoted identifiers, comments and
    PostgreSQL ``::type`` casts, so ``'10:30'`` or ``x::int`` never turn
    into parameters.

Architecture::

    caller SQL:  SELECT * FROM t WHERE id = :id AND note LIKE '5%'
                              │
            ┌─────────────────┼──────────────────┐
            ▼                 ▼                  ▼
    ┌──────────────┐  ┌──────────────┐  ┌──────────────┐
    │ PostgreSQL   │  │ MySQL        │  │ SQLite       │
    │ %(id)s  5%%  │  │ %(id)s  5%%  │  │ :id     5%   │
    │ pg_catalog   │  │ INFORMATION_ │  │ pragma_table │
    │ DECLARE/FETCH│  │ SCHEMA       │  │ _info        │
    └──────────────┘  └──────────────┘  └──────────────┘

Examples:
    >>> find_placeholders("SELECT :a, :b::text, ':c' FROM t WHERE x = :a")
    ['a', 'b']
    >>> get_dialect("postgresql").bind_named("SELECT :id, '5%'")
    "SELECT %(id)s, '5%%'"

Tags:
    dialect, sql, placeholders, portability, txsql

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Protocol, runtime_checkable

from txsql.errors import ConfigurationError

# Strings, quoted identifiers and comments are matched (and skipped) so that
# only group 1 of a bare ``:name`` token is a placeholder.
_TOKEN_RE = re.compile(
    r"'(?:[^']|'')*'"
    r'|"(?:[^"]|"")*"'
    r"|--[^\n]*"
    r"|/\*.*?\*/"
    r"|(?<!:):([A-Za-z_]\w*)",
    re.DOTALL,
)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def find_placeholders(sql: str) -> list[str]:
    """Placeholder names in first-seen order, duplicates removed."""
    names: list[str] = []
    for match in _TOKEN_RE.finditer(sql):
        name = match.group(1)
        if name is not None and name not in names:
            names.append(name)
    return names


def normalize_param_name(name: str) -> str:
    """``':id'`` and ``'id'`` both name the ``id`` parameter."""
    return name[1:] if name.startswith(":") else name


def is_identifier(name: str) -> bool:
    return bool(_IDENTIFIER_RE.match(name))


@lru_cache(maxsize=256)
def to_pyformat(sql: str) -> str:
    """Rewrite ``:name`` to ``%(name)s`` and escape every literal ``%``."""
    parts: list[str] = []
    position = 0
    for match in _TOKEN_RE.finditer(sql):
        name = match.group(1)
        if name is None:
            continue
        parts.append(sql[position : match.start()].replace("%", "%%"))
        parts.append(f"%({name})s")
        position = match.end()
    parts.append(sql[position:].replace("%", "%%"))
    return "".join(parts)


def column_placeholders(count: int) -> str:
    """``:col_0, :col_1, ...`` for an ``IN`` list of column names."""
    return ", ".join(f":col_{index}" for index in range(count))


@runtime_checkable
class Dialect(Protocol):
    """Per-engine SQL contract used by the adapters."""

    @property
    def name(self) -> str:
        ...

    @property
    def supports_declare_cursor(self) -> bool:
        """
        Whether ``DECLARE ... CURSOR`` / ``FETCH n`` work outside procedures.

        When True the dialect also provides ``declare_cursor``,
        ``fetch_cursor`` and ``close_cursor`` statement builders; otherwise
        adapters stream through the driver cursor.
        """
        ...

    def bind_named(self, sql: str) -> str:
        """Text the driver accepts together with a ``{name: value}`` mapping."""
        ...

    def quote_literal(self, text: str) -> str:
        """Escaped string literal, quotes included."""
        ...

    def columns_query(self, column_count: int = 0) -> str:
        """
        Column catalog query with ``:schema``, ``:table`` and, when
        ``column_count`` is positive, ``:col_0 ..`` placeholders.

        Every dialect returns the same aliases: ``name``, ``ordinal``,
        ``type``, ``type_modifier``, ``not_null``, ``has_default``,
        ``default_expr``, ``is_auto_increment``, ``comment``.
        """
        ...


# =========================================================================
# Concrete Dialect Implementations
# =========================================================================


class PostgreSQLDialect:
    """PostgreSQL dialect: ``%(name)s`` placeholders (psycopg2), pg_catalog."""

    @property
    def name(self) -> str:
        return "postgresql"

    @property
    def supports_declare_cursor(self) -> bool:
        return True

    def bind_named(self, sql: str) -> str:
        return to_pyformat(sql)

    def quote_literal(self, text: str) -> str:
        # standard_conforming_strings is on by default since 9.1
        return "'" + text.replace("'", "''") + "'"

    def columns_query(self, column_count: int = 0) -> str:
        column_filter = (
            f" AND a.attname IN ({column_placeholders(column_count)})" if column_count else ""
        )
        return (
            "SELECT a.attname AS name, a.attnum AS ordinal,"
            " pg_catalog.format_type(a.atttypid, a.atttypmod) AS type,"
            " a.atttypmod AS type_modifier, a.attnotnull AS not_null,"
            " a.atthasdef AS has_default,"
            " pg_catalog.pg_get_expr(adef.adbin, adef.adrelid, true) AS default_expr,"
            " (SELECT 1 FROM pg_catalog.pg_depend pd, pg_catalog.pg_class pc"
            "  WHERE pd.objid = pc.oid AND pd.classid = pc.tableoid"
            "  AND pd.refclassid = pc.tableoid AND pd.refobjid = a.attrelid"
            "  AND pd.refobjsubid = a.attnum AND pd.deptype IN ('a', 'i')"
            "  AND pc.relkind = 'S') IS NOT NULL OR a.attidentity <> '' AS is_auto_increment,"
            " pg_catalog.col_description(a.attrelid, a.attnum) AS comment"
            " FROM pg_catalog.pg_attribute a"
            " LEFT JOIN pg_catalog.pg_attrdef adef"
            "  ON a.attrelid = adef.adrelid AND a.attnum = adef.adnum"
            " WHERE a.attrelid = ("
            "  SELECT c.oid FROM pg_catalog.pg_class c"
            "  JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace"
            "  WHERE c.relname = :table AND n.nspname = :schema)"
            " AND a.attnum > 0 AND NOT a.attisdropped"
            f"{column_filter}"
            " ORDER BY a.attnum"
        )

    def fetch_cursor(self, cursor_name: str, batch_size: int) -> str:
        return f"FETCH {int(batch_size)} FROM {cursor_name}"

    def close_cursor(self, cursor_name: str) -> str:
        return f"CLOSE {cursor_name}"

    def declare_cursor(self, cursor_name: str, select_sql: str) -> str:
        return f"DECLARE {cursor_name} NO SCROLL CURSOR FOR {select_sql}"


class MySQLDialect:
    """MySQL / MariaDB dialect: ``%(name)s`` placeholders, INFORMATION_SCHEMA."""

    _ESCAPES = {
        "\\": "\\\\",
        "'": "\\'",
        '"': '\\"',
        "\0": "\\0",
        "\n": "\\n",
        "\r": "\\r",
        "\x1a": "\\Z",
    }

    @property
    def name(self) -> str:
        return "mysql"

    @property
    def supports_declare_cursor(self) -> bool:
        return False

    def bind_named(self, sql: str) -> str:
        return to_pyformat(sql)

    def quote_literal(self, text: str) -> str:
        return "'" + "".join(self._ESCAPES.get(char, char) for char in text) + "'"

    def columns_query(self, column_count: int = 0) -> str:
        column_filter = (
            f" AND COLUMN_NAME IN ({column_placeholders(column_count)})" if column_count else ""
        )
        return (
            "SELECT COLUMN_NAME AS name, ORDINAL_POSITION AS ordinal,"
            " COLUMN_TYPE AS type, CHARACTER_MAXIMUM_LENGTH AS type_modifier,"
            " IS_NULLABLE = 'NO' AS not_null, COLUMN_DEFAULT IS NOT NULL AS has_default,"
            " COLUMN_DEFAULT AS default_expr,"
            " INSTR(EXTRA, 'auto_increment') > 0 AS is_auto_increment,"
            " COLUMN_COMMENT AS comment"
            " FROM INFORMATION_SCHEMA.COLUMNS"
            " WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table"
            f"{column_filter}"
            " ORDER BY ORDINAL_POSITION"
        )


class SQLiteDialect:
    """SQLite dialect: native ``:name`` placeholders, ``pragma_table_info``."""

    @property
    def name(self) -> str:
        return "sqlite"

    @property
    def supports_declare_cursor(self) -> bool:
        return False

    def bind_named(self, sql: str) -> str:
        return sql

    def quote_literal(self, text: str) -> str:
        return "'" + text.replace("'", "''") + "'"

    def columns_query(self, column_count: int = 0) -> str:
        column_filter = (
            f" WHERE name IN ({column_placeholders(column_count)})" if column_count else ""
        )
        return (
            "SELECT name AS name, cid + 1 AS ordinal, type AS type,"
            " NULL AS type_modifier, \"notnull\" AS not_null,"
            " dflt_value IS NOT NULL AS has_default, dflt_value AS default_expr,"
            " (pk = 1 AND upper(type) = 'INTEGER') AS is_auto_increment,"
            " NULL AS comment"
            " FROM pragma_table_info(:table, :schema)"
            f"{column_filter}"
            " ORDER BY cid"
        )


# =========================================================================
# Registry / Factory
# =========================================================================

# Pre-instantiated singletons (dialects are stateless), keyed by DatabaseType value
_DIALECTS: dict[str, Dialect] = {
    "postgresql": PostgreSQLDialect(),
    "mysql": MySQLDialect(),
    "sqlite": SQLiteDialect(),
}


def get_dialect(db_type: str) -> Dialect:
    """
    Get the dialect for a database type (``DatabaseType`` or its value).

    Raises:
        ConfigurationError: If the type has no dialect.
    """
    key = str(getattr(db_type, "value", db_type)).lower()
    if key not in _DIALECTS:
        raise ConfigurationError(
            f"Unknown dialect {db_type!r}. Supported: {sorted(_DIALECTS)}",
            path="storage.db.select_strategy.type",
        )
    return _DIALECTS[key]


__all__ = [
    "Dialect",
    "PostgreSQLDialect",
    "MySQLDialect",
    "SQLiteDialect",
    "get_dialect",
    "find_placeholders",
    "normalize_param_name",
    "is_identifier",
    "to_pyformat",
    "column_placeholders",
]
