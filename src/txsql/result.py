"""
Result types returned by the execution layer.

- :class:`QueryResult` holds the rows of one executed statement and hands
  them out in a :class:`FetchShape` (row dicts, tuples or first column).
- :class:`ResultEnvelope` is the aggregated outcome of a transaction batch.
- :class:`ColumnInfo` is the dialect-independent column introspection record.

Examples:
    >>> result = QueryResult(columns=["id", "name"], rows=[(1, "a"), (2, "b")])
    >>> result.fetch_all()
    [{'id': 1, 'name': 'a'}, {'id': 2, 'name': 'b'}]
    >>> result.set_shape("scalar").rewind().fetch_all()
    [1, 2]

Tags:
    results, envelope, introspection, txsql

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from txsql.errors import ExecutionError


class FetchShape(str, Enum):
    """How rows are handed back to the caller."""

    MAPPING = "mapping"     # {column: value}
    SEQUENCE = "sequence"   # (value, value, ...)
    SCALAR = "scalar"       # first column only

    @classmethod
    def parse(cls, value: FetchShape | str | None) -> FetchShape:
        if value is None:
            return cls.MAPPING
        if isinstance(value, cls):
            return value
        tag = str(value).strip().lower()
        aliases = {
            "assoc": cls.MAPPING,
            "dict": cls.MAPPING,
            "num": cls.SEQUENCE,
            "tuple": cls.SEQUENCE,
            "column": cls.SCALAR,
        }
        if tag in aliases:
            return aliases[tag]
        return cls(tag)


def shape_rows(columns: list[str], rows: list[tuple], shape: FetchShape) -> list[Any]:
    """Convert raw row tuples into ``shape``."""
    if shape is FetchShape.MAPPING:
        return [dict(zip(columns, row, strict=False)) for row in rows]
    if shape is FetchShape.SEQUENCE:
        return [tuple(row) for row in rows]
    return [row[0] if row else None for row in rows]


@dataclass
class QueryResult:
    """
    Rows and counters of one executed statement.

    Rows are materialised when the statement runs, so a result stays readable
    after its adapter disconnects. ``fetch``/``fetch_all`` consume from the
    current position, like a driver cursor would.
    """

    columns: list[str] = field(default_factory=list)
    rows: list[tuple] = field(default_factory=list)
    rowcount: int = -1
    lastrowid: Any = None
    shape: FetchShape = FetchShape.MAPPING
    _position: int = field(default=0, repr=False)

    @property
    def returns_rows(self) -> bool:
        return bool(self.columns)

    @property
    def affected_rows(self) -> int:
        return max(self.rowcount, 0)

    def set_shape(self, shape: FetchShape | str) -> QueryResult:
        """Change the fetch shape; unknown shapes raise ExecutionError."""
        try:
            self.shape = FetchShape.parse(shape)
        except ValueError as exc:
            raise ExecutionError(
                f"Unknown fetch shape: {shape!r}",
                path="storage.db.set_fetch_shape",
                details={"shape": str(shape)},
                cause=exc,
            ) from exc
        return self

    def fetch(self) -> Any | None:
        """Next row in the current shape, or None when exhausted."""
        if self._position >= len(self.rows):
            return None
        row = self.rows[self._position]
        self._position += 1
        return shape_rows(self.columns, [row], self.shape)[0]

    def fetch_all(self) -> list[Any]:
        """Remaining rows in the current shape."""
        remaining = self.rows[self._position :]
        self._position = len(self.rows)
        return shape_rows(self.columns, remaining, self.shape)

    def rewind(self) -> QueryResult:
        self._position = 0
        return self

    def __len__(self) -> int:
        return len(self.rows)


@dataclass
class ResultEnvelope:
    """
    Aggregated outcome of a transaction batch.

    ``rows`` only collects rows of SELECT statements, ``affected_row_count``
    sums INSERT/UPDATE/DELETE counts and ``inserted_ids`` holds one
    identifier per INSERT execution, in execution order.
    """

    success: bool = False
    rows: list[dict[str, Any]] = field(default_factory=list)
    affected_row_count: int = 0
    inserted_ids: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "rows": list(self.rows),
            "affectedRowCount": self.affected_row_count,
            "insertedIds": list(self.inserted_ids),
        }


@dataclass(frozen=True)
class ColumnInfo:
    """Column metadata, identical in shape for every dialect."""

    name: str
    ordinal: int
    type: str
    type_modifier: int | None = None
    not_null: bool = False
    has_default: bool = False
    default_expr: str | None = None
    is_auto_increment: bool = False
    comment: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ColumnInfo:
        """Build from a catalog row using the shared column aliases."""
        modifier = row.get("type_modifier")
        return cls(
            name=str(row["name"]),
            ordinal=int(row["ordinal"]),
            type=str(row["type"]),
            type_modifier=int(modifier) if modifier is not None else None,
            not_null=bool(row.get("not_null")),
            has_default=bool(row.get("has_default")),
            default_expr=row.get("default_expr"),
            is_auto_increment=bool(row.get("is_auto_increment")),
            comment=row.get("comment") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "ordinal": self.ordinal,
            "type": self.type,
            "typeModifier": self.type_modifier,
            "notNull": self.not_null,
            "hasDefault": self.has_default,
            "defaultExpr": self.default_expr,
            "isAutoIncrement": self.is_auto_increment,
            "comment": self.comment,
        }


__all__ = [
    "FetchShape",
    "QueryResult",
    "ResultEnvelope",
    "ColumnInfo",
    "shape_rows",
]
