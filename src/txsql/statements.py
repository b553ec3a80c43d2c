"""
Operation descriptors and their validation.

Callers describe work as plain mappings. This module turns them into typed,
immutable operations before any connection is opened:

- :func:`validate_statement` (one-shot ``execute_one``) produces a
  :class:`PreparedStatement` with every default filled in.
- :func:`build_batch` (``execute_batch``) classifies each descriptor as a
  :class:`LiteralOperation` or a :class:`TemplatedOperation`.

Single-operation descriptor::

    {"text": "SELECT * FROM users WHERE id = :id", "id": 7,
     "bindStyle": "byName", "fetchShape": "mapping",
     "paramNames": ["id"], "paramTypes": ["int"]}

Batch descriptors::

    {"text": "DELETE FROM audit"}
    {"template": "INSERT INTO users (name) VALUES (:name)", "name": ["a", "b"]}

``prepare``/``query``/``params``/``pdoTypes``/``bindType``/``fetchMode`` are
accepted as aliases of the keys above. Every failure is a
:class:`~txsql.errors.ValidationError`.

Tags:
    validation, statements, parameters, txsql

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from txsql.dialect import find_placeholders, normalize_param_name
from txsql.errors import ValidationError
from txsql.result import FetchShape
from txsql.verbs import strip_comments

ALLOWED_PREFIX_RE = re.compile(
    r"^\s*(SELECT|INSERT|UPDATE|DELETE|CREATE|ALTER|DROP|TRUNCATE|CALL)\b",
    re.IGNORECASE,
)

_TEXT_KEYS = ("text", "prepare")
_LITERAL_KEYS = ("text", "query")
_TEMPLATE_KEYS = ("template", "prepare")
_NAMES_KEYS = ("paramNames", "params")
_TYPES_KEYS = ("paramTypes", "pdoTypes")
_BIND_KEYS = ("bindStyle", "bindType")
_SHAPE_KEYS = ("fetchShape", "fetchMode")


class BindStyle(str, Enum):
    """
    How values are handed to the driver.

    Both styles bind by placeholder name; the distinction is kept because
    callers still send it.
    """

    BY_NAME = "byName"
    BY_VALUE = "byValue"

    @classmethod
    def parse(cls, value: BindStyle | str | None) -> BindStyle:
        if value is None:
            return cls.BY_NAME
        if isinstance(value, cls):
            return value
        aliases = {
            "byname": cls.BY_NAME,
            "by-name": cls.BY_NAME,
            "by_name": cls.BY_NAME,
            "bindparam": cls.BY_NAME,
            "byvalue": cls.BY_VALUE,
            "by-value": cls.BY_VALUE,
            "by_value": cls.BY_VALUE,
            "by-position": cls.BY_VALUE,
            "bindvalue": cls.BY_VALUE,
        }
        try:
            return aliases[str(value).strip().lower()]
        except KeyError:
            raise ValueError(f"Unknown bind style: {value!r}") from None


class ParamType(str, Enum):
    """Declared parameter type; values are coerced before binding."""

    STR = "str"
    INT = "int"
    BOOL = "bool"
    NULL = "null"
    LOB = "lob"
    FLOAT = "float"

    @classmethod
    def parse(cls, value: ParamType | str | int) -> ParamType:
        """Accept members, tags (``"int"``, ``"INTEGER"``) or PDO-style integers."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Unknown parameter type: {value!r}")
        if isinstance(value, int):
            try:
                return _PDO_TYPES[value]
            except KeyError:
                raise ValueError(f"Unknown parameter type: {value!r}") from None
        try:
            return _TYPE_ALIASES[str(value).strip().lower()]
        except KeyError:
            raise ValueError(f"Unknown parameter type: {value!r}") from None

    def coerce(self, value: Any) -> Any:
        """Convert ``value`` to this type; ``None`` always binds as NULL."""
        if value is None or self is ParamType.NULL:
            return None
        if self is ParamType.STR:
            if isinstance(value, bool):
                return "1" if value else ""
            if isinstance(value, (bytes, bytearray, memoryview)):
                return bytes(value).decode("utf-8")
            return value if isinstance(value, str) else str(value)
        if self is ParamType.INT:
            if isinstance(value, bool):
                return int(value)
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"{value!r} is not an integer")
            return int(value)
        if self is ParamType.FLOAT:
            return float(value)
        if self is ParamType.BOOL:
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in ("1", "true", "t", "yes", "y", "on"):
                    return True
                if lowered in ("0", "false", "f", "no", "n", "off", ""):
                    return False
                raise ValueError(f"{value!r} is not a boolean")
            return bool(value)
        # LOB
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        if isinstance(value, str):
            return value.encode("utf-8")
        raise ValueError(f"{type(value).__name__} cannot be bound as a LOB")


_TYPE_ALIASES: dict[str, ParamType] = {
    "str": ParamType.STR,
    "string": ParamType.STR,
    "text": ParamType.STR,
    "int": ParamType.INT,
    "integer": ParamType.INT,
    "bool": ParamType.BOOL,
    "boolean": ParamType.BOOL,
    "null": ParamType.NULL,
    "lob": ParamType.LOB,
    "blob": ParamType.LOB,
    "bytes": ParamType.LOB,
    "float": ParamType.FLOAT,
    "double": ParamType.FLOAT,
}

# PDO::PARAM_* constants used by older callers
_PDO_TYPES: dict[int, ParamType] = {
    0: ParamType.NULL,
    1: ParamType.INT,
    2: ParamType.STR,
    3: ParamType.LOB,
    5: ParamType.BOOL,
}


# =============================================================================
# OPERATIONS
# =============================================================================


@dataclass(frozen=True)
class LiteralOperation:
    """Raw SQL executed as-is."""

    text: str

    def describe(self) -> dict[str, Any]:
        return {"kind": "literal", "text": self.text}


@dataclass(frozen=True)
class TemplatedOperation:
    """
    SQL template executed once per index of its value arrays.

    ``values`` maps every parameter name to an equally long tuple of
    already-coerced values.
    """

    text: str
    param_names: tuple[str, ...]
    param_types: tuple[ParamType, ...]
    values: Mapping[str, tuple[Any, ...]] = field(default_factory=dict)

    @property
    def executions(self) -> int:
        return len(self.values[self.param_names[0]]) if self.param_names else 0

    def bindings(self) -> Iterator[dict[str, Any]]:
        """One ``{name: value}`` mapping per execution, in order."""
        for index in range(self.executions):
            yield {name: self.values[name][index] for name in self.param_names}

    def describe(self) -> dict[str, Any]:
        return {
            "kind": "templated",
            "text": self.text,
            "param_names": list(self.param_names),
            "param_types": [param_type.value for param_type in self.param_types],
            "values": {name: list(values) for name, values in self.values.items()},
        }


Operation = LiteralOperation | TemplatedOperation


@dataclass(frozen=True)
class PreparedStatement:
    """A validated one-shot statement with defaults applied."""

    text: str
    bind_style: BindStyle = BindStyle.BY_NAME
    fetch_shape: FetchShape = FetchShape.MAPPING
    param_names: tuple[str, ...] = ()
    param_types: tuple[ParamType, ...] = ()
    values: Mapping[str, Any] = field(default_factory=dict)

    def bindings(self) -> dict[str, Any]:
        return {name: self.values[name] for name in self.param_names}


# =============================================================================
# VALIDATION
# =============================================================================


def _first(descriptor: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if key in descriptor:
            return descriptor[key]
    return None


def _has_any(descriptor: Mapping[str, Any], keys: Sequence[str]) -> bool:
    return any(descriptor.get(key) is not None for key in keys)


def _lookup_value(descriptor: Mapping[str, Any], name: str) -> tuple[bool, Any]:
    for key in (name, f":{name}"):
        if key in descriptor:
            return True, descriptor[key]
    return False, None


def is_allowed_statement(text: str) -> bool:
    """Whether ``text`` starts with a verb accepted for one-shot execution."""
    return bool(ALLOWED_PREFIX_RE.match(strip_comments(text)))


def _param_names(raw: Any, text: str, path: str) -> tuple[str, ...]:
    if raw is None:
        return tuple(find_placeholders(text))
    if isinstance(raw, str) or not isinstance(raw, Sequence):
        raise ValidationError("Parameter names must be a list", path=path, field="paramNames", value=raw)
    names: list[str] = []
    for name in raw:
        if not isinstance(name, str) or not name.strip(":"):
            raise ValidationError("Invalid parameter name", path=path, field="paramNames", value=name)
        normalized = normalize_param_name(name)
        if normalized not in names:
            names.append(normalized)
    return tuple(names)


def _unbound_placeholder(text: str, names: tuple[str, ...]) -> str | None:
    """First placeholder in ``text`` with no declared parameter name."""
    for placeholder in find_placeholders(text):
        if placeholder not in names:
            return placeholder
    return None


def _param_types(raw: Any, count: int, path: str) -> tuple[ParamType, ...]:
    if raw is None:
        return (ParamType.STR,) * count
    if isinstance(raw, str) or not isinstance(raw, Sequence):
        raise ValidationError("Parameter types must be a list", path=path, field="paramTypes", value=raw)
    if len(raw) != count:
        raise ValidationError(
            f"Expected {count} parameter types, got {len(raw)}",
            path=path,
            field="paramTypes",
            value=list(raw),
        )
    types: list[ParamType] = []
    for index, tag in enumerate(raw):
        try:
            types.append(ParamType.parse(tag))
        except ValueError as exc:
            raise ValidationError(
                str(exc), path=path, field=f"paramTypes[{index}]", value=tag
            ) from None
    return tuple(types)


def _coerce(param_type: ParamType, name: str, value: Any, path: str) -> Any:
    try:
        return param_type.coerce(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"Cannot bind {name!r} as {param_type.value}: {exc}",
            path=path,
            field=name,
            value=value,
        ) from None


def validate_statement(descriptor: Mapping[str, Any] | PreparedStatement) -> PreparedStatement:
    """
    Validate a one-shot descriptor and apply defaults.

    Checks, in order: statement text and verb prefix, bind style, parameter
    names (inferred from placeholders when omitted), parameter types
    (``str`` for each when omitted), then a value for every parameter.
    Performs no I/O.

    Raises:
        ValidationError: On the first failing check.
    """
    if isinstance(descriptor, PreparedStatement):
        return descriptor
    path = "storage.db.execute.validate_params"

    text = _first(descriptor, _TEXT_KEYS)
    if not isinstance(text, str) or not text.strip() or not is_allowed_statement(text):
        raise ValidationError("not a recognized statement", path=path, field="text", value=text)

    try:
        bind_style = BindStyle.parse(_first(descriptor, _BIND_KEYS))
    except ValueError as exc:
        raise ValidationError(str(exc), path=path, field="bindStyle", value=_first(descriptor, _BIND_KEYS)) from None

    try:
        fetch_shape = FetchShape.parse(_first(descriptor, _SHAPE_KEYS))
    except ValueError:
        raise ValidationError(
            "Unknown fetch shape", path=path, field="fetchShape", value=_first(descriptor, _SHAPE_KEYS)
        ) from None

    names = _param_names(_first(descriptor, _NAMES_KEYS), text, path)
    unbound = _unbound_placeholder(text, names)
    if unbound is not None:
        raise ValidationError("missing parameter value", path=path, field=unbound)
    types = _param_types(_first(descriptor, _TYPES_KEYS), len(names), path)

    values: dict[str, Any] = {}
    for name, param_type in zip(names, types, strict=True):
        present, value = _lookup_value(descriptor, name)
        if not present:
            raise ValidationError("missing parameter value", path=path, field=name)
        values[name] = _coerce(param_type, name, value, path)

    return PreparedStatement(
        text=text,
        bind_style=bind_style,
        fetch_shape=fetch_shape,
        param_names=names,
        param_types=types,
        values=values,
    )


def build_operation(descriptor: Mapping[str, Any] | Operation, index: int = 0) -> Operation:
    """
    Classify and validate one batch descriptor.

    Exactly one of ``text`` (literal) or ``template`` (templated) must be
    present. Templates need at least one parameter and one value array per
    parameter, all of the same length.
    """
    if isinstance(descriptor, (LiteralOperation, TemplatedOperation)):
        return descriptor
    path = "storage.db.transactions.validate_params"
    if not isinstance(descriptor, Mapping):
        raise ValidationError(
            f"Operation {index} is not a mapping", path=path, field=f"[{index}]", value=descriptor
        )

    # ``prepare`` is only a template alias when it is the sole statement key
    is_literal = _has_any(descriptor, _LITERAL_KEYS)
    is_templated = _has_any(descriptor, ("template",)) or (
        not is_literal and _has_any(descriptor, ("prepare",))
    )
    if is_literal == is_templated:
        raise ValidationError(
            f"Operation {index} must have exactly one of 'text' or 'template'",
            path=path,
            field=f"[{index}]",
        )

    if is_literal:
        text = _first(descriptor, _LITERAL_KEYS)
        if not isinstance(text, str) or not text.strip():
            raise ValidationError(
                f"Operation {index}: empty statement text", path=path, field=f"[{index}].text"
            )
        return LiteralOperation(text)

    text = _first(descriptor, _TEMPLATE_KEYS)
    if not isinstance(text, str) or not text.strip():
        raise ValidationError(
            f"Operation {index}: empty template text", path=path, field=f"[{index}].template"
        )
    names = _param_names(_first(descriptor, _NAMES_KEYS), text, path)
    if not names:
        raise ValidationError(
            f"Operation {index}: a template needs at least one parameter",
            path=path,
            field=f"[{index}].paramNames",
        )
    unbound = _unbound_placeholder(text, names)
    if unbound is not None:
        raise ValidationError(
            f"Operation {index}: missing parameter value", path=path, field=unbound
        )
    types = _param_types(_first(descriptor, _TYPES_KEYS), len(names), path)

    values: dict[str, tuple[Any, ...]] = {}
    for name, param_type in zip(names, types, strict=True):
        present, array = _lookup_value(descriptor, name)
        if not present:
            raise ValidationError(
                f"Operation {index}: missing parameter value", path=path, field=name
            )
        if isinstance(array, (str, bytes)) or not isinstance(array, Sequence):
            raise ValidationError(
                f"Operation {index}: values of {name!r} must be a list",
                path=path,
                field=name,
                value=array,
            )
        values[name] = tuple(_coerce(param_type, name, value, path) for value in array)

    lengths = {name: len(array) for name, array in values.items()}
    if len(set(lengths.values())) > 1:
        raise ValidationError(
            f"Operation {index}: value arrays have unequal lengths",
            path=path,
            field=f"[{index}]",
            value=lengths,
        )

    return TemplatedOperation(text=text, param_names=names, param_types=types, values=values)


def build_batch(descriptors: Sequence[Mapping[str, Any] | Operation]) -> list[Operation]:
    """Validate a whole batch before any I/O; an empty batch is rejected."""
    if isinstance(descriptors, (str, bytes, Mapping)) or not isinstance(descriptors, Sequence):
        raise ValidationError(
            "A batch must be a list of operations",
            path="storage.db.transactions.validate_params",
        )
    if not descriptors:
        raise ValidationError(
            "A batch needs at least one operation",
            path="storage.db.transactions.validate_params",
        )
    return [build_operation(descriptor, index) for index, descriptor in enumerate(descriptors)]


__all__ = [
    "ALLOWED_PREFIX_RE",
    "BindStyle",
    "ParamType",
    "LiteralOperation",
    "TemplatedOperation",
    "Operation",
    "PreparedStatement",
    "is_allowed_statement",
    "validate_statement",
    "build_operation",
    "build_batch",
]
