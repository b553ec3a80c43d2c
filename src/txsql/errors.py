"""
Structured error types for the txsql execution layer.

Every failure the execution layer can produce is raised as a subclass of
:class:`StorageError`. The layer never formats or logs these errors itself:
it enriches them with the metadata an upstream collaborator needs to decide
how to present them (HTML page, JSON payload, terminal text, log entry) and
lets them propagate.

Manifesto:
    - **Typed hierarchy:** One error type per failure domain
    - **Raise, never render:** Presentation belongs to the caller
    - **Context tag:** Every error knows which surface triggered it
    - **Error chaining:** Native driver exceptions survive as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       StorageError                               │
        │  (path, context, category, details, cause)                      │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConfigurationError     DatabaseConnectionError                  │
        │  (CONFIG)               (CONNECTION)                             │
        │                                                                  │
        │  ValidationError        ExecutionError      TransactionError     │
        │  (VALIDATION)           (EXECUTION)         (TRANSACTION)        │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = ValidationError("not a recognized statement", path="storage.db.execute")
    >>> error.category
    <ErrorCategory.VALIDATION: 'VALIDATION'>
    >>> error.context
    <ExceptionContext.API: 'api'>

    >>> error.with_context(context="cli", statement="DROP")
    ValidationError('not a recognized statement', path='storage.db.execute', context=cli)
    >>> error.to_dict()["details"]
    {'statement': 'DROP'}

Guardrails:
    ❌ DON'T: Let a native driver exception escape the adapter boundary
    ✅ DO: Wrap it in the matching StorageError subclass with ``cause=``

    ❌ DON'T: Put passwords or decrypted credentials into ``details``
    ✅ DO: Keep details to statements, parameter names and native diagnostics

Tags:
    error-handling, exception-hierarchy, error-context, txsql

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used by upstream collaborators for routing."""

    CONFIG = "CONFIG"                 # Unknown backend name or dialect
    CONNECTION = "CONNECTION"         # Cannot open or authenticate
    VALIDATION = "VALIDATION"         # Malformed operation descriptor
    EXECUTION = "EXECUTION"           # Single-operation native failure
    TRANSACTION = "TRANSACTION"       # Batch or cursor failure, rolled back
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


class ExceptionContext(str, Enum):
    """Surface that triggered the failing operation.

    Upstream presentation logic formats the error differently for each
    surface; the execution layer only carries the tag.
    """

    PAGE = "page"
    ASYNC = "async"
    API = "api"
    STRONG_API = "strong-api"
    CLI = "cli"

    @classmethod
    def parse(cls, value: ExceptionContext | str | None) -> ExceptionContext:
        """Coerce a tag (enum member, value or alias) to a member."""
        if value is None:
            return cls.API
        if isinstance(value, cls):
            return value
        tag = str(value).strip().lower()
        aliases = {"sapi": cls.STRONG_API, "strong_api": cls.STRONG_API, "async-page": cls.ASYNC}
        if tag in aliases:
            return aliases[tag]
        try:
            return cls(tag)
        except ValueError:
            raise ValueError(f"Unknown exception context: {value!r}") from None


class StorageError(Exception):
    """
    Base exception for all txsql errors.

    Attributes:
        message: Human readable message
        path: Dotted path of the failing operation (``storage.db.execute``)
        context: Surface tag supplied by the caller
        category: ErrorCategory for routing
        details: Native diagnostics and operation metadata
        cause: Chained underlying exception
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_path: str = "storage.db"

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        context: ExceptionContext | str | None = None,
        category: ErrorCategory | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.path = path or self.default_path
        self.context = ExceptionContext.parse(context)
        self.category = category or self.default_category
        self.details: dict[str, Any] = dict(details) if details else {}
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> StorageError:
        """
        Add metadata to this error (fluent API).

        ``path`` and ``context`` update the matching attributes, every other
        key lands in ``details``.

        Usage:
            raise ExecutionError("failed").with_context(
                context="cli",
                statement="SELECT 1",
            )
        """
        for key, value in kwargs.items():
            if key == "path":
                self.path = value
            elif key == "context":
                self.context = ExceptionContext.parse(value)
            else:
                self.details[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "path": self.path,
            "context": self.context.value,
            "message": self.message,
            "category": self.category.value,
        }
        if self.details:
            result["details"] = self.details
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.message!r}, "
            f"path={self.path!r}, context={self.context.value})"
        )


class ConfigurationError(StorageError):
    """Unknown backend name, unsupported dialect or invalid storage entry."""

    default_category = ErrorCategory.CONFIG
    default_path = "storage.db.select_strategy"


class DatabaseConnectionError(StorageError):
    """Cannot open or authenticate a connection to the backend."""

    default_category = ErrorCategory.CONNECTION
    default_path = "storage.db.connect"


class ValidationError(StorageError):
    """
    Malformed operation descriptor.

    Always raised before any I/O; the connection is never touched.
    """

    default_category = ErrorCategory.VALIDATION
    default_path = "storage.db.validate"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class ExecutionError(StorageError):
    """Native failure of a single, non-transactional operation."""

    default_category = ErrorCategory.EXECUTION
    default_path = "storage.db.execute"


class TransactionError(StorageError):
    """
    Native failure inside a batch or cursor session.

    Raised only after the open transaction was rolled back. ``payload``
    holds the batch descriptors for diagnostic logging.
    """

    default_category = ErrorCategory.TRANSACTION
    default_path = "storage.db.transactions"

    def __init__(
        self,
        message: str,
        *,
        payload: list[dict[str, Any]] | None = None,
        rolled_back: bool = False,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.payload = payload or []
        self.rolled_back = rolled_back

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["rolled_back"] = self.rolled_back
        if self.payload:
            result["payload"] = self.payload
        return result


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, StorageError):
        return error.category
    if isinstance(error, (KeyError, AttributeError)):
        return ErrorCategory.CONFIG
    if isinstance(error, (TypeError, ValueError)):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ExceptionContext",
    "StorageError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "ValidationError",
    "ExecutionError",
    "TransactionError",
    "categorize_error",
]
