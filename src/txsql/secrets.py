"""Credential resolution for backend configuration entries.

Storage entries never need to carry plain credentials. ``host``, ``port``,
``user`` and ``pass`` may hold a secret reference which is resolved only
when a backend configuration is built for a call:

- ``secret:DB_PASSWORD``: try every registered backend in order
- ``secret:env:DB_PASSWORD``: environment variable
- ``secret:file:/run/secrets/db_password``: file contents
- ``secret:<backend>:<key>``: a registered backend by name

Anything that is not a reference is returned unchanged, so plain values keep
working in development configs.

Architecture:
    ::

        storage.json                         SecretsResolver
        ┌──────────────────────────────┐     ┌──────────────────────────┐
        │ "pass": "secret:env:PG_PASS" │ ──▶ │ EnvSecretBackend         │
        │ "user": "report"             │     │ FileSecretBackend        │
        └──────────────────────────────┘     │ DictSecretBackend (test) │
                                             └──────────────────────────┘
                                                          │
                                                          ▼
                                             SecretValue("[REDACTED]")

Guardrails:
    - Resolved passwords travel as SecretValue so reprs stay redacted
    - Never put resolved credentials into error details

Tags:
    secrets, credentials, security, configuration, txsql
"""

from __future__ import annotations

import os
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class MissingSecretError(Exception):
    """Raised when a secret cannot be resolved from any backend."""

    def __init__(self, key: str, tried_backends: list[str] | None = None):
        self.key = key
        self.tried_backends = tried_backends or []

        msg = f"Secret not found: {key}"
        if tried_backends:
            msg += f" (tried: {', '.join(tried_backends)})"
        super().__init__(msg)


class SecretResolutionError(Exception):
    """Raised when a secret reference format is invalid."""


# ---------------------------------------------------------------------------
# SecretValue wrapper
# ---------------------------------------------------------------------------


class SecretValue:
    """Wrapper for secret values that prevents accidental logging.

    Example:
        >>> secret = SecretValue("my_password")
        >>> str(secret)
        '[REDACTED]'
        >>> secret.get_secret()
        'my_password'
    """

    __slots__ = ("_value",)

    def __init__(self, value: str):
        self._value = value

    def get_secret(self) -> str:
        """Get the actual secret value."""
        return self._value

    def __str__(self) -> str:
        return "[REDACTED]"

    def __repr__(self) -> str:
        return "SecretValue('[REDACTED]')"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretValue):
            return self._value == other._value
        return False

    def __hash__(self) -> int:
        return hash(self._value)

    def __bool__(self) -> bool:
        return bool(self._value)

    def __len__(self) -> int:
        return len(self._value)


# ---------------------------------------------------------------------------
# Secret backends
# ---------------------------------------------------------------------------


class SecretBackend(ABC):
    """Abstract base for secret backends."""

    name: str = "backend"

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Retrieve a secret by key, or None if this backend lacks it."""
        ...

    def contains(self, key: str) -> bool:
        return self.get(key) is not None


class EnvSecretBackend(SecretBackend):
    """Resolve secrets from environment variables.

    Tries ``{KEY}`` first, then ``TXSQL_SECRET_{KEY}``.
    """

    name = "env"

    def get(self, key: str) -> str | None:
        key_upper = key.upper()
        for candidate in (key, key_upper, f"TXSQL_SECRET_{key_upper}"):
            value = os.environ.get(candidate)
            if value is not None:
                return value
        return None


class FileSecretBackend(SecretBackend):
    """Resolve secrets from files (Docker / Kubernetes mounted secrets).

    ``key`` is a file name inside ``secrets_dir`` or an absolute path.
    Contents are cached after the first read.
    """

    name = "file"

    def __init__(self, secrets_dir: str | Path = "/run/secrets"):
        self.secrets_dir = Path(secrets_dir)
        self._cache: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            if key in self._cache:
                return self._cache[key]

        path = Path(key)
        if not path.is_absolute():
            path = self.secrets_dir / key
        if not path.is_file():
            return None

        try:
            content = path.read_text().strip()
        except OSError:
            return None
        with self._lock:
            self._cache[key] = content
        return content

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()


class DictSecretBackend(SecretBackend):
    """In-memory secret backend for tests. NOT for production use."""

    name = "dict"

    def __init__(self, secrets: dict[str, str] | None = None):
        self._secrets = dict(secrets) if secrets else {}

    def get(self, key: str) -> str | None:
        return self._secrets.get(key)

    def set(self, key: str, value: str) -> None:
        self._secrets[key] = value


# ---------------------------------------------------------------------------
# Reference patterns
# ---------------------------------------------------------------------------

# Full reference: secret:backend:key  (e.g. secret:env:DB_PASSWORD)
_FULL_REFERENCE_RE = re.compile(r"^secret:(\w+):(.+)$")

# Simple reference: secret:key
_SIMPLE_REFERENCE_RE = re.compile(r"^secret:([^:]+)$")

_SENTINEL = object()


def is_reference(value: Any) -> bool:
    """Whether ``value`` is a ``secret:`` reference string."""
    return isinstance(value, str) and value.startswith("secret:")


# ---------------------------------------------------------------------------
# SecretsResolver
# ---------------------------------------------------------------------------


class SecretsResolver:
    """Multi-backend secrets resolver.

    Resolves secrets by trying backends in order until one succeeds.
    """

    def __init__(self, backends: list[SecretBackend] | None = None):
        self._backends: list[SecretBackend] = list(backends) if backends is not None else []

    @property
    def backends(self) -> list[SecretBackend]:
        return list(self._backends)

    def resolve(self, key: str, default: Any = _SENTINEL) -> str | None:
        """Resolve a secret by key across all backends.

        Raises:
            MissingSecretError: If no backend has the secret and no default given
        """
        tried: list[str] = []
        for backend in self._backends:
            tried.append(backend.name)
            value = backend.get(key)
            if value is not None:
                return value

        if default is not _SENTINEL:
            return default
        raise MissingSecretError(key, tried)

    def resolve_reference(self, reference: str) -> str:
        """Resolve a ``secret:`` reference string.

        Raises:
            SecretResolutionError: If the reference format or backend is invalid
            MissingSecretError: If the secret is not found
        """
        full_match = _FULL_REFERENCE_RE.match(reference)
        if full_match:
            backend_name, key = full_match.group(1), full_match.group(2)
            for backend in self._backends:
                if backend.name == backend_name:
                    value = backend.get(key)
                    if value is None:
                        raise MissingSecretError(key, [backend_name])
                    return value
            if backend_name in ("env", "file"):
                fallback: SecretBackend
                if backend_name == "env":
                    fallback = EnvSecretBackend()
                else:
                    fallback = FileSecretBackend(_settings_secrets_dir())
                value = fallback.get(key)
                if value is None:
                    raise MissingSecretError(key, [backend_name])
                return value
            raise SecretResolutionError(
                f"Unknown secret backend {backend_name!r} in reference {reference!r}"
            )

        simple_match = _SIMPLE_REFERENCE_RE.match(reference)
        if simple_match:
            return self.resolve(simple_match.group(1))  # type: ignore[return-value]

        raise SecretResolutionError(
            f"Invalid secret reference format: {reference!r}. "
            "Expected 'secret:<key>' or 'secret:<backend>:<key>'."
        )

    def decrypt(self, value: Any) -> Any:
        """Return the plain value of a configuration field.

        References are resolved, every other value passes through.
        """
        if is_reference(value):
            return self.resolve_reference(value)
        return value

    def add_backend(self, backend: SecretBackend, priority: int = -1) -> None:
        if priority < 0:
            self._backends.append(backend)
        else:
            self._backends.insert(priority, backend)


def _settings_secrets_dir() -> Path:
    # Imported here: txsql.config imports this module
    from txsql.config.settings import get_settings

    return get_settings().secrets_dir


# ---------------------------------------------------------------------------
# Global resolver
# ---------------------------------------------------------------------------

_default_resolver: SecretsResolver | None = None


def get_resolver() -> SecretsResolver:
    """Get the global resolver.

    Defaults to the Env backend, then the File backend reading
    ``StorageSettings.secrets_dir`` (``TXSQL_SECRETS_DIR``).
    """
    global _default_resolver
    if _default_resolver is None:
        _default_resolver = SecretsResolver(
            [EnvSecretBackend(), FileSecretBackend(_settings_secrets_dir())]
        )
    return _default_resolver


def set_resolver(resolver: SecretsResolver | None) -> None:
    """Set (or reset with None) the global secrets resolver."""
    global _default_resolver
    _default_resolver = resolver


__all__ = [
    "MissingSecretError",
    "SecretResolutionError",
    "SecretValue",
    "SecretBackend",
    "EnvSecretBackend",
    "FileSecretBackend",
    "DictSecretBackend",
    "SecretsResolver",
    "is_reference",
    "get_resolver",
    "set_resolver",
]
