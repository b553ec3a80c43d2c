"""Database adapter registry and factory.

Manifesto:
    Consumers never hard-code adapter class names. Dialect selection is a
    closed enum driven by configuration: the registry maps each
    ``DatabaseType`` to its adapter class and ``get_adapter()`` builds a
    fresh, unconnected adapter from a resolved ``BackendConfig``.

Features:
    - ``AdapterRegistry`` with the three built-in adapters pre-registered
    - ``register()`` to swap in a subclass (test doubles, instrumented drivers)
    - ``get_adapter()`` factory: BackendConfig + context tag -> adapter

Tags:
    txsql, database, registry, factory

Doc-Types:
    api-reference
"""

from __future__ import annotations

from txsql.errors import ConfigurationError, ExceptionContext

from .base import DatabaseAdapter
from .mysql import MySQLAdapter
from .postgresql import PostgreSQLAdapter
from .sqlite import SQLiteAdapter
from .types import BackendConfig, DatabaseType


class AdapterRegistry:
    """
    Registry for database adapter classes.

    Pre-registered adapters:
    - ``postgresql`` (tags ``pgsql``, ``postgres``) : :class:`PostgreSQLAdapter`
    - ``mysql`` (tag ``mariadb``) : :class:`MySQLAdapter`
    - ``sqlite`` : :class:`SQLiteAdapter`
    """

    def __init__(self):
        self._factories: dict[DatabaseType, type[DatabaseAdapter]] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        self._factories[DatabaseType.POSTGRESQL] = PostgreSQLAdapter
        self._factories[DatabaseType.MYSQL] = MySQLAdapter
        self._factories[DatabaseType.SQLITE] = SQLiteAdapter

    def register(self, db_type: DatabaseType | str, adapter_class: type[DatabaseAdapter]) -> None:
        """Register (or replace) the adapter class for a database type."""
        self._factories[DatabaseType.from_tag(db_type)] = adapter_class

    def create(
        self,
        config: BackendConfig,
        *,
        context: ExceptionContext | str | None = None,
    ) -> DatabaseAdapter:
        """Create an unconnected adapter for ``config``."""
        try:
            factory = self._factories[config.db_type]
        except KeyError:
            raise ConfigurationError(
                f"Unknown database adapter: {config.db_type!r}",
                path="storage.db.select_strategy",
                context=context,
                details={"backend": config.name},
            ) from None
        return factory(config, context=context)

    def list_adapters(self) -> list[str]:
        return sorted(db_type.value for db_type in self._factories)


# Global registry
adapter_registry = AdapterRegistry()


def get_adapter(
    config: BackendConfig,
    *,
    context: ExceptionContext | str | None = None,
) -> DatabaseAdapter:
    """
    Get a fresh adapter for a resolved backend configuration.

    Usage:
        adapter = get_adapter(storage_config.get("reports"), context="cli")
    """
    return adapter_registry.create(config, context=context)


__all__ = [
    "AdapterRegistry",
    "adapter_registry",
    "get_adapter",
]
