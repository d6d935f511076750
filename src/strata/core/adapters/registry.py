"""Adapter registry: URL scheme → adapter class.

``create_database()`` looks every non-file URL scheme up here, so a
third-party backend only needs a :class:`DatabaseAdapter` subclass and
one ``register()`` call::

    adapter_registry.register("cockroach", CockroachAdapter)
    db = create_database("cockroach://root@localhost:26257/library")

Adapters registered under a new scheme are built with the full URL as
``dsn`` plus ``pool_size``.

Tags:
    strata, database, registry, factory
"""

from __future__ import annotations

from typing import Any

from strata.core.errors import ConfigError

from .base import DatabaseAdapter
from .postgresql import PostgreSQLAdapter
from .sqlite import SQLiteAdapter


class AdapterRegistry:
    """Adapter classes keyed by lower-case scheme, with aliases."""

    def __init__(self) -> None:
        self._adapters: dict[str, type[DatabaseAdapter]] = {}
        self.register("sqlite", SQLiteAdapter)
        self.register("postgresql", PostgreSQLAdapter, "postgres")

    def register(self, scheme: str, adapter_class: type[DatabaseAdapter], *aliases: str) -> None:
        for name in (scheme, *aliases):
            self._adapters[name.lower()] = adapter_class

    def unregister(self, scheme: str) -> None:
        self._adapters.pop(scheme.lower(), None)

    def resolve(self, scheme: str) -> type[DatabaseAdapter]:
        try:
            return self._adapters[scheme.lower()]
        except KeyError:
            raise ConfigError(
                f"Unsupported database URL scheme: {scheme!r} (registered: {', '.join(self.schemes())})"
            ) from None

    def create(self, scheme: str, **kwargs: Any) -> DatabaseAdapter:
        return self.resolve(scheme)(**kwargs)

    def __contains__(self, scheme: str) -> bool:
        return scheme.lower() in self._adapters

    def schemes(self) -> list[str]:
        return sorted(self._adapters)


adapter_registry = AdapterRegistry()


def get_adapter(scheme: str, **kwargs: Any) -> DatabaseAdapter:
    """Build an adapter from the process-wide registry."""
    return adapter_registry.create(scheme, **kwargs)


__all__ = [
    "AdapterRegistry",
    "adapter_registry",
    "get_adapter",
]
