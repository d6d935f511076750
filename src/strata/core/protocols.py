"""
Canonical protocol definitions for strata.

Every module that needs a driver connection or a query listener imports
the contract from here rather than from a concrete adapter.

Architecture:
    ::

        protocols.py
        ├── Connection      — DB-API shaped driver connection
        ├── Cursor          — the subset of a DB-API cursor strata reads
        └── QueryListener   — callback invoked after every statement

Tags:
    protocol, connection, database, strata, contracts
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Cursor(Protocol):
    """Minimal DB-API 2.0 cursor surface used by the executor."""

    description: Any
    rowcount: int
    lastrowid: Any

    def execute(self, sql: str, params: Any = ()) -> Any: ...

    def fetchone(self) -> Any: ...

    def fetchall(self) -> list: ...

    def close(self) -> None: ...


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS driver connection.

    Satisfied by ``sqlite3.Connection`` and ``psycopg2`` connections.
    Adapters put the connection in autocommit mode; transactions are
    issued explicitly (BEGIN / SAVEPOINT / COMMIT) by
    :class:`~strata.core.database.Database`.
    """

    def cursor(self) -> Any:
        """Open a new cursor."""
        ...

    def commit(self) -> None:
        """Commit current transaction."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction."""
        ...

    def close(self) -> None:
        """Close the connection."""
        ...


@dataclass(frozen=True)
class QueryEvent:
    """One executed statement, as reported to query listeners."""

    sql: str
    bindings: tuple[Any, ...] = field(default_factory=tuple)
    elapsed_ms: float = 0.0
    connection_name: str = "default"


class QueryListener(Protocol):
    """Callback invoked after each statement the executor runs."""

    def __call__(self, event: QueryEvent) -> None: ...


__all__ = [
    "Connection",
    "Cursor",
    "QueryEvent",
    "QueryListener",
]
