"""Database adapter base class.

Manifesto:
    Everything driver-specific lives behind one adapter: opening raw
    connections, binding parameters, reading rows back as dicts, and
    translating driver exceptions into the strata error taxonomy.  The
    executor (:class:`~strata.core.database.Database`) and the grammars
    never import a driver.

Features:
    - Abstract ``connect()`` and ``translate_error()``
    - Shared ``execute()`` / ``fetch_rows()`` / ``last_insert_id()``
    - Dialect resolved from the configured database type
    - ``max_pool_size()`` lets a backend cap concurrency (SQLite RAM → 1)

Tags:
    strata, database, abstract-base, adapter-pattern
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from strata.core.dialect import Dialect, get_dialect
from strata.core.errors import DatabaseConnectionError, ErrorContext, StrataError
from strata.core.protocols import Connection

from .types import DatabaseConfig, DatabaseType


class DatabaseAdapter(ABC):
    """
    Abstract base class for database adapters.

    Subclasses open connections in autocommit mode: transaction
    boundaries are issued explicitly by the executor so nested
    transactions can map onto savepoints.
    """

    def __init__(self, config: DatabaseConfig):
        self._config = config
        self._dialect: Dialect = get_dialect(config.db_type.value)

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def dialect(self) -> Dialect:
        """SQL dialect for this adapter's database type."""
        return self._dialect

    @property
    def db_type(self) -> DatabaseType:
        """Database type."""
        return self._config.db_type

    @property
    def name(self) -> str:
        return self._config.db_type.value

    @abstractmethod
    def connect(self) -> Connection:
        """Open a new raw driver connection (autocommit mode)."""
        ...

    @abstractmethod
    def translate_error(
        self,
        exc: Exception,
        sql: str | None = None,
        bindings: tuple[Any, ...] | None = None,
    ) -> StrataError:
        """Map a driver exception onto the strata taxonomy."""
        ...

    def is_disconnect(self, error: StrataError) -> bool:
        """Whether the connection that raised *error* must be discarded."""
        return isinstance(error, DatabaseConnectionError)

    def max_pool_size(self) -> int:
        return max(1, self._config.pool_size)

    def execute(self, conn: Connection, sql: str, bindings: tuple[Any, ...] = ()) -> Any:
        """Execute one statement on *conn* and return the cursor."""
        cursor = conn.cursor()
        cursor.execute(sql, bindings)
        return cursor

    def fetch_rows(self, cursor: Any) -> list[dict[str, Any]]:
        """Read every remaining row of *cursor* as a dict."""
        if cursor.description is None:
            return []
        columns = [desc[0] for desc in cursor.description]
        return [dict(zip(columns, row, strict=False)) for row in cursor.fetchall()]

    def last_insert_id(self, cursor: Any) -> Any:
        return cursor.lastrowid

    @staticmethod
    def _context(sql: str | None, bindings: tuple[Any, ...] | None) -> ErrorContext:
        return ErrorContext(sql=sql, bindings=tuple(bindings) if bindings is not None else None)

    def __repr__(self) -> str:
        target = self._config.path or self._config.database or ":memory:"
        return f"{self.__class__.__name__}({target!r})"


__all__ = [
    "DatabaseAdapter",
]
