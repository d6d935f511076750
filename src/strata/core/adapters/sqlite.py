"""SQLite database adapter."""

from __future__ import annotations

import re
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from strata.core.errors import (
    ConstraintViolationError,
    DatabaseConnectionError,
    QueryError,
    StrataError,
)
from strata.core.protocols import Connection

from .base import DatabaseAdapter
from .types import DatabaseConfig, DatabaseType

# "UNIQUE constraint failed: books.isbn, books.edition"
_CONSTRAINT_RE = re.compile(r"^(UNIQUE|NOT NULL|CHECK|FOREIGN KEY) constraint failed(?::\s*(.+))?$")

_CONSTRAINT_TYPES = {
    "UNIQUE": "unique",
    "NOT NULL": "not_null",
    "CHECK": "check",
    "FOREIGN KEY": "foreign_key",
}

_CONNECTION_MESSAGES = (
    "unable to open database",
    "disk i/o error",
    "database is locked",
    "closed database",
    "database disk image is malformed",
)


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite database adapter.

    Uses the built-in sqlite3 module. Suitable for:
    - Development and testing
    - Single-process applications

    An in-memory database lives inside one connection, so its pool is
    capped at a single connection shared under checkout discipline.
    """

    def __init__(
        self,
        path: str = ":memory:",
        *,
        readonly: bool = False,
        timeout: float = 5.0,
        pool_size: int = 5,
        **kwargs: Any,
    ):
        config = DatabaseConfig(
            db_type=DatabaseType.SQLITE,
            path=path,
            readonly=readonly,
            pool_size=pool_size,
            options=kwargs,
        )
        super().__init__(config)
        self._timeout = timeout

    def connect(self) -> Connection:
        """Open a SQLite connection in autocommit mode with foreign keys on."""
        path = self._config.path or ":memory:"
        uri = path.startswith("file:")

        try:
            conn = sqlite3.connect(
                path,
                timeout=self._timeout,
                check_same_thread=False,
                isolation_level=None,
                uri=uri,
            )
        except sqlite3.Error as e:
            raise DatabaseConnectionError(
                f"Failed to connect to SQLite: {e}",
                cause=e,
            ) from e

        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")

        if self._config.readonly:
            conn.execute("PRAGMA query_only = ON")

        return conn

    def max_pool_size(self) -> int:
        if self._config.is_memory:
            return 1
        return super().max_pool_size()

    def execute(self, conn: Connection, sql: str, bindings: tuple[Any, ...] = ()) -> Any:
        return conn.execute(sql, tuple(_adapt(value) for value in bindings))

    def fetch_rows(self, cursor: Any) -> list[dict[str, Any]]:
        return [dict(row) for row in cursor.fetchall()]

    def translate_error(
        self,
        exc: Exception,
        sql: str | None = None,
        bindings: tuple[Any, ...] | None = None,
    ) -> StrataError:
        message = str(exc)
        context = self._context(sql, bindings)

        if isinstance(exc, sqlite3.IntegrityError):
            match = _CONSTRAINT_RE.match(message)
            constraint_type = "unknown"
            constraint = None
            columns: list[str] = []
            if match:
                constraint_type = _CONSTRAINT_TYPES[match.group(1)]
                detail = match.group(2)
                if detail and constraint_type == "check":
                    constraint = detail.strip()
                elif detail:
                    columns = [part.strip().rsplit(".", 1)[-1] for part in detail.split(",")]
            return ConstraintViolationError(
                message,
                constraint_type=constraint_type,
                constraint=constraint,
                columns=columns,
                context=context,
                cause=exc,
            )

        lowered = message.lower()
        if isinstance(exc, (sqlite3.OperationalError, sqlite3.ProgrammingError)) and any(
            fragment in lowered for fragment in _CONNECTION_MESSAGES
        ):
            return DatabaseConnectionError(message, context=context, cause=exc)

        return QueryError(message, context=context, cause=exc)

    def is_disconnect(self, error: StrataError) -> bool:
        # "database is locked" is transient and the connection stays usable.
        if "database is locked" in error.message.lower():
            return False
        return super().is_disconnect(error)


def _adapt(value: Any) -> Any:
    # sqlite3's implicit datetime adapters are deprecated; store ISO text.
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


__all__ = [
    "SQLiteAdapter",
]
