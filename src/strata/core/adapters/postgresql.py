"""PostgreSQL database adapter.

Uses psycopg2, imported lazily so SQLite-only installs never need it.
"""

from __future__ import annotations

import re
from typing import Any

from strata.core.errors import (
    ConfigError,
    ConstraintViolationError,
    DatabaseConnectionError,
    QueryError,
    StrataError,
)
from strata.core.protocols import Connection

from .base import DatabaseAdapter
from .types import DatabaseConfig, DatabaseType

# SQLSTATE codes for integrity constraint violations (class 23)
_CONSTRAINT_CODES = {
    "23505": "unique",
    "23503": "foreign_key",
    "23502": "not_null",
    "23514": "check",
}

# "Key (isbn, edition)=(x, 1) already exists."
_KEY_DETAIL_RE = re.compile(r"Key \(([^)]*)\)=")


class PostgreSQLAdapter(DatabaseAdapter):
    """
    PostgreSQL database adapter.

    Each pooled connection is a psycopg2 connection with
    ``autocommit = True``; the executor issues BEGIN/COMMIT itself.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "",
        username: str | None = None,
        password: str | None = None,
        *,
        dsn: str | None = None,
        pool_size: int = 5,
        connect_timeout: int = 10,
        **kwargs: Any,
    ):
        config = DatabaseConfig(
            db_type=DatabaseType.POSTGRESQL,
            host=host,
            port=port,
            database=database,
            username=username,
            password=password,
            dsn=dsn,
            pool_size=pool_size,
            connect_timeout=connect_timeout,
            options=kwargs,
        )
        super().__init__(config)

    def _driver(self) -> Any:
        try:
            import psycopg2
        except ImportError:
            raise ConfigError(
                "psycopg2 is required for PostgreSQL. Install with: pip install strata-orm[postgres]"
            ) from None
        return psycopg2

    def connect(self) -> Connection:
        """Open a PostgreSQL connection in autocommit mode."""
        psycopg2 = self._driver()

        try:
            if self._config.dsn:
                conn = psycopg2.connect(
                    self._config.dsn,
                    connect_timeout=self._config.connect_timeout,
                    **self._config.options,
                )
            else:
                conn = psycopg2.connect(
                    host=self._config.host,
                    port=self._config.port,
                    dbname=self._config.database,
                    user=self._config.username,
                    password=self._config.password,
                    connect_timeout=self._config.connect_timeout,
                    **self._config.options,
                )
        except psycopg2.Error as e:
            raise DatabaseConnectionError(
                f"Failed to connect to PostgreSQL: {e}",
                cause=e,
            ) from e

        conn.autocommit = True
        return conn

    def execute(self, conn: Connection, sql: str, bindings: tuple[Any, ...] = ()) -> Any:
        cursor = conn.cursor()
        # psycopg2 only interpolates when parameters are given.
        cursor.execute(sql, bindings if bindings else None)
        return cursor

    def last_insert_id(self, cursor: Any) -> Any:
        row = cursor.fetchone()
        return row[0] if row else None

    def translate_error(
        self,
        exc: Exception,
        sql: str | None = None,
        bindings: tuple[Any, ...] | None = None,
    ) -> StrataError:
        message = str(exc).strip()
        context = self._context(sql, bindings)
        code = getattr(exc, "pgcode", None) or ""

        if code in _CONSTRAINT_CODES:
            diag = getattr(exc, "diag", None)
            constraint = getattr(diag, "constraint_name", None)
            columns: list[str] = []
            column_name = getattr(diag, "column_name", None)
            if column_name:
                columns = [column_name]
            else:
                match = _KEY_DETAIL_RE.search(getattr(diag, "message_detail", None) or "")
                if match:
                    columns = [c.strip() for c in match.group(1).split(",")]
            return ConstraintViolationError(
                message,
                constraint_type=_CONSTRAINT_CODES[code],
                constraint=constraint,
                columns=columns,
                context=context,
                cause=exc,
            )

        # SQLSTATE class 08 is a connection exception.  An OperationalError
        # with no SQLSTATE never got an answer from the server; with one
        # (57014 cancel, 40P01 deadlock, 40001 serialization) it is a
        # failed statement on a live connection.
        if code.startswith("08"):
            return DatabaseConnectionError(message, context=context, cause=exc)
        psycopg2 = self._driver()
        if isinstance(exc, psycopg2.InterfaceError) or (isinstance(exc, psycopg2.OperationalError) and not code):
            return DatabaseConnectionError(message, context=context, cause=exc)

        return QueryError(message, context=context, cause=exc)


__all__ = [
    "PostgreSQLAdapter",
]
