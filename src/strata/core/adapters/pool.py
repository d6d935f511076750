"""
Connection pool over :class:`sqlalchemy.pool.QueuePool`.

Manifesto:
    A web process serving concurrent requests must never let two threads
    talk over one driver connection.  SQLAlchemy's queue pool already
    gives each borrower exclusive use of a connection, opens connections
    lazily up to its size and blocks for ``timeout`` seconds when all of
    them are busy.  This module only puts strata's error taxonomy and
    checkout/checkin vocabulary on top of it.

Architecture:
    ::

        checkout() ──► QueuePool.connect() ──► proxied driver connection
                              │ all busy for `timeout`
                              ▼
                    sqlalchemy.exc.TimeoutError ──► DatabaseConnectionError

        checkin(conn)               ──► conn.close()       (back to the queue)
        checkin(conn, discard=True) ──► conn.invalidate()  (reopened lazily)

Examples:
    >>> pool = ConnectionPool(adapter.connect, max_size=5)
    >>> with pool.acquire() as conn:
    ...     conn.cursor().execute("SELECT 1")

Tags:
    connection-pool, sqlalchemy, checkout, strata
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import exc as sa_exc
from sqlalchemy.pool import QueuePool

from strata.core.errors import DatabaseConnectionError
from strata.core.logging import get_logger
from strata.core.protocols import Connection

logger = get_logger(__name__)


class ConnectionPool:
    """Fixed-size pool of driver connections created on demand."""

    def __init__(
        self,
        factory: Callable[[], Connection],
        *,
        max_size: int = 5,
        timeout: float = 30.0,
        name: str = "default",
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._timeout = timeout
        self._name = name
        self._closed = False
        # Connections run in autocommit mode; Database issues BEGIN/COMMIT.
        self._pool = QueuePool(
            factory,
            pool_size=max_size,
            max_overflow=0,
            timeout=timeout,
            reset_on_return=None,
        )

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def checked_out(self) -> int:
        return self._pool.checkedout()

    @property
    def available(self) -> int:
        """Connections that could be handed out without waiting."""
        return self._max_size - self._pool.checkedout()

    def checkout(self) -> Any:
        """Borrow a connection; the caller must :meth:`checkin` it."""
        if self._closed:
            raise DatabaseConnectionError(f"Connection pool '{self._name}' is closed")
        try:
            return self._pool.connect()
        except sa_exc.TimeoutError:
            logger.warning("pool.exhausted", pool=self._name, max_size=self._max_size, waited=self._timeout)
            raise DatabaseConnectionError(
                f"Connection pool '{self._name}' exhausted "
                f"({self._max_size} in use, waited {self._timeout}s)"
            ) from None

    def checkin(self, conn: Any, *, discard: bool = False) -> None:
        """Return a borrowed connection, or close it when *discard* is set."""
        if discard or self._closed:
            conn.invalidate()
            logger.debug("pool.discarded", pool=self._name)
            return
        conn.close()

    @contextmanager
    def acquire(self) -> Iterator[Any]:
        """Context manager around :meth:`checkout` / :meth:`checkin`."""
        conn = self.checkout()
        try:
            yield conn
        finally:
            self.checkin(conn)

    def close_all(self) -> None:
        """Close idle connections and refuse further checkouts."""
        self._closed = True
        self._pool.dispose()

    def __repr__(self) -> str:
        return f"ConnectionPool(name={self._name!r}, checked_out={self.checked_out}, max_size={self._max_size})"


__all__ = ["ConnectionPool"]
