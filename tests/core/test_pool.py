"""Tests for the connection pool."""

from __future__ import annotations

import sqlite3

import pytest

from strata.core.adapters.pool import ConnectionPool
from strata.core.errors import DatabaseConnectionError


def make_pool(max_size: int = 2, timeout: float = 0.05) -> ConnectionPool:
    return ConnectionPool(lambda: sqlite3.connect(":memory:", check_same_thread=False), max_size=max_size, timeout=timeout)


class TestConnectionPool:
    def test_reuses_returned_connections(self):
        pool = make_pool()
        conn = pool.checkout()
        raw = conn.dbapi_connection
        pool.checkin(conn)
        assert pool.checkout().dbapi_connection is raw

    def test_checked_out_connection_proxies_the_driver(self):
        pool = make_pool()
        conn = pool.checkout()
        assert conn.execute("SELECT 41 + 1").fetchone() == (42,)
        pool.checkin(conn)

    def test_exhaustion_raises_connection_error(self):
        pool = make_pool(max_size=1)
        pool.checkout()
        with pytest.raises(DatabaseConnectionError, match="exhausted") as exc_info:
            pool.checkout()
        assert exc_info.value.retryable

    def test_discard_replaces_the_connection(self):
        pool = make_pool(max_size=1)
        conn = pool.checkout()
        raw = conn.dbapi_connection
        pool.checkin(conn, discard=True)
        assert pool.checked_out == 0
        assert pool.checkout().dbapi_connection is not raw

    def test_acquire_returns_connection(self):
        pool = make_pool()
        with pool.acquire() as conn:
            raw = conn.dbapi_connection
            assert pool.available == 1
        assert pool.available == 2
        assert pool.checkout().dbapi_connection is raw

    def test_closed_pool_refuses_checkout(self):
        pool = make_pool()
        pool.close_all()
        with pytest.raises(DatabaseConnectionError, match="closed"):
            pool.checkout()

    def test_max_size_must_be_positive(self):
        with pytest.raises(ValueError):
            make_pool(max_size=0)
