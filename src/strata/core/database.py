"""
Database handle: statement execution, transactions and instrumentation.

A :class:`Database` wraps one adapter and one connection pool.  It is
the explicit handle every query builder, model query, schema builder and
migrator receives; there is no global "current connection".

Manifesto:
    - **One connection per unit of work:** outside a transaction each
      statement borrows a pooled connection and returns it immediately.
      Inside a transaction the connection is pinned to the calling
      thread until the outermost transaction ends.
    - **Nested transactions are savepoints:** ``strata_sp_<depth>``.
      An inner failure rolls back to its savepoint and re-raises.
    - **Errors are translated once:** the adapter maps driver exceptions
      onto the strata taxonomy; the executor only re-raises them.

Architecture:
    ::

        db.select(sql, bindings)
            │ token.raise_if_cancelled()
            ▼
        _connection() ── pinned (transaction) ──► same thread's conn
            │ else
            ▼
        pool.checkout() ─► adapter.execute() ─► adapter.fetch_rows()
            │                   │ driver error
            │                   ▼
            │            adapter.translate_error() ─► raise StrataError
            ▼
        pool.checkin(discard=is_disconnect)
            │
            ▼
        QueryEvent ─► query log / listeners / logger.debug("query.executed")

Examples:
    >>> db = Database(SQLiteAdapter(":memory:"))
    >>> with db.transaction():
    ...     db.insert("INSERT INTO books (title) VALUES (?)", ("Dune",))
    >>> db.table("books").where("title", "Dune").count()
    1

Tags:
    database, executor, transactions, savepoints, pool, strata
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from strata.core.adapters.base import DatabaseAdapter
from strata.core.adapters.pool import ConnectionPool
from strata.core.cancellation import CancellationToken
from strata.core.dialect import Dialect
from strata.core.errors import StrataError, TransactionError
from strata.core.logging import get_logger
from strata.core.protocols import Connection, QueryEvent, QueryListener

if TYPE_CHECKING:
    from strata.migrations.runner import Migrator
    from strata.orm.model import Model
    from strata.orm.query import ModelQuery, Repository
    from strata.query.builder import QueryBuilder
    from strata.query.grammar import Grammar
    from strata.schema.builder import SchemaBuilder

logger = get_logger(__name__)


class Database:
    """Session handle over one adapter and its connection pool."""

    def __init__(
        self,
        adapter: DatabaseAdapter,
        *,
        table_prefix: str = "",
        pool_size: int | None = None,
        pool_timeout: float = 30.0,
        name: str = "default",
    ) -> None:
        self._adapter = adapter
        self._table_prefix = table_prefix
        self._name = name

        size = pool_size or adapter.max_pool_size()
        if adapter.config.is_memory:
            size = 1
        self._pool = ConnectionPool(
            adapter.connect,
            max_size=size,
            timeout=pool_timeout,
            name=name,
        )

        self._local = threading.local()
        self._listeners: list[QueryListener] = []
        self._logging_queries = False
        self._query_log: list[QueryEvent] = []
        self._grammar: Grammar | None = None
        # Set by create_database(); describes the backend.
        self.info: Any = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def adapter(self) -> DatabaseAdapter:
        return self._adapter

    @property
    def dialect(self) -> Dialect:
        return self._adapter.dialect

    @property
    def name(self) -> str:
        return self._name

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    @property
    def table_prefix(self) -> str:
        return self._table_prefix

    @property
    def grammar(self) -> Grammar:
        """Query grammar for this database's dialect and table prefix."""
        if self._grammar is None:
            from strata.query.grammar import Grammar

            self._grammar = Grammar(self.dialect, self._table_prefix)
        return self._grammar

    @property
    def transaction_level(self) -> int:
        """Transaction depth on the calling thread (0 = none)."""
        return getattr(self._local, "depth", 0)

    @property
    def pretending(self) -> bool:
        return getattr(self._local, "pretend", None) is not None

    def prefix_table(self, table: str) -> str:
        """Apply the configured table prefix: ``{prefix}{table}``."""
        return f"{self._table_prefix}{table}"

    # ------------------------------------------------------------------
    # Statement execution
    # ------------------------------------------------------------------

    def select(
        self,
        sql: str,
        bindings: Sequence[Any] = (),
        token: CancellationToken | None = None,
    ) -> list[dict[str, Any]]:
        """Run a query and return every row as a dict."""
        return self._run(sql, bindings, self._adapter.fetch_rows, token, default=[])

    def select_one(
        self,
        sql: str,
        bindings: Sequence[Any] = (),
        token: CancellationToken | None = None,
    ) -> dict[str, Any] | None:
        rows = self.select(sql, bindings, token)
        return rows[0] if rows else None

    def scalar(
        self,
        sql: str,
        bindings: Sequence[Any] = (),
        token: CancellationToken | None = None,
    ) -> Any:
        """First column of the first row, or None."""
        row = self.select_one(sql, bindings, token)
        if row is None:
            return None
        return next(iter(row.values()), None)

    def insert(
        self,
        sql: str,
        bindings: Sequence[Any] = (),
        token: CancellationToken | None = None,
    ) -> Any:
        """Run an INSERT and return the new row's key."""
        return self._run(sql, bindings, self._adapter.last_insert_id, token)

    def affecting_statement(
        self,
        sql: str,
        bindings: Sequence[Any] = (),
        token: CancellationToken | None = None,
    ) -> int:
        """Run an UPDATE/DELETE and return the affected row count."""
        return self._run(sql, bindings, lambda cursor: cursor.rowcount, token, default=0)

    def statement(
        self,
        sql: str,
        bindings: Sequence[Any] = (),
        token: CancellationToken | None = None,
    ) -> bool:
        """Run a statement with no result (DDL, pragmas)."""
        return self._run(sql, bindings, lambda cursor: True, token, default=True)

    def _run(
        self,
        sql: str,
        bindings: Sequence[Any],
        handler: Callable[[Any], Any],
        token: CancellationToken | None,
        default: Any = None,
    ) -> Any:
        if token is not None:
            token.raise_if_cancelled()
        bindings = tuple(bindings or ())

        pretended = getattr(self._local, "pretend", None)
        if pretended is not None:
            event = QueryEvent(sql=sql, bindings=bindings, connection_name=self._name)
            pretended.append(event)
            return default

        with self._connection() as conn:
            start = time.perf_counter()
            try:
                cursor = self._adapter.execute(conn, sql, bindings)
                try:
                    result = handler(cursor)
                finally:
                    cursor.close()
            except StrataError:
                raise
            except Exception as exc:
                raise self._adapter.translate_error(exc, sql, bindings) from exc
            elapsed_ms = (time.perf_counter() - start) * 1000

        self._record(QueryEvent(sql=sql, bindings=bindings, elapsed_ms=elapsed_ms, connection_name=self._name))
        return result

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        pinned = getattr(self._local, "conn", None)
        if pinned is not None:
            yield pinned
            return

        conn = self._pool.checkout()
        discard = False
        try:
            yield conn
        except StrataError as error:
            discard = self._adapter.is_disconnect(error)
            raise
        finally:
            self._pool.checkin(conn, discard=discard)

    def _control(self, sql: str) -> None:
        """Issue a transaction-control statement on the pinned connection."""
        if self.pretending:
            return
        conn = self._local.conn
        try:
            self._adapter.execute(conn, sql).close()
        except Exception as exc:
            raise self._adapter.translate_error(exc, sql) from exc

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def transaction(self, callback: Callable[[Database], Any] | None = None) -> Any:
        """Run *callback* inside a transaction, or return a context manager.

        With a callback the result is returned after COMMIT; any
        exception rolls back and propagates.  Nested calls map onto
        savepoints.
        """
        if callback is None:
            return self._transaction()
        with self._transaction():
            return callback(self)

    @contextmanager
    def _transaction(self) -> Iterator[Database]:
        depth = self.transaction_level
        savepoint = f"strata_sp_{depth}"

        if depth == 0:
            if getattr(self._local, "conn", None) is None:
                self._local.conn = self._pool.checkout()
            try:
                self._control(self.dialect.begin())
            except StrataError as error:
                self._release(discard=self._adapter.is_disconnect(error))
                raise
            logger.debug("transaction.begin", connection=self._name)
        else:
            self._control(self.dialect.savepoint(savepoint))
            logger.debug("transaction.savepoint", connection=self._name, savepoint=savepoint)

        self._local.depth = depth + 1
        try:
            yield self
        except BaseException as exc:
            self._local.depth = depth
            if depth == 0:
                self._rollback_outermost(exc)
            else:
                self._control(self.dialect.rollback_to_savepoint(savepoint))
                self._control(self.dialect.release_savepoint(savepoint))
                logger.debug("transaction.rollback", connection=self._name, savepoint=savepoint)
            raise
        else:
            self._local.depth = depth
            if depth == 0:
                self._commit_outermost()
            else:
                self._control(self.dialect.release_savepoint(savepoint))

    def _commit_outermost(self) -> None:
        try:
            self._control("COMMIT")
        except StrataError as error:
            discard = self._adapter.is_disconnect(error)
            try:
                if not discard:
                    self._control("ROLLBACK")
            finally:
                self._release(discard=discard)
            raise TransactionError(f"Commit failed: {error.message}", cause=error) from error
        self._release()
        logger.debug("transaction.commit", connection=self._name)

    def _rollback_outermost(self, exc: BaseException) -> None:
        discard = isinstance(exc, StrataError) and self._adapter.is_disconnect(exc)
        try:
            if not discard:
                self._control("ROLLBACK")
        except StrataError as error:
            # The original exception is re-raised by the caller.
            logger.warning("transaction.rollback_failed", connection=self._name, error=error.message)
            discard = True
        finally:
            self._release(discard=discard)
        logger.info("transaction.rollback", connection=self._name, error=type(exc).__name__)

    def _release(self, discard: bool = False) -> None:
        if getattr(self._local, "session", False):
            # The enclosing session() returns the connection.
            self._local.discard = self._local.discard or discard
            return
        conn = self._local.conn
        self._local.conn = None
        self._pool.checkin(conn, discard=discard)

    @contextmanager
    def session(self) -> Iterator[Database]:
        """Pin one pooled connection to the calling thread for the block.

        Per-connection state (SQLite pragmas, temp tables) then applies to
        every statement issued inside, including nested transactions.
        """
        if getattr(self._local, "conn", None) is not None:
            yield self
            return

        self._local.conn = self._pool.checkout()
        self._local.session = True
        self._local.discard = False
        try:
            yield self
        except StrataError as error:
            self._local.discard = self._local.discard or self._adapter.is_disconnect(error)
            raise
        finally:
            conn = self._local.conn
            self._local.session = False
            self._local.conn = None
            self._pool.checkin(conn, discard=self._local.discard)

    # ------------------------------------------------------------------
    # Pretend mode
    # ------------------------------------------------------------------

    @contextmanager
    def pretend(self) -> Iterator[list[QueryEvent]]:
        """Collect statements instead of executing them.

        SELECTs return no rows while pretending.
        """
        collected: list[QueryEvent] = []
        previous = getattr(self._local, "pretend", None)
        self._local.pretend = collected
        try:
            yield collected
        finally:
            self._local.pretend = previous

    # ------------------------------------------------------------------
    # Instrumentation
    # ------------------------------------------------------------------

    def listen(self, callback: QueryListener) -> QueryListener:
        """Register a listener invoked after every executed statement."""
        self._listeners.append(callback)
        return callback

    def enable_query_log(self) -> None:
        self._logging_queries = True

    def disable_query_log(self) -> None:
        self._logging_queries = False

    @property
    def query_log(self) -> list[QueryEvent]:
        return list(self._query_log)

    def flush_query_log(self) -> None:
        self._query_log.clear()

    def _record(self, event: QueryEvent) -> None:
        logger.debug("query.executed", sql=event.sql, elapsed_ms=round(event.elapsed_ms, 3))
        if self._logging_queries:
            self._query_log.append(event)
        for listener in self._listeners:
            listener(event)

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    def table(self, name: str) -> QueryBuilder:
        """Query builder targeting *name* (prefix applied at compile time)."""
        from strata.query.builder import QueryBuilder

        return QueryBuilder(self).from_(name)

    def query(self, model_cls: type[Model]) -> ModelQuery:
        return model_cls.query(self)

    def repository(self, model_cls: type[Model]) -> Repository:
        from strata.orm.query import Repository

        return Repository(self, model_cls)

    def schema(self) -> SchemaBuilder:
        from strata.schema.builder import SchemaBuilder

        return SchemaBuilder(self)

    def migrator(
        self,
        paths: str | Sequence[str] | None = None,
        *,
        migrations: dict[str, Any] | None = None,
        table: str = "migrations",
    ) -> Migrator:
        from strata.migrations.runner import Migrator

        return Migrator(self, paths=paths, migrations=migrations, table=table)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close every idle pooled connection."""
        self._pool.close_all()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Database(name={self._name!r}, adapter={self._adapter!r})"


__all__ = ["Database"]
