"""
Schema builder: create, alter, drop and inspect tables.

Manifesto:
    Each blueprint's statements run inside one transaction (SQLite and
    PostgreSQL both support transactional DDL), so a failing statement
    leaves the table exactly as it was.  The builder never attempts a
    compensating rollback by issuing more DDL: the first error aborts
    with :class:`SchemaError`, chaining the driver error.

Examples:
    >>> schema = db.schema()
    >>> schema.create("authors", lambda t: (t.id(), t.string("name"), t.timestamps()))
    >>> schema.has_column("authors", "name")
    True
    >>> schema.table("authors", lambda t: t.string("email").nullable().unique())
    >>> schema.drop_if_exists("authors")

Tags:
    schema, ddl, migrations, introspection, strata
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from strata.core.dialect import ColumnInfo, IndexInfo
from strata.core.errors import DatabaseError, SchemaError
from strata.core.logging import get_logger

from .blueprint import Blueprint
from .grammar import SchemaGrammar, get_schema_grammar

if TYPE_CHECKING:
    from strata.core.database import Database

logger = get_logger(__name__)

BlueprintFn = Callable[[Blueprint], object]


class SchemaBuilder:
    """DDL entry point bound to one :class:`Database`."""

    def __init__(self, db: Database):
        self.db = db
        self.grammar: SchemaGrammar = get_schema_grammar(db.dialect, db.table_prefix)

    # ------------------------------------------------------------------
    # Blueprint operations
    # ------------------------------------------------------------------

    def create(self, table: str, callback: BlueprintFn) -> None:
        """CREATE TABLE; errors if the table already exists."""
        blueprint = self._blueprint(table, callback, creating=True)
        self.build(blueprint)

    def create_if_not_exists(self, table: str, callback: BlueprintFn) -> None:
        blueprint = self._blueprint(table, callback, creating=True)
        blueprint.if_not_exists = True
        self.build(blueprint)

    def table(self, table: str, callback: BlueprintFn) -> None:
        """ALTER TABLE with the columns and commands the callback declares."""
        blueprint = self._blueprint(table, callback, creating=False)
        self.build(blueprint)

    def _blueprint(self, table: str, callback: BlueprintFn, *, creating: bool) -> Blueprint:
        blueprint = Blueprint(table, creating=creating, prefix=self.db.table_prefix)
        callback(blueprint)
        return blueprint

    def build(self, blueprint: Blueprint) -> None:
        """Compile *blueprint* and run its statements in one transaction."""
        statements = self.grammar.compile(blueprint)
        self._run(statements, table=blueprint.table)

    # ------------------------------------------------------------------
    # Whole-table operations
    # ------------------------------------------------------------------

    def drop(self, table: str) -> None:
        """DROP TABLE; raises :class:`SchemaError` if it does not exist."""
        self._run([self.grammar.compile_drop(table)], table=table)

    def drop_if_exists(self, table: str) -> None:
        self._run([self.grammar.compile_drop_if_exists(table)], table=table)

    def rename(self, from_: str, to: str) -> None:
        self._run([self.grammar.compile_rename(from_, to)], table=from_)

    def drop_all_tables(self) -> None:
        """Drop every table in the database (foreign keys disabled)."""
        with self.without_foreign_key_constraints():
            tables = self.get_tables()
            if tables:
                self._run(self.grammar.compile_drop_all_tables(tables))

    def disable_foreign_key_constraints(self) -> None:
        self.db.statement(self.grammar.compile_disable_foreign_keys())

    def enable_foreign_key_constraints(self) -> None:
        self.db.statement(self.grammar.compile_enable_foreign_keys())

    @contextmanager
    def without_foreign_key_constraints(self) -> Iterator[SchemaBuilder]:
        """Run the block on one pinned connection with foreign keys off."""
        with self.db.session():
            self.disable_foreign_key_constraints()
            try:
                yield self
            finally:
                self.enable_foreign_key_constraints()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def has_table(self, table: str) -> bool:
        rows = self.db.select(self.db.dialect.table_exists_query(), (self.db.prefix_table(table),))
        return bool(rows)

    def has_column(self, table: str, column: str) -> bool:
        return column.lower() in {c.name.lower() for c in self.get_columns(table)}

    def has_columns(self, table: str, columns: list[str]) -> bool:
        existing = {c.name.lower() for c in self.get_columns(table)}
        return all(column.lower() in existing for column in columns)

    def get_tables(self) -> list[str]:
        """Actual table names (prefix included)."""
        return [row["name"] for row in self.db.select(self.db.dialect.list_tables_query())]

    def get_columns(self, table: str) -> list[ColumnInfo]:
        return self.db.dialect.get_columns(self.db.select, self.db.prefix_table(table))

    def get_column_listing(self, table: str) -> list[str]:
        return [c.name for c in self.get_columns(table)]

    def get_indexes(self, table: str) -> list[IndexInfo]:
        return self.db.dialect.get_indexes(self.db.select, self.db.prefix_table(table))

    def has_index(self, table: str, name: str) -> bool:
        return any(index.name == name for index in self.get_indexes(table))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run(self, statements: list[str], table: str | None = None) -> None:
        try:
            with self.db.transaction():
                for sql in statements:
                    logger.debug("schema.statement", sql=sql, table=table)
                    self.db.statement(sql)
        except DatabaseError as exc:
            raise SchemaError(exc.message, context=exc.context, cause=exc) from exc


__all__ = ["SchemaBuilder"]
