"""SQL dialect abstraction for the query and schema compilers.

Provides a ``Dialect`` protocol and concrete implementations for every
supported backend.  Grammars ask the dialect for placeholders, identifier
quoting, savepoint syntax and introspection queries, and never reference
a database driver directly.

Manifesto:
    The same query descriptor must compile for SQLite in tests and
    PostgreSQL in production.  Backend syntax lives here, in one place.

    - **One interface:** Dialect protocol for all backend-specific SQL
    - **Zero coupling:** grammars never import database drivers
    - **Introspection included:** column/index listing for schema diffs

Architecture::

    ┌──────────────────────────────────────────────────────────────┐
    │  Grammar:  f"SELECT * FROM {d.quote_identifier('books')}      │
    │            WHERE {d.quote_identifier('id')} = {d.placeholder(0)}"
    └──────────────────────────────────────────────────────────────┘
                              │
                   ┌──────────┴──────────┐
             ┌─────▼─────┐         ┌─────▼──────┐
             │  SQLite   │         │ PostgreSQL │
             │  ?  "x"   │         │  %s  "x"   │
             └───────────┘         └────────────┘

Examples:
    >>> from strata.core.dialect import get_dialect
    >>> d = get_dialect("sqlite")
    >>> d.placeholders(3)
    '?, ?, ?'
    >>> d.quote_identifier("books")
    '"books"'

Tags:
    dialect, sql, abstraction, portability, strata
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

# Introspection helpers receive a select function so dialects stay free
# of connection handling: (sql, bindings) -> list of row dicts.
SelectFn = Callable[[str, tuple], list[dict[str, Any]]]


@dataclass(frozen=True)
class ColumnInfo:
    """One column as reported by schema introspection."""

    name: str
    type: str
    nullable: bool
    default: Any = None
    primary: bool = False


@dataclass(frozen=True)
class IndexInfo:
    """One index as reported by schema introspection."""

    name: str
    columns: tuple[str, ...] = field(default_factory=tuple)
    unique: bool = False
    primary: bool = False


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract.

    Every method returns a SQL fragment valid for the target database,
    or performs an introspection query through the supplied select
    function.
    """

    @property
    def name(self) -> str:
        """Human-readable dialect name (e.g. ``'sqlite'``)."""
        ...

    @property
    def supports_returning(self) -> bool:
        """Whether ``INSERT ... RETURNING`` is used to fetch new keys."""
        ...

    # -- Placeholders ------------------------------------------------------

    def placeholder(self, index: int) -> str:
        """Single positional placeholder (0-based index)."""
        ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholder list."""
        ...

    # -- Identifiers -------------------------------------------------------

    def quote_identifier(self, name: str) -> str:
        """Quote a single identifier segment (no dots)."""
        ...

    # -- Expressions -------------------------------------------------------

    def now(self) -> str:
        """SQL expression for the current timestamp."""
        ...

    def compile_limit_offset(self, limit: int | None, offset: int | None) -> str:
        """``LIMIT``/``OFFSET`` suffix (empty string when neither is set)."""
        ...

    # -- Transactions ------------------------------------------------------

    def begin(self) -> str: ...

    def savepoint(self, name: str) -> str: ...

    def release_savepoint(self, name: str) -> str: ...

    def rollback_to_savepoint(self, name: str) -> str: ...

    # -- Introspection -----------------------------------------------------

    def table_exists_query(self) -> str:
        """Query taking one placeholder (table name); returns rows if it exists."""
        ...

    def list_tables_query(self) -> str:
        """Query returning one ``name`` column per user table."""
        ...

    def get_columns(self, select: SelectFn, table: str) -> list[ColumnInfo]: ...

    def get_indexes(self, select: SelectFn, table: str) -> list[IndexInfo]: ...


# =========================================================================
# Concrete Dialect Implementations
# =========================================================================


class SQLiteDialect:
    """SQLite dialect — ``?`` placeholders, double-quoted identifiers."""

    @property
    def name(self) -> str:
        return "sqlite"

    @property
    def supports_returning(self) -> bool:
        # RETURNING needs SQLite 3.35; lastrowid works everywhere.
        return False

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def quote_identifier(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    def now(self) -> str:
        return "CURRENT_TIMESTAMP"

    def compile_limit_offset(self, limit: int | None, offset: int | None) -> str:
        if limit is None and offset is None:
            return ""
        # SQLite only accepts OFFSET after a LIMIT; -1 means unbounded.
        sql = f"LIMIT {limit if limit is not None else -1}"
        if offset:
            sql += f" OFFSET {offset}"
        return sql

    def begin(self) -> str:
        return "BEGIN"

    def savepoint(self, name: str) -> str:
        return f"SAVEPOINT {name}"

    def release_savepoint(self, name: str) -> str:
        return f"RELEASE SAVEPOINT {name}"

    def rollback_to_savepoint(self, name: str) -> str:
        return f"ROLLBACK TO SAVEPOINT {name}"

    def table_exists_query(self) -> str:
        return "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?"

    def list_tables_query(self) -> str:
        return (
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )

    def get_columns(self, select: SelectFn, table: str) -> list[ColumnInfo]:
        rows = select(
            'SELECT name, type, "notnull" AS not_null, dflt_value, pk '
            "FROM pragma_table_info(?) ORDER BY cid",
            (table,),
        )
        return [
            ColumnInfo(
                name=row["name"],
                type=(row["type"] or "").lower(),
                nullable=not row["not_null"] and not row["pk"],
                default=row["dflt_value"],
                primary=bool(row["pk"]),
            )
            for row in rows
        ]

    def get_indexes(self, select: SelectFn, table: str) -> list[IndexInfo]:
        indexes = []
        for row in select(
            'SELECT name, "unique" AS is_unique, origin FROM pragma_index_list(?) ORDER BY name',
            (table,),
        ):
            columns = select(
                "SELECT name FROM pragma_index_info(?) ORDER BY seqno",
                (row["name"],),
            )
            indexes.append(
                IndexInfo(
                    name=row["name"],
                    columns=tuple(c["name"] for c in columns),
                    unique=bool(row["is_unique"]),
                    primary=row["origin"] == "pk",
                )
            )
        return indexes


class PostgreSQLDialect:
    """PostgreSQL dialect — ``%s`` placeholders (psycopg2), ``RETURNING`` ids."""

    @property
    def name(self) -> str:
        return "postgresql"

    @property
    def supports_returning(self) -> bool:
        return True

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def quote_identifier(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    def now(self) -> str:
        return "NOW()"

    def compile_limit_offset(self, limit: int | None, offset: int | None) -> str:
        parts = []
        if limit is not None:
            parts.append(f"LIMIT {limit}")
        if offset:
            parts.append(f"OFFSET {offset}")
        return " ".join(parts)

    def begin(self) -> str:
        return "BEGIN"

    def savepoint(self, name: str) -> str:
        return f"SAVEPOINT {name}"

    def release_savepoint(self, name: str) -> str:
        return f"RELEASE SAVEPOINT {name}"

    def rollback_to_savepoint(self, name: str) -> str:
        return f"ROLLBACK TO SAVEPOINT {name}"

    def table_exists_query(self) -> str:
        return (
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_name = %s"
        )

    def list_tables_query(self) -> str:
        return (
            "SELECT table_name AS name FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_type = 'BASE TABLE' "
            "ORDER BY table_name"
        )

    def get_columns(self, select: SelectFn, table: str) -> list[ColumnInfo]:
        primary = {
            row["column_name"]
            for row in select(
                "SELECT kcu.column_name FROM information_schema.table_constraints tc "
                "JOIN information_schema.key_column_usage kcu "
                "ON tc.constraint_name = kcu.constraint_name "
                "AND tc.table_schema = kcu.table_schema "
                "WHERE tc.table_schema = current_schema() AND tc.table_name = %s "
                "AND tc.constraint_type = 'PRIMARY KEY'",
                (table,),
            )
        }
        rows = select(
            "SELECT column_name, data_type, is_nullable, column_default "
            "FROM information_schema.columns "
            "WHERE table_schema = current_schema() AND table_name = %s "
            "ORDER BY ordinal_position",
            (table,),
        )
        return [
            ColumnInfo(
                name=row["column_name"],
                type=row["data_type"].lower(),
                nullable=row["is_nullable"] == "YES",
                default=row["column_default"],
                primary=row["column_name"] in primary,
            )
            for row in rows
        ]

    def get_indexes(self, select: SelectFn, table: str) -> list[IndexInfo]:
        rows = select(
            "SELECT i.relname AS name, ix.indisunique AS is_unique, "
            "ix.indisprimary AS is_primary, a.attname AS column_name "
            "FROM pg_class t "
            "JOIN pg_index ix ON t.oid = ix.indrelid "
            "JOIN pg_class i ON i.oid = ix.indexrelid "
            "JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(ix.indkey) "
            "JOIN pg_namespace n ON n.oid = t.relnamespace "
            "WHERE t.relname = %s AND n.nspname = current_schema() "
            "ORDER BY i.relname, array_position(ix.indkey, a.attnum)",
            (table,),
        )
        grouped: dict[str, dict[str, Any]] = {}
        for row in rows:
            entry = grouped.setdefault(
                row["name"],
                {"columns": [], "unique": row["is_unique"], "primary": row["is_primary"]},
            )
            entry["columns"].append(row["column_name"])
        return [
            IndexInfo(name=name, columns=tuple(v["columns"]), unique=bool(v["unique"]), primary=bool(v["primary"]))
            for name, v in grouped.items()
        ]


# =========================================================================
# Registry / Factory
# =========================================================================

# Pre-instantiated singletons (dialects are stateless)
_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),  # alias
}


def get_dialect(db_type: str) -> Dialect:
    """Get a dialect by database type name.

    Raises:
        ValueError: If ``db_type`` is not recognised.
    """
    key = db_type.lower() if isinstance(db_type, str) else db_type.value
    if key not in _DIALECTS:
        raise ValueError(
            f"Unknown dialect '{db_type}'. "
            f"Supported: {sorted(set(_DIALECTS) - {'postgres'})}"
        )
    return _DIALECTS[key]


def register_dialect(name: str, dialect: Dialect) -> None:
    """Register a custom dialect implementation (lower-cased key)."""
    _DIALECTS[name.lower()] = dialect


__all__ = [
    "ColumnInfo",
    "Dialect",
    "IndexInfo",
    "PostgreSQLDialect",
    "SQLiteDialect",
    "SelectFn",
    "get_dialect",
    "register_dialect",
]
