"""Compile query descriptors into ``(sql, bindings)`` pairs.

Manifesto:
    Values never enter SQL text.  Every literal becomes a dialect
    placeholder and is appended to the bindings list in the same order
    the placeholder appears, so the grammar walks clauses strictly in
    SQL order (select list, joins, where, group, having, order).

    The table prefix applies to table names, never to aliases: a
    qualifier declared with ``as`` in the FROM or JOIN clause of the
    query being compiled (or of any query enclosing it) stays as written.

Architecture:
    ::

        QueryDescriptor ──► Grammar(dialect, prefix)
                               ├── compile_select     SELECT ... FROM ...
                               ├── compile_aggregate  SELECT COUNT(*) AS aggregate ...
                               ├── compile_exists     SELECT EXISTS(...) AS "exists"
                               ├── compile_insert     INSERT INTO ... VALUES (?, ?), (?, ?)
                               ├── compile_update     UPDATE ... SET ... WHERE ...
                               ├── compile_delete     DELETE FROM ... WHERE ...
                               └── compile_truncate   DELETE / TRUNCATE

Tags:
    sql, grammar, compiler, parameter-binding, strata
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from strata.core.dialect import Dialect
from strata.core.errors import QueryBuildError

from .expressions import (
    BasicWhere,
    BetweenWhere,
    ColumnWhere,
    ExistsWhere,
    Expression,
    InWhere,
    NestedWhere,
    NullWhere,
    QueryDescriptor,
    RawWhere,
    SubSelect,
    result_key,
)

Compiled = tuple[str, list[Any]]


class Grammar:
    """Query compiler for one dialect and table prefix."""

    def __init__(self, dialect: Dialect, prefix: str = ""):
        self.dialect = dialect
        self.prefix = prefix
        self._local = threading.local()

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    def quote(self, name: str) -> str:
        return self.dialect.quote_identifier(name)

    def wrap_table(self, table: str) -> str:
        """Quote a table name, applying the prefix (``books as b`` supported)."""
        name, alias = _split_alias(table)
        wrapped = self.quote(self.prefix + name)
        if alias:
            return f"{wrapped} AS {self.quote(alias)}"
        return wrapped

    def wrap(self, column: Any) -> str:
        """Quote a column reference; the table segment of ``t.col`` is prefixed
        unless it names an alias in scope."""
        if isinstance(column, Expression):
            return column.sql
        name, alias = _split_alias(column)
        if "." in name:
            table, col = name.rsplit(".", 1)
            qualifier = table if self._is_alias(table) else self.prefix + table
            wrapped = f"{self.quote(qualifier)}.{'*' if col == '*' else self.quote(col)}"
        elif name == "*":
            wrapped = "*"
        else:
            wrapped = self.quote(name)
        if alias:
            return f"{wrapped} AS {self.quote(alias)}"
        return wrapped

    def _alias_scopes(self) -> list[set[str]]:
        scopes = getattr(self._local, "aliases", None)
        if scopes is None:
            scopes = self._local.aliases = []
        return scopes

    def _is_alias(self, name: str) -> bool:
        return any(name in scope for scope in self._alias_scopes())

    @contextmanager
    def _scope(self, q: QueryDescriptor) -> Iterator[None]:
        tables = [q.table or "", *(join.table for join in q.joins)]
        declared = {alias for alias in (_split_alias(t)[1] for t in tables) if alias}
        scopes = self._alias_scopes()
        scopes.append(declared)
        try:
            yield
        finally:
            scopes.pop()

    def parameter(self, value: Any, bindings: list[Any]) -> str:
        if isinstance(value, Expression):
            bindings.extend(value.bindings)
            return value.sql
        if isinstance(value, QueryDescriptor):
            sql, sub = self.compile_select(value)
            bindings.extend(sub)
            return f"({sql})"
        bindings.append(value)
        return self.dialect.placeholder(len(bindings) - 1)

    # ------------------------------------------------------------------
    # SELECT
    # ------------------------------------------------------------------

    def compile_select(self, q: QueryDescriptor) -> Compiled:
        if q.table is None:
            raise QueryBuildError("No table specified for query")
        with self._scope(q):
            bindings: list[Any] = []
            parts = [self._compile_columns(q, bindings)]
            parts.append(f"FROM {self.wrap_table(q.table)}")
            parts.extend(self._compile_tail(q, bindings, with_order=True))
        return " ".join(p for p in parts if p), bindings

    def _compile_columns(self, q: QueryDescriptor, bindings: list[Any]) -> str:
        columns = []
        for column in q.columns or ["*"]:
            if isinstance(column, SubSelect):
                sql, sub = self.compile_select(column.query)
                bindings.extend(sub)
                columns.append(f"({sql}) AS {self.quote(column.alias)}")
            else:
                if isinstance(column, Expression):
                    bindings.extend(column.bindings)
                columns.append(self.wrap(column))
        distinct = "DISTINCT " if q.distinct else ""
        return f"SELECT {distinct}{', '.join(columns)}"

    def _compile_tail(self, q: QueryDescriptor, bindings: list[Any], *, with_order: bool) -> list[str]:
        parts = [self._compile_joins(q, bindings), self.compile_wheres(q.wheres, bindings)]
        if q.groups:
            parts.append("GROUP BY " + ", ".join(self.wrap(g) for g in q.groups))
        if q.havings:
            parts.append("HAVING " + self._compile_predicates(q.havings, bindings))
        if with_order:
            if q.orders:
                parts.append(
                    "ORDER BY "
                    + ", ".join(
                        o.column.sql if isinstance(o.column, Expression) else f"{self.wrap(o.column)} {o.direction.upper()}"
                        for o in q.orders
                    )
                )
            parts.append(self.dialect.compile_limit_offset(q.limit, q.offset))
        return parts

    def _compile_joins(self, q: QueryDescriptor, bindings: list[Any]) -> str:
        joins = []
        for join in q.joins:
            if join.type == "cross":
                joins.append(f"CROSS JOIN {self.wrap_table(join.table)}")
                continue
            conditions = []
            for i, cond in enumerate(join.conditions):
                prefix = "" if i == 0 else f"{cond.boolean.upper()} "
                conditions.append(f"{prefix}{self.wrap(cond.first)} {cond.operator} {self.wrap(cond.second)}")
            joins.append(f"{join.type.upper()} JOIN {self.wrap_table(join.table)} ON {' '.join(conditions)}")
        return " ".join(joins)

    # ------------------------------------------------------------------
    # WHERE
    # ------------------------------------------------------------------

    def compile_wheres(self, wheres: list[Any], bindings: list[Any]) -> str:
        if not wheres:
            return ""
        return "WHERE " + self._compile_predicates(wheres, bindings)

    def _compile_predicates(self, wheres: Any, bindings: list[Any]) -> str:
        sql = []
        for i, where in enumerate(wheres):
            fragment = self._compile_where(where, bindings)
            if i == 0:
                sql.append(fragment)
            else:
                sql.append(f"{where.boolean.upper()} {fragment}")
        return " ".join(sql)

    def _compile_where(self, where: Any, bindings: list[Any]) -> str:
        if isinstance(where, BasicWhere):
            return f"{self.wrap(where.column)} {where.operator.upper()} {self.parameter(where.value, bindings)}"

        if isinstance(where, InWhere):
            if isinstance(where.values, QueryDescriptor):
                sub = self.parameter(where.values, bindings)
                return f"{self.wrap(where.column)} {'NOT IN' if where.negated else 'IN'} {sub}"
            if not where.values:
                return "1 = 1" if where.negated else "0 = 1"
            placeholders = ", ".join(self.parameter(v, bindings) for v in where.values)
            return f"{self.wrap(where.column)} {'NOT IN' if where.negated else 'IN'} ({placeholders})"

        if isinstance(where, NullWhere):
            return f"{self.wrap(where.column)} IS {'NOT NULL' if where.negated else 'NULL'}"

        if isinstance(where, BetweenWhere):
            low = self.parameter(where.low, bindings)
            high = self.parameter(where.high, bindings)
            return f"{self.wrap(where.column)} {'NOT BETWEEN' if where.negated else 'BETWEEN'} {low} AND {high}"

        if isinstance(where, ColumnWhere):
            return f"{self.wrap(where.first)} {where.operator.upper()} {self.wrap(where.second)}"

        if isinstance(where, RawWhere):
            bindings.extend(where.bindings)
            return where.sql

        if isinstance(where, NestedWhere):
            inner = self._compile_predicates(where.wheres, bindings)
            return f"{'NOT ' if where.negated else ''}({inner})"

        if isinstance(where, ExistsWhere):
            sql, sub = self.compile_select(where.query)
            bindings.extend(sub)
            return f"{'NOT EXISTS' if where.negated else 'EXISTS'} ({sql})"

        raise QueryBuildError(f"Unknown where clause: {where!r}")

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def compile_aggregate(self, q: QueryDescriptor, function: str, column: str = "*") -> Compiled:
        """``SELECT FUNC(column) AS aggregate``; grouped or limited queries are wrapped."""
        function = function.upper()
        if q.table is None:
            raise QueryBuildError("No table specified for query")

        if q.groups or q.distinct or q.limit is not None or q.offset is not None:
            inner = q.copy()
            if inner.limit is None and inner.offset is None:
                inner.orders = []
            if function == "COUNT":
                target = "*"
            else:
                if not q.groups:
                    inner.columns = [column]
                target = self.quote(result_key(column))
            sql, bindings = self.compile_select(inner)
            return (
                f"SELECT {function}({target}) AS {self.quote('aggregate')} "
                f"FROM ({sql}) AS {self.quote('strata_aggregate')}",
                bindings,
            )

        bindings: list[Any] = []
        with self._scope(q):
            parts = [
                f"SELECT {function}({self.wrap(column)}) AS {self.quote('aggregate')}",
                f"FROM {self.wrap_table(q.table)}",
            ]
            parts.extend(self._compile_tail(q, bindings, with_order=False))
        return " ".join(p for p in parts if p), bindings

    def compile_exists(self, q: QueryDescriptor) -> Compiled:
        inner = q.copy()
        inner.orders = [] if inner.limit is None else inner.orders
        sql, bindings = self.compile_select(inner)
        return f"SELECT EXISTS({sql}) AS {self.quote('exists')}", bindings

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def compile_insert(self, table: str, rows: list[dict[str, Any]]) -> Compiled:
        """Multi-row INSERT; every row must have the first row's columns."""
        if not rows or not rows[0]:
            return f"INSERT INTO {self.wrap_table(table)} DEFAULT VALUES", []

        columns = list(rows[0].keys())
        bindings: list[Any] = []
        values = []
        for row in rows:
            if set(row.keys()) != set(columns):
                raise QueryBuildError("Every inserted row must have the same columns")
            values.append("(" + ", ".join(self.parameter(row[c], bindings) for c in columns) + ")")

        column_list = ", ".join(self.wrap(c) for c in columns)
        return f"INSERT INTO {self.wrap_table(table)} ({column_list}) VALUES {', '.join(values)}", bindings

    def compile_insert_get_id(self, table: str, values: dict[str, Any], key: str = "id") -> Compiled:
        sql, bindings = self.compile_insert(table, [values])
        if self.dialect.supports_returning:
            sql += f" RETURNING {self.quote(key)}"
        return sql, bindings

    def compile_update(self, q: QueryDescriptor, values: dict[str, Any]) -> Compiled:
        if q.joins or q.limit is not None or q.offset is not None:
            raise QueryBuildError("UPDATE does not support joins, limit or offset")
        if not values:
            raise QueryBuildError("UPDATE requires at least one column")
        bindings: list[Any] = []
        assignments = ", ".join(
            f"{self.quote(result_key(column))} = {self.parameter(value, bindings)}"
            for column, value in values.items()
        )
        sql = f"UPDATE {self.wrap_table(q.table)} SET {assignments}"
        with self._scope(q):
            where = self.compile_wheres(q.wheres, bindings)
        return (f"{sql} {where}" if where else sql), bindings

    def compile_delete(self, q: QueryDescriptor) -> Compiled:
        if q.joins or q.limit is not None or q.offset is not None:
            raise QueryBuildError("DELETE does not support joins, limit or offset")
        bindings: list[Any] = []
        sql = f"DELETE FROM {self.wrap_table(q.table)}"
        with self._scope(q):
            where = self.compile_wheres(q.wheres, bindings)
        return (f"{sql} {where}" if where else sql), bindings

    def compile_truncate(self, table: str, *, has_sequence: bool = True) -> list[Compiled]:
        """Statements emptying *table* and resetting its key sequence."""
        if self.dialect.name == "sqlite":
            statements: list[Compiled] = [(f"DELETE FROM {self.wrap_table(table)}", [])]
            if has_sequence:
                statements.append(("DELETE FROM sqlite_sequence WHERE name = ?", [self.prefix + table]))
            return statements
        return [(f"TRUNCATE TABLE {self.wrap_table(table)} RESTART IDENTITY CASCADE", [])]


def _split_alias(value: str) -> tuple[str, str | None]:
    lowered = value.lower()
    if " as " in lowered:
        index = lowered.rindex(" as ")
        return value[:index].strip(), value[index + 4:].strip()
    return value.strip(), None


__all__ = ["Grammar"]
