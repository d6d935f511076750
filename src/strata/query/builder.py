"""
Fluent query builder.

Manifesto:
    Build a query by chaining constraint calls, then run it with one
    terminal call.  Construction errors (bad identifier, unknown
    operator, negative limit) raise :class:`QueryBuildError` immediately;
    everything else surfaces from the executor as a translated
    execution error.

    - **Parameterised always:** values are bound, never interpolated
    - **Order-preserving:** predicates compile in the order they were added
    - **Cheap clones:** ``clone()`` copies the descriptor, not the database

Architecture:
    ::

        db.table("books")                     QueryBuilder(db).from_("books")
          .where("year", ">", 1990)           BasicWhere
          .where(lambda q: q.where(...)       NestedWhere
                          .or_where(...))
          .order_by("title")                  Order
          .limit(10)
          .get()  ─► Grammar.compile_select ─► db.select(sql, bindings)

Examples:
    >>> db.table("books").where("author_id", 3).order_by_desc("year").first()
    {'id': 7, 'title': 'Dune Messiah', ...}
    >>> db.table("books").where_in("id", []).to_sql()
    ('SELECT * FROM "books" WHERE 0 = 1', [])

Tags:
    query-builder, fluent-api, sql, strata
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from strata.core.cancellation import CancellationToken
from strata.core.errors import NotFoundError, QueryBuildError

from .expressions import (
    JOIN_TYPES,
    OPERATORS,
    BasicWhere,
    BetweenWhere,
    ColumnWhere,
    ExistsWhere,
    Expression,
    InWhere,
    Join,
    JoinClause,
    NestedWhere,
    NullWhere,
    Order,
    QueryDescriptor,
    RawWhere,
    SubSelect,
    result_key,
    validate_count,
    validate_direction,
    validate_identifier,
    validate_operator,
    validate_table,
)
from .grammar import Grammar
from .pagination import Page, validate_page

if TYPE_CHECKING:
    from strata.core.database import Database


class QueryBuilder:
    """Chainable SELECT/INSERT/UPDATE/DELETE builder bound to a :class:`Database`."""

    def __init__(self, db: Database, descriptor: QueryDescriptor | None = None):
        self.db = db
        self.descriptor = descriptor or QueryDescriptor()
        self.token: CancellationToken | None = None

    @property
    def grammar(self) -> Grammar:
        return self.db.grammar

    @property
    def table(self) -> str | None:
        return self.descriptor.table

    def qualify(self, column: str) -> str:
        """*column* prefixed with this query's table alias, or its table."""
        if "." in column or self.descriptor.table is None:
            return column
        return f"{result_key(self.descriptor.table)}.{column}"

    def new_query(self) -> QueryBuilder:
        """Empty builder on the same database."""
        return QueryBuilder(self.db)

    def clone(self) -> QueryBuilder:
        copy = QueryBuilder(self.db, self.descriptor.copy())
        copy.token = self.token
        return copy

    def with_token(self, token: CancellationToken | None) -> QueryBuilder:
        """Check *token* before each statement this builder sends."""
        self.token = token
        return self

    def when(self, condition: Any, callback: Callable[[QueryBuilder], Any]) -> QueryBuilder:
        if condition:
            callback(self)
        return self

    # ------------------------------------------------------------------
    # SELECT list / FROM
    # ------------------------------------------------------------------

    def select(self, *columns: Any) -> QueryBuilder:
        columns = _flatten(columns)
        self.descriptor.columns = [validate_identifier(c) for c in columns] or ["*"]
        return self

    def add_select(self, *columns: Any) -> QueryBuilder:
        if not self.descriptor.columns:
            self.descriptor.columns = ["*"] if not columns else []
        self.descriptor.columns.extend(validate_identifier(c) for c in _flatten(columns))
        return self

    def select_raw(self, sql: str, bindings: Iterable[Any] = ()) -> QueryBuilder:
        self.descriptor.columns.append(Expression(sql, tuple(bindings)))
        return self

    def select_sub(self, query: QueryBuilder, alias: str) -> QueryBuilder:
        """Add ``(subquery) AS alias`` to the select list."""
        if not self.descriptor.columns:
            self.descriptor.columns = [f"{self.descriptor.table}.*"] if self.descriptor.table else ["*"]
        validate_identifier(alias)
        self.descriptor.columns.append(SubSelect(query.descriptor, alias))
        return self

    def distinct(self) -> QueryBuilder:
        self.descriptor.distinct = True
        return self

    def from_(self, table: str) -> QueryBuilder:
        self.descriptor.table = validate_table(table)
        return self

    # ------------------------------------------------------------------
    # WHERE
    # ------------------------------------------------------------------

    def where(
        self,
        column: Any,
        operator: Any = None,
        value: Any = None,
        boolean: str = "and",
    ) -> QueryBuilder:
        """Add a predicate.

        ``where("year", 1990)`` implies ``=``; ``where("year", ">", 1990)``
        uses the operator; ``where(callable)`` opens a parenthesised group;
        ``where({"a": 1, "b": 2})`` adds equality predicates.
        """
        if callable(column) and not isinstance(column, str):
            return self._where_nested(column, boolean)

        if isinstance(column, Mapping):
            return self._where_nested(
                lambda q: [q.where(k, "=", v) for k, v in column.items()],
                boolean,
            )

        if value is None and not _is_operator(operator):
            operator, value = "=", operator

        operator = validate_operator(operator)
        column = validate_identifier(column)

        if value is None:
            if operator == "=":
                return self.where_null(column, boolean)
            if operator in ("!=", "<>"):
                return self.where_not_null(column, boolean)
            raise QueryBuildError(f"Cannot compare {column!r} to NULL with {operator!r}")

        if isinstance(value, QueryBuilder):
            value = value.descriptor

        self.descriptor.wheres.append(BasicWhere(column, operator, value, boolean))
        return self

    def or_where(self, column: Any, operator: Any = None, value: Any = None) -> QueryBuilder:
        return self.where(column, operator, value, "or")

    def where_not(self, column: Any, operator: Any = None, value: Any = None, boolean: str = "and") -> QueryBuilder:
        """Negate a predicate or group: ``NOT (...)``."""
        nested = self.new_query().where(column, operator, value)
        self.descriptor.wheres.append(NestedWhere(tuple(nested.descriptor.wheres), boolean, negated=True))
        return self

    def or_where_not(self, column: Any, operator: Any = None, value: Any = None) -> QueryBuilder:
        return self.where_not(column, operator, value, "or")

    def _where_nested(self, callback: Callable[[QueryBuilder], Any], boolean: str) -> QueryBuilder:
        nested = self.new_query()
        nested.descriptor.table = self.descriptor.table
        callback(nested)
        if nested.descriptor.wheres:
            self.descriptor.wheres.append(NestedWhere(tuple(nested.descriptor.wheres), boolean))
        return self

    def where_in(self, column: Any, values: Any, boolean: str = "and", negated: bool = False) -> QueryBuilder:
        """``column IN (...)``; an empty list compiles to ``0 = 1``."""
        column = validate_identifier(column)
        if isinstance(values, QueryBuilder):
            values = values.descriptor
        elif callable(values):
            sub = self.new_query()
            values(sub)
            values = sub.descriptor
        elif isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
            raise QueryBuildError(f"where_in expects a list of values, got {type(values).__name__}")
        else:
            values = tuple(values)
        self.descriptor.wheres.append(InWhere(column, values, boolean, negated))
        return self

    def or_where_in(self, column: Any, values: Any) -> QueryBuilder:
        return self.where_in(column, values, "or")

    def where_not_in(self, column: Any, values: Any, boolean: str = "and") -> QueryBuilder:
        return self.where_in(column, values, boolean, negated=True)

    def or_where_not_in(self, column: Any, values: Any) -> QueryBuilder:
        return self.where_in(column, values, "or", negated=True)

    def where_null(self, column: Any, boolean: str = "and", negated: bool = False) -> QueryBuilder:
        self.descriptor.wheres.append(NullWhere(validate_identifier(column), boolean, negated))
        return self

    def or_where_null(self, column: Any) -> QueryBuilder:
        return self.where_null(column, "or")

    def where_not_null(self, column: Any, boolean: str = "and") -> QueryBuilder:
        return self.where_null(column, boolean, negated=True)

    def or_where_not_null(self, column: Any) -> QueryBuilder:
        return self.where_null(column, "or", negated=True)

    def where_between(
        self, column: Any, values: Iterable[Any], boolean: str = "and", negated: bool = False
    ) -> QueryBuilder:
        bounds = list(values)
        if len(bounds) != 2:
            raise QueryBuildError(f"where_between expects exactly two values, got {len(bounds)}")
        self.descriptor.wheres.append(BetweenWhere(validate_identifier(column), bounds[0], bounds[1], boolean, negated))
        return self

    def or_where_between(self, column: Any, values: Iterable[Any]) -> QueryBuilder:
        return self.where_between(column, values, "or")

    def where_not_between(self, column: Any, values: Iterable[Any], boolean: str = "and") -> QueryBuilder:
        return self.where_between(column, values, boolean, negated=True)

    def where_column(self, first: Any, operator: Any = None, second: Any = None, boolean: str = "and") -> QueryBuilder:
        """Compare two columns: ``where_column("updated_at", ">", "created_at")``."""
        if second is None:
            operator, second = "=", operator
        self.descriptor.wheres.append(
            ColumnWhere(validate_identifier(first), validate_operator(operator), validate_identifier(second), boolean)
        )
        return self

    def or_where_column(self, first: Any, operator: Any = None, second: Any = None) -> QueryBuilder:
        return self.where_column(first, operator, second, "or")

    def where_raw(self, sql: str, bindings: Iterable[Any] = (), boolean: str = "and") -> QueryBuilder:
        """Raw predicate; *bindings* are still passed as parameters."""
        self.descriptor.wheres.append(RawWhere(sql, tuple(bindings), boolean))
        return self

    def or_where_raw(self, sql: str, bindings: Iterable[Any] = ()) -> QueryBuilder:
        return self.where_raw(sql, bindings, "or")

    def where_exists(self, query: Any, boolean: str = "and", negated: bool = False) -> QueryBuilder:
        """``EXISTS (subquery)``; *query* is a builder or a callable filling one."""
        if isinstance(query, QueryBuilder):
            descriptor = query.descriptor
        else:
            sub = self.new_query()
            query(sub)
            descriptor = sub.descriptor
        self.descriptor.wheres.append(ExistsWhere(descriptor, boolean, negated))
        return self

    def or_where_exists(self, query: Any) -> QueryBuilder:
        return self.where_exists(query, "or")

    def where_not_exists(self, query: Any, boolean: str = "and") -> QueryBuilder:
        return self.where_exists(query, boolean, negated=True)

    def group_existing_wheres(self) -> QueryBuilder:
        """Wrap every current predicate in one parenthesised group."""
        if self.descriptor.wheres:
            self.descriptor.wheres = [NestedWhere(tuple(self.descriptor.wheres))]
        return self

    # ------------------------------------------------------------------
    # JOIN
    # ------------------------------------------------------------------

    def join(
        self,
        table: str,
        first: Any,
        operator: str | None = None,
        second: str | None = None,
        type: str = "inner",
    ) -> QueryBuilder:
        """``join("authors", "authors.id", "=", "books.author_id")`` or with a callback."""
        type = type.lower()
        if type not in JOIN_TYPES:
            raise QueryBuildError(f"Invalid join type: {type!r}")
        table = validate_table(table)
        clause = JoinClause(table)
        if callable(first) and not isinstance(first, str):
            first(clause)
        else:
            clause.on(first, operator or "=", second)
        self.descriptor.joins.append(Join(type, table, tuple(clause.conditions)))
        return self

    def left_join(self, table: str, first: Any, operator: str | None = None, second: str | None = None) -> QueryBuilder:
        return self.join(table, first, operator, second, type="left")

    def right_join(self, table: str, first: Any, operator: str | None = None, second: str | None = None) -> QueryBuilder:
        return self.join(table, first, operator, second, type="right")

    def cross_join(self, table: str) -> QueryBuilder:
        self.descriptor.joins.append(Join("cross", validate_table(table)))
        return self

    # ------------------------------------------------------------------
    # GROUP / HAVING / ORDER / LIMIT
    # ------------------------------------------------------------------

    def group_by(self, *columns: Any) -> QueryBuilder:
        self.descriptor.groups.extend(validate_identifier(c) for c in _flatten(columns))
        return self

    def having(self, column: Any, operator: Any = None, value: Any = None, boolean: str = "and") -> QueryBuilder:
        if value is None:
            operator, value = "=", operator
        self.descriptor.havings.append(
            BasicWhere(validate_identifier(column), validate_operator(operator), value, boolean)
        )
        return self

    def or_having(self, column: Any, operator: Any = None, value: Any = None) -> QueryBuilder:
        return self.having(column, operator, value, "or")

    def having_raw(self, sql: str, bindings: Iterable[Any] = (), boolean: str = "and") -> QueryBuilder:
        self.descriptor.havings.append(RawWhere(sql, tuple(bindings), boolean))
        return self

    def order_by(self, column: Any, direction: str = "asc") -> QueryBuilder:
        self.descriptor.orders.append(Order(validate_identifier(column), validate_direction(direction)))
        return self

    def order_by_desc(self, column: Any) -> QueryBuilder:
        return self.order_by(column, "desc")

    def order_by_raw(self, sql: str) -> QueryBuilder:
        self.descriptor.orders.append(Order(Expression(sql)))
        return self

    def latest(self, column: str = "created_at") -> QueryBuilder:
        return self.order_by(column, "desc")

    def oldest(self, column: str = "created_at") -> QueryBuilder:
        return self.order_by(column, "asc")

    def reorder(self, column: Any = None, direction: str = "asc") -> QueryBuilder:
        self.descriptor.orders = []
        if column is not None:
            self.order_by(column, direction)
        return self

    def limit(self, value: int) -> QueryBuilder:
        self.descriptor.limit = validate_count(value, "limit")
        return self

    take = limit

    def offset(self, value: int) -> QueryBuilder:
        self.descriptor.offset = validate_count(value, "offset")
        return self

    skip = offset

    def for_page(self, page: int, per_page: int = 15) -> QueryBuilder:
        validate_page(page, per_page)
        return self.offset((page - 1) * per_page).limit(per_page)

    # ------------------------------------------------------------------
    # Terminal: reads
    # ------------------------------------------------------------------

    def to_sql(self) -> tuple[str, list[Any]]:
        """Compiled ``(sql, bindings)`` without executing."""
        return self.grammar.compile_select(self.descriptor)

    def get(self, *columns: Any) -> list[dict[str, Any]]:
        """Execute and return every row (an empty list when nothing matches)."""
        query = self.clone().select(*columns) if columns else self
        sql, bindings = query.to_sql()
        return self.db.select(sql, bindings, self.token)

    def first(self, *columns: Any) -> dict[str, Any] | None:
        rows = self.clone().limit(1).get(*columns)
        return rows[0] if rows else None

    def first_or_fail(self, *columns: Any) -> dict[str, Any]:
        row = self.first(*columns)
        if row is None:
            raise NotFoundError(f"No rows found in [{self.descriptor.table}]").with_context(
                table=self.descriptor.table
            )
        return row

    def find(self, id: Any, column: str = "id") -> dict[str, Any] | None:
        return self.clone().where(column, "=", id).first()

    def value(self, column: str) -> Any:
        row = self.first(column)
        return row[result_key(column)] if row else None

    def pluck(self, column: str, key: str | None = None) -> list[Any] | dict[Any, Any]:
        """List of *column* values, or a dict keyed by *key*."""
        columns = [column] if key is None else [column, key]
        rows = self.clone().select(*columns).get()
        value_key = result_key(column)
        if key is None:
            return [row[value_key] for row in rows]
        return {row[result_key(key)]: row[value_key] for row in rows}

    def count(self, column: str = "*") -> int:
        return int(self.aggregate("count", column) or 0)

    def sum(self, column: str) -> Any:
        return self.aggregate("sum", column) or 0

    def avg(self, column: str) -> Any:
        return self.aggregate("avg", column)

    average = avg

    def min(self, column: str) -> Any:
        return self.aggregate("min", column)

    def max(self, column: str) -> Any:
        return self.aggregate("max", column)

    def aggregate(self, function: str, column: str = "*") -> Any:
        """Run ``FUNC(column)``; rows are never hydrated."""
        if column != "*":
            validate_identifier(column)
        sql, bindings = self.grammar.compile_aggregate(self.descriptor, function, column)
        return self.db.scalar(sql, bindings, self.token)

    def exists(self) -> bool:
        sql, bindings = self.grammar.compile_exists(self.descriptor)
        return bool(self.db.scalar(sql, bindings, self.token))

    def doesnt_exist(self) -> bool:
        return not self.exists()

    def get_count_for_pagination(self) -> int:
        query = self.clone()
        query.descriptor.limit = None
        query.descriptor.offset = None
        query.descriptor.orders = []
        return query.count()

    def paginate(self, per_page: int = 15, page: int = 1) -> Page[dict[str, Any]]:
        """Count, then fetch one page: two round trips."""
        validate_page(page, per_page)
        total = self.get_count_for_pagination()
        items = self.clone().for_page(page, per_page).get() if total else []
        return Page(items=items, total=total, per_page=per_page, current_page=page)

    def chunk(self, size: int, callback: Callable[[list[dict[str, Any]]], Any], column: str = "id") -> bool:
        """Feed rows to *callback* in key-ordered batches of *size*.

        Returns ``False`` if the callback stopped the iteration by
        returning ``False``.
        """
        return self._chunk_by(size, callback, column, lambda query: query.get())

    def _chunk_by(
        self,
        size: int,
        callback: Callable[[Any], Any],
        column: str,
        fetch: Callable[[QueryBuilder], Any],
    ) -> bool:
        if isinstance(size, bool) or not isinstance(size, int) or size < 1:
            raise QueryBuildError(f"chunk size must be a positive integer, got {size!r}")
        key = result_key(column)
        last = None
        while True:
            query = self.clone().reorder(column)
            if last is not None:
                query.where(column, ">", last)
            results = fetch(query.limit(size))
            if not results:
                return True
            if callback(results) is False:
                return False
            if len(results) < size:
                return True
            tail = results[-1]
            last = tail[key] if isinstance(tail, dict) else tail.get_attribute(key)

    # ------------------------------------------------------------------
    # Terminal: writes
    # ------------------------------------------------------------------

    def insert(self, values: Mapping[str, Any] | Iterable[Mapping[str, Any]]) -> bool:
        """Insert one row or a list of rows (one statement)."""
        rows = [dict(values)] if isinstance(values, Mapping) else [dict(v) for v in values]
        if not rows:
            return True
        for row in rows:
            for column in row:
                validate_identifier(column)
        sql, bindings = self.grammar.compile_insert(self.descriptor.table, rows)
        return self.db.statement(sql, bindings, self.token)

    def insert_get_id(self, values: Mapping[str, Any], key: str = "id") -> Any:
        for column in values:
            validate_identifier(column)
        sql, bindings = self.grammar.compile_insert_get_id(self.descriptor.table, dict(values), key)
        return self.db.insert(sql, bindings, self.token)

    def update(self, values: Mapping[str, Any]) -> int:
        """UPDATE matching rows; returns the affected row count."""
        for column in values:
            validate_identifier(column)
        sql, bindings = self.grammar.compile_update(self.descriptor, dict(values))
        return self.db.affecting_statement(sql, bindings, self.token)

    def increment(self, column: str, amount: Any = 1, extra: Mapping[str, Any] | None = None) -> int:
        return self._step(column, amount, extra, "+")

    def decrement(self, column: str, amount: Any = 1, extra: Mapping[str, Any] | None = None) -> int:
        return self._step(column, amount, extra, "-")

    def _step(self, column: str, amount: Any, extra: Mapping[str, Any] | None, sign: str) -> int:
        if isinstance(amount, bool) or not isinstance(amount, (int, float, Decimal)):
            raise QueryBuildError(f"Non-numeric value passed to increment/decrement: {amount!r}")
        wrapped = self.grammar.wrap(validate_identifier(column))
        values: dict[str, Any] = {
            column: Expression(f"{wrapped} {sign} {self.db.dialect.placeholder(0)}", (amount,))
        }
        values.update(extra or {})
        return self.update(values)

    def delete(self, id: Any = None) -> int:
        """DELETE matching rows (or the row with primary key *id*)."""
        query = self.clone().where("id", "=", id) if id is not None else self
        sql, bindings = self.grammar.compile_delete(query.descriptor)
        return self.db.affecting_statement(sql, bindings, self.token)

    def truncate(self) -> None:
        """Remove every row and reset the key sequence."""
        has_sequence = True
        if self.db.dialect.name == "sqlite":
            has_sequence = bool(self.db.select(self.db.dialect.table_exists_query(), ("sqlite_sequence",)))
        for sql, bindings in self.grammar.compile_truncate(self.descriptor.table, has_sequence=has_sequence):
            self.db.statement(sql, bindings, self.token)

    def __repr__(self) -> str:
        return f"QueryBuilder(table={self.descriptor.table!r})"


def _flatten(columns: Iterable[Any]) -> list[Any]:
    flat: list[Any] = []
    for column in columns:
        if isinstance(column, (list, tuple)):
            flat.extend(column)
        else:
            flat.append(column)
    return flat


def _is_operator(value: Any) -> bool:
    return isinstance(value, str) and value.lower() in OPERATORS


__all__ = ["QueryBuilder"]
