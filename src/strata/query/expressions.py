"""Query descriptor and clause types.

The :class:`QueryDescriptor` is the mutable state behind a
:class:`~strata.query.builder.QueryBuilder`: target table, selected
columns, ordered WHERE predicates, joins, grouping, ordering and
limits.  Clause objects are frozen; the descriptor's lists are copied on
``copy()`` so clones never share mutable state.

Identifiers are validated when a clause is created, so a malformed
column name fails at the call site instead of at execution.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from strata.core.errors import QueryBuildError

# ``col``, ``table.col``, ``table.*``, ``*``, each with optional ``as alias``
_IDENT = r"[A-Za-z_][A-Za-z0-9_]*"
_IDENTIFIER_RE = re.compile(
    rf"^(\*|{_IDENT}(\.({_IDENT}|\*))?)(\s+as\s+{_IDENT})?$",
    re.IGNORECASE,
)
_TABLE_RE = re.compile(rf"^{_IDENT}(\s+as\s+{_IDENT})?$", re.IGNORECASE)

OPERATORS = frozenset({"=", "<", ">", "<=", ">=", "<>", "!=", "like", "not like", "ilike"})
DIRECTIONS = frozenset({"asc", "desc"})
JOIN_TYPES = frozenset({"inner", "left", "right", "cross"})


class Expression:
    """Raw SQL fragment, inlined verbatim; bindings stay parameterised."""

    __slots__ = ("sql", "bindings")

    def __init__(self, sql: str, bindings: tuple[Any, ...] | list[Any] = ()):
        self.sql = sql
        self.bindings = tuple(bindings)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Expression) and (self.sql, self.bindings) == (other.sql, other.bindings)

    def __hash__(self) -> int:
        return hash((self.sql, self.bindings))

    def __repr__(self) -> str:
        return f"Expression({self.sql!r})"


def raw(sql: str, bindings: tuple[Any, ...] | list[Any] = ()) -> Expression:
    """Mark *sql* as a raw expression."""
    return Expression(sql, bindings)


def validate_identifier(name: Any) -> Any:
    """Return *name* unchanged if it is a safe column reference."""
    if isinstance(name, Expression):
        return name
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name.strip()):
        raise QueryBuildError(f"Invalid identifier: {name!r}")
    return name.strip()


def validate_table(name: Any) -> str:
    if not isinstance(name, str) or not _TABLE_RE.match(name.strip()):
        raise QueryBuildError(f"Invalid table name: {name!r}")
    return name.strip()


def validate_operator(operator: Any) -> str:
    if not isinstance(operator, str) or operator.lower() not in OPERATORS:
        raise QueryBuildError(f"Invalid operator: {operator!r}")
    return operator.lower()


def validate_direction(direction: Any) -> str:
    if not isinstance(direction, str) or direction.lower() not in DIRECTIONS:
        raise QueryBuildError(f"Order direction must be 'asc' or 'desc', got {direction!r}")
    return direction.lower()


def validate_count(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise QueryBuildError(f"{what} must be a non-negative integer, got {value!r}")
    return value


def result_key(column: str) -> str:
    """Key a selected column appears under in a result row."""
    lowered = column.lower()
    if " as " in lowered:
        return column[lowered.rindex(" as ") + 4:].strip()
    return column.rsplit(".", 1)[-1]


# =========================================================================
# WHERE clauses
# =========================================================================


@dataclass(frozen=True)
class BasicWhere:
    column: Any
    operator: str
    value: Any
    boolean: str = "and"


@dataclass(frozen=True)
class InWhere:
    column: Any
    values: Any  # tuple of values, or a QueryDescriptor subquery
    boolean: str = "and"
    negated: bool = False


@dataclass(frozen=True)
class NullWhere:
    column: Any
    boolean: str = "and"
    negated: bool = False


@dataclass(frozen=True)
class BetweenWhere:
    column: Any
    low: Any
    high: Any
    boolean: str = "and"
    negated: bool = False


@dataclass(frozen=True)
class ColumnWhere:
    first: Any
    operator: str
    second: Any
    boolean: str = "and"


@dataclass(frozen=True)
class RawWhere:
    sql: str
    bindings: tuple[Any, ...] = ()
    boolean: str = "and"


@dataclass(frozen=True)
class NestedWhere:
    wheres: tuple[Any, ...]
    boolean: str = "and"
    negated: bool = False


@dataclass(frozen=True)
class ExistsWhere:
    query: QueryDescriptor
    boolean: str = "and"
    negated: bool = False


# =========================================================================
# JOIN / ORDER / SELECT
# =========================================================================


@dataclass(frozen=True)
class JoinCondition:
    first: Any
    operator: str
    second: Any
    boolean: str = "and"


@dataclass(frozen=True)
class Join:
    type: str
    table: str
    conditions: tuple[JoinCondition, ...] = ()


class JoinClause:
    """Collects ON conditions for ``join(table, callback)``."""

    def __init__(self, table: str):
        self.table = table
        self.conditions: list[JoinCondition] = []

    def on(self, first: str, operator: str = "=", second: str | None = None) -> JoinClause:
        return self._add(first, operator, second, "and")

    def or_on(self, first: str, operator: str = "=", second: str | None = None) -> JoinClause:
        return self._add(first, operator, second, "or")

    def _add(self, first: str, operator: str, second: str | None, boolean: str) -> JoinClause:
        if second is None:
            operator, second = "=", operator
        self.conditions.append(
            JoinCondition(
                validate_identifier(first),
                validate_operator(operator),
                validate_identifier(second),
                boolean,
            )
        )
        return self


@dataclass(frozen=True)
class Order:
    column: Any
    direction: str = "asc"


@dataclass(frozen=True)
class SubSelect:
    """``(subquery) AS alias`` in the select list."""

    query: QueryDescriptor
    alias: str


# =========================================================================
# Descriptor
# =========================================================================


@dataclass
class QueryDescriptor:
    """Everything a grammar needs to compile one statement."""

    table: str | None = None
    columns: list[Any] = field(default_factory=list)
    distinct: bool = False
    wheres: list[Any] = field(default_factory=list)
    joins: list[Join] = field(default_factory=list)
    groups: list[Any] = field(default_factory=list)
    havings: list[Any] = field(default_factory=list)
    orders: list[Order] = field(default_factory=list)
    limit: int | None = None
    offset: int | None = None

    def copy(self) -> QueryDescriptor:
        return QueryDescriptor(
            table=self.table,
            columns=list(self.columns),
            distinct=self.distinct,
            wheres=list(self.wheres),
            joins=list(self.joins),
            groups=list(self.groups),
            havings=list(self.havings),
            orders=list(self.orders),
            limit=self.limit,
            offset=self.offset,
        )

    @property
    def has_or_predicates(self) -> bool:
        return any(getattr(w, "boolean", "and") == "or" for w in self.wheres)


__all__ = [
    "BasicWhere",
    "BetweenWhere",
    "ColumnWhere",
    "ExistsWhere",
    "Expression",
    "InWhere",
    "Join",
    "JoinClause",
    "JoinCondition",
    "NestedWhere",
    "NullWhere",
    "OPERATORS",
    "Order",
    "QueryDescriptor",
    "RawWhere",
    "SubSelect",
    "raw",
    "result_key",
    "validate_direction",
    "validate_identifier",
    "validate_operator",
    "validate_table",
]
