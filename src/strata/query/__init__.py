"""strata.query — fluent query builder and SQL grammar.

Modules
-------
expressions  QueryDescriptor, clause types, identifier validation
grammar      Grammar: descriptor → (sql, bindings)
builder      QueryBuilder fluent API and terminal calls
pagination   Page result
"""

from strata.query.builder import QueryBuilder
from strata.query.expressions import Expression, QueryDescriptor, raw
from strata.query.grammar import Grammar
from strata.query.pagination import Page

__all__ = [
    "Expression",
    "Grammar",
    "Page",
    "QueryBuilder",
    "QueryDescriptor",
    "raw",
]
