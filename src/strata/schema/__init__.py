"""strata.schema — blueprints, per-dialect DDL grammars and the schema builder."""

from strata.schema.blueprint import (
    Blueprint,
    ColumnDefinition,
    ForeignIdColumnDefinition,
    ForeignKeyAction,
    ForeignKeyDefinition,
)
from strata.schema.builder import SchemaBuilder
from strata.schema.grammar import (
    PostgreSQLSchemaGrammar,
    SchemaGrammar,
    SQLiteSchemaGrammar,
    get_schema_grammar,
)

__all__ = [
    "Blueprint",
    "ColumnDefinition",
    "ForeignIdColumnDefinition",
    "ForeignKeyAction",
    "ForeignKeyDefinition",
    "PostgreSQLSchemaGrammar",
    "SQLiteSchemaGrammar",
    "SchemaBuilder",
    "SchemaGrammar",
    "get_schema_grammar",
]
