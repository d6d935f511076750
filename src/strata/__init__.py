"""
strata — relational data layer: query builder, schema, migrations and ORM.

Packages
--------
core        Database handle, adapters, pool, errors, settings, logging
query       Fluent query builder and SQL grammar
schema      Blueprints, DDL grammars, schema builder
migrations  Migration units, ledger and runner
orm         Models, relations, model queries and repositories
cli         ``strata`` command line (Typer)

Quick start::

    from strata import Model, create_database, has_many, belongs_to

    db = create_database("sqlite:///app.db")

    class Author(Model):
        fillable = ["name"]
        books = has_many("Book")

    class Book(Model):
        fillable = ["title", "author_id"]
        author = belongs_to("Author")

    authors = db.repository(Author)
    ursula = authors.create({"name": "Ursula K. Le Guin"})
    ursula.relation("books").create({"title": "The Dispossessed"})
"""

from strata.core import CancellationToken, Database, create_database
from strata.core.errors import (
    ConfigError,
    ConstraintViolationError,
    MassAssignmentError,
    MigrationError,
    ModelNotFoundError,
    NotFoundError,
    QueryBuildError,
    QueryError,
    SchemaError,
    StrataError,
)
from strata.migrations import Migration, Migrator
from strata.orm import (
    Collection,
    Model,
    ModelQuery,
    Repository,
    accessor,
    belongs_to,
    belongs_to_many,
    has_many,
    has_one,
    morph_many,
    morph_map,
    morph_one,
    morph_to,
    morph_to_many,
    morphed_by_many,
    mutator,
)
from strata.query import QueryBuilder, raw
from strata.schema import Blueprint, SchemaBuilder

__version__ = "0.1.0"

__all__ = [
    "Blueprint",
    "CancellationToken",
    "Collection",
    "ConfigError",
    "ConstraintViolationError",
    "Database",
    "MassAssignmentError",
    "Migration",
    "MigrationError",
    "Migrator",
    "Model",
    "ModelNotFoundError",
    "ModelQuery",
    "NotFoundError",
    "QueryBuildError",
    "QueryBuilder",
    "QueryError",
    "Repository",
    "SchemaBuilder",
    "SchemaError",
    "StrataError",
    "__version__",
    "accessor",
    "belongs_to",
    "belongs_to_many",
    "create_database",
    "has_many",
    "has_one",
    "morph_many",
    "morph_map",
    "morph_one",
    "morph_to",
    "morph_to_many",
    "morphed_by_many",
    "mutator",
    "raw",
]
