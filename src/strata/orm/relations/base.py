"""
Relation protocol and the class-level relation descriptor.

Manifesto:
    Every relationship kind answers the same five questions, so lazy
    loading, eager loading and ``where_has`` share one code path:

    - ``add_constraints()``: restrict the related query to one owner
    - ``add_eager_constraints(models)``: one ``WHERE key IN (...)`` over
      the de-duplicated, non-null keys of every owner
    - ``init_relation(models, name)``: set the empty default on each owner
    - ``match(models, results, name)``: hand results back to owners by
      key, through a dictionary and never positionally
    - ``get_results()``: run the lazy query

Architecture:
    ::

        class Author(Model):
            books = has_many("Book")        RelationDescriptor (class attr)
                                                 │ make(parent, db)
        author.books                             ▼
          └─► Model.get_relation_value ──►  HasMany(author, Book, db)
                                              .query: ModelQuery(Book)

Tags:
    orm, relations, eager-loading, strata
"""

from __future__ import annotations

import itertools
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from ..collection import Collection
from ..registry import registry

if TYPE_CHECKING:
    from strata.core.database import Database

    from ..model import Model
    from ..query import ModelQuery

_reserved_aliases = itertools.count()


class Relation:
    """Base class for relationship queries bound to one parent model."""

    def __init__(
        self,
        parent: Model,
        related: type[Model] | None,
        db: Database,
        relation_name: str | None = None,
    ):
        self.parent = parent
        self.related = related
        self.db = db
        self.relation_name = relation_name
        self.query: ModelQuery | None = related.query(db) if related is not None else None
        self.eager_keys: list[Any] | None = None

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_") or name in ("query", "parent", "related", "db"):
            raise AttributeError(name)
        target = getattr(self.query, name)
        if not callable(target):
            return target

        def forward(*args: Any, **kwargs: Any) -> Any:
            result = target(*args, **kwargs)
            return self if result is self.query else result

        return forward

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    def add_constraints(self) -> None:
        raise NotImplementedError

    def add_eager_constraints(self, models: list[Model]) -> None:
        raise NotImplementedError

    def init_relation(self, models: list[Model], name: str) -> list[Model]:
        raise NotImplementedError

    def match(self, models: list[Model], results: Collection, name: str) -> list[Model]:
        raise NotImplementedError

    def get_results(self) -> Any:
        raise NotImplementedError

    def get_relation_existence_query(self, parent: ModelQuery) -> ModelQuery:
        """Related query correlated to the *parent* query's rows, for EXISTS / COUNT subqueries."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Shared behaviour
    # ------------------------------------------------------------------

    def get(self) -> Collection:
        return self.query.get()

    def get_eager(self) -> Collection:
        """Run the eager query; no round trip when no owner has a key."""
        if self.eager_keys is not None and not self.eager_keys:
            return Collection()
        return self.get()

    def with_nested(self, relations: dict[str, Callable[[Any], Any] | None]) -> None:
        self.query.with_(relations)

    def _existence_query(self, parent: ModelQuery) -> ModelQuery:
        """Related query for an existence subquery.

        A relation onto the parent's own table reads it under a fresh
        alias, so columns qualified with the table name keep referring to
        the outer row.
        """
        query = self.related.query(self.db)
        if self.related.table == parent.model.table:
            query.aliased(f"strata_reserved_{next(_reserved_aliases)}")
        return query

    def __repr__(self) -> str:
        related = self.related.__name__ if self.related is not None else "?"
        return f"{type(self).__name__}({type(self.parent).__name__} -> {related})"


class RelationDescriptor:
    """Class attribute declaring a relationship.

    Class access returns the descriptor; instance access returns the
    loaded relation value, running the lazy query on first access.
    """

    def __init__(self, relation_class: type[Relation], related: str | type[Model] | None = None, **options: Any):
        self.relation_class = relation_class
        self.related_ref = related
        self.options = options
        self.name: str | None = None
        self.owner: type | None = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.owner = owner
        self.name = name

    @property
    def related(self) -> type[Model] | None:
        if self.related_ref is None:
            return None
        return registry.resolve(self.related_ref)

    def make(self, parent: Model, db: Database | None = None, constrain: bool = True) -> Relation:
        relation = self.relation_class(
            parent,
            self.related,
            db if db is not None else parent.get_db(),
            relation_name=self.name,
            **self.options,
        )
        if constrain:
            relation.add_constraints()
        return relation

    def __get__(self, instance: Model | None, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return instance.get_relation_value(self.name)

    def __repr__(self) -> str:
        return f"<{self.relation_class.__name__} {self.name!r}>"


def unique_keys(models: Iterable[Model], key: str) -> list[Any]:
    """Distinct non-null values of raw attribute *key*, in first-seen order."""
    seen: dict[str, Any] = {}
    for model in models:
        value = model.attributes.get(key)
        if value is not None:
            seen.setdefault(dictionary_key(value), value)
    return list(seen.values())


def dictionary_key(value: Any) -> str:
    """Match key normalising driver differences (``1`` vs ``"1"``)."""
    return str(value)


__all__ = [
    "Relation",
    "RelationDescriptor",
    "dictionary_key",
    "unique_keys",
]
