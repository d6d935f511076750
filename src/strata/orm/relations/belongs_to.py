"""Inverse one-to-one / one-to-many: the foreign key lives on this model."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..collection import Collection
from ..naming import foreign_key_for, snake
from .base import Relation, RelationDescriptor, dictionary_key, unique_keys

if TYPE_CHECKING:
    from strata.core.database import Database

    from ..model import Model
    from ..query import ModelQuery


class BelongsTo(Relation):
    """``book.author`` where ``books.author_id`` references ``authors.id``.

    The foreign key defaults to ``{relation_name}_{owner pk}``, so
    ``writer = belongs_to("Author")`` reads ``writer_id``.
    """

    def __init__(
        self,
        parent: Model,
        related: type[Model],
        db: Database,
        relation_name: str | None = None,
        foreign_key: str | None = None,
        owner_key: str | None = None,
    ):
        super().__init__(parent, related, db, relation_name)
        self.owner_key = owner_key or related.primary_key
        if foreign_key is None:
            foreign_key = (
                f"{snake(relation_name)}_{self.owner_key}"
                if relation_name
                else foreign_key_for(related.__name__, self.owner_key)
            )
        self.foreign_key = foreign_key

    @property
    def qualified_owner_key(self) -> str:
        return self.related.qualified_column(self.owner_key)

    def child_key(self) -> Any:
        return self.parent.attributes.get(self.foreign_key)

    def add_constraints(self) -> None:
        key = self.child_key()
        if key is None:
            self.query.where_in(self.qualified_owner_key, [])
            return
        self.query.where(self.qualified_owner_key, "=", key)

    def add_eager_constraints(self, models: list[Model]) -> None:
        self.eager_keys = unique_keys(models, self.foreign_key)
        self.query.where_in(self.qualified_owner_key, self.eager_keys)

    def init_relation(self, models: list[Model], name: str) -> list[Model]:
        for model in models:
            model.set_relation(name, None)
        return models

    def match(self, models: list[Model], results: Collection, name: str) -> list[Model]:
        dictionary = {dictionary_key(result.attributes.get(self.owner_key)): result for result in results}
        for model in models:
            key = model.attributes.get(self.foreign_key)
            model.set_relation(name, dictionary.get(dictionary_key(key)) if key is not None else None)
        return models

    def get_results(self) -> Model | None:
        if self.child_key() is None:
            return None
        return self.query.first()

    def get_relation_existence_query(self, parent: ModelQuery) -> ModelQuery:
        query = self._existence_query(parent)
        query.where_column(query.qualify(self.owner_key), "=", parent.qualify(self.foreign_key))
        return query

    def associate(self, model: Model) -> Model:
        """Point the child at *model* (not saved)."""
        self.parent.set_attribute(self.foreign_key, model.attributes.get(self.owner_key))
        if self.relation_name:
            self.parent.set_relation(self.relation_name, model)
        return self.parent

    def dissociate(self) -> Model:
        self.parent.set_attribute(self.foreign_key, None)
        if self.relation_name:
            self.parent.set_relation(self.relation_name, None)
        return self.parent


def belongs_to(related: str | type[Model], foreign_key: str | None = None, owner_key: str | None = None) -> RelationDescriptor:
    return RelationDescriptor(BelongsTo, related, foreign_key=foreign_key, owner_key=owner_key)


__all__ = [
    "BelongsTo",
    "belongs_to",
]
