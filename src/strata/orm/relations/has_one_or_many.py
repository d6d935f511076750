"""One-to-one and one-to-many relations (the foreign key lives on the related table)."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from strata.core.errors import ConfigError

from ..collection import Collection
from ..naming import foreign_key_for
from .base import Relation, RelationDescriptor, dictionary_key, unique_keys

if TYPE_CHECKING:
    from strata.core.database import Database

    from ..model import Model
    from ..query import ModelQuery


class HasOneOrMany(Relation):
    """Shared constraints and write helpers for ``has_one`` / ``has_many``."""

    def __init__(
        self,
        parent: Model,
        related: type[Model],
        db: Database,
        relation_name: str | None = None,
        foreign_key: str | None = None,
        local_key: str | None = None,
    ):
        super().__init__(parent, related, db, relation_name)
        owner = type(parent)
        self.local_key = local_key or owner.primary_key
        self.foreign_key = foreign_key or foreign_key_for(owner.__name__, owner.primary_key)

    @property
    def qualified_foreign_key(self) -> str:
        return self.related.qualified_column(self.foreign_key)

    def parent_key(self) -> Any:
        return self.parent.attributes.get(self.local_key)

    def add_constraints(self) -> None:
        key = self.parent_key()
        if key is None:
            self.query.where_in(self.qualified_foreign_key, [])
            return
        self.query.where(self.qualified_foreign_key, "=", key)
        self.query.where_not_null(self.qualified_foreign_key)

    def add_eager_constraints(self, models: list[Model]) -> None:
        self.eager_keys = unique_keys(models, self.local_key)
        self.query.where_in(self.qualified_foreign_key, self.eager_keys)

    def _build_dictionary(self, results: Iterable[Model]) -> dict[str, list[Model]]:
        dictionary: dict[str, list[Model]] = defaultdict(list)
        for result in results:
            dictionary[dictionary_key(result.attributes.get(self.foreign_key))].append(result)
        return dictionary

    def _matches_for(self, model: Model, dictionary: dict[str, list[Model]]) -> list[Model]:
        key = model.attributes.get(self.local_key)
        return dictionary.get(dictionary_key(key), []) if key is not None else []

    def get_relation_existence_query(self, parent: ModelQuery) -> ModelQuery:
        query = self._existence_query(parent)
        query.where_column(query.qualify(self.foreign_key), "=", parent.qualify(self.local_key))
        return query

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _set_foreign_attributes(self, model: Model) -> None:
        key = self.parent_key()
        if key is None:
            raise ConfigError(f"Save the {type(self.parent).__name__} before adding related models to it")
        model.set_attribute(self.foreign_key, key)

    def save(self, model: Model) -> Model | bool:
        """Point *model* at the parent and save it."""
        self._set_foreign_attributes(model)
        if model._db is None:
            model.set_db(self.db)
        return model if model.save() else False

    def save_many(self, models: Iterable[Model]) -> list[Model]:
        models = list(models)
        for model in models:
            self.save(model)
        return models

    def create(self, attributes: Mapping[str, Any] | None = None) -> Model:
        """New related model (mass assignment applies) attached to the parent."""
        model = self.related(attributes, db=self.db)
        self._set_foreign_attributes(model)
        model.save()
        return model

    def create_many(self, records: Iterable[Mapping[str, Any]]) -> Collection:
        return Collection(self.create(record) for record in records)


class HasMany(HasOneOrMany):
    def init_relation(self, models: list[Model], name: str) -> list[Model]:
        for model in models:
            model.set_relation(name, Collection())
        return models

    def match(self, models: list[Model], results: Collection, name: str) -> list[Model]:
        dictionary = self._build_dictionary(results)
        for model in models:
            model.set_relation(name, Collection(self._matches_for(model, dictionary)))
        return models

    def get_results(self) -> Collection:
        if self.parent_key() is None:
            return Collection()
        return self.query.get()


class HasOne(HasOneOrMany):
    def init_relation(self, models: list[Model], name: str) -> list[Model]:
        for model in models:
            model.set_relation(name, None)
        return models

    def match(self, models: list[Model], results: Collection, name: str) -> list[Model]:
        dictionary = self._build_dictionary(results)
        for model in models:
            matches = self._matches_for(model, dictionary)
            model.set_relation(name, matches[0] if matches else None)
        return models

    def get_results(self) -> Model | None:
        if self.parent_key() is None:
            return None
        return self.query.first()


def has_one(related: str | type[Model], foreign_key: str | None = None, local_key: str | None = None) -> RelationDescriptor:
    return RelationDescriptor(HasOne, related, foreign_key=foreign_key, local_key=local_key)


def has_many(related: str | type[Model], foreign_key: str | None = None, local_key: str | None = None) -> RelationDescriptor:
    return RelationDescriptor(HasMany, related, foreign_key=foreign_key, local_key=local_key)


__all__ = [
    "HasMany",
    "HasOne",
    "HasOneOrMany",
    "has_many",
    "has_one",
]
