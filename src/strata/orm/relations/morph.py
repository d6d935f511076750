"""
Polymorphic relations.

A polymorphic child stores its owner as a ``({name}_type, {name}_id)``
pair.  The type column holds the owner's morph class: the class name,
``Model.morph_class`` when declared, or an alias registered with
:func:`~strata.orm.registry.morph_map`.  Every lookup filters on both
halves of the pair.

    class Post(Model):
        comments = morph_many("Comment", "commentable")
        tags = morph_to_many("Tag", "taggable")        # pivot: taggables

    class Comment(Model):
        commentable = morph_to()

    class Tag(Model):
        posts = morphed_by_many("Post", "taggable")

Eager loading ``commentable`` over a mixed list of comments issues one
query per distinct owner type.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from strata.core.errors import QueryBuildError

from ..collection import Collection
from ..naming import foreign_key_for, plural
from ..registry import registry
from .base import Relation, RelationDescriptor, dictionary_key
from .belongs_to_many import BelongsToMany
from .has_one_or_many import HasMany, HasOne, HasOneOrMany

if TYPE_CHECKING:
    from strata.core.database import Database
    from strata.query.builder import QueryBuilder

    from ..model import Model
    from ..query import ModelQuery


class MorphOneOrMany(HasOneOrMany):
    """``has_one`` / ``has_many`` whose foreign key is a (type, id) pair."""

    def __init__(
        self,
        parent: Model,
        related: type[Model],
        db: Database,
        relation_name: str | None = None,
        name: str = "",
        type_column: str | None = None,
        id_column: str | None = None,
        local_key: str | None = None,
    ):
        super().__init__(parent, related, db, relation_name, foreign_key=id_column or f"{name}_id", local_key=local_key)
        self.morph_type = type_column or f"{name}_type"
        self.morph_class = type(parent).get_morph_class()

    @property
    def qualified_morph_type(self) -> str:
        return self.related.qualified_column(self.morph_type)

    def add_constraints(self) -> None:
        super().add_constraints()
        self.query.where(self.qualified_morph_type, "=", self.morph_class)

    def add_eager_constraints(self, models: list[Model]) -> None:
        super().add_eager_constraints(models)
        self.query.where(self.qualified_morph_type, "=", self.morph_class)

    def get_relation_existence_query(self, parent: ModelQuery) -> ModelQuery:
        query = super().get_relation_existence_query(parent)
        query.where(query.qualify(self.morph_type), "=", parent.model.get_morph_class())
        return query

    def _set_foreign_attributes(self, model: Model) -> None:
        super()._set_foreign_attributes(model)
        model.set_attribute(self.morph_type, self.morph_class)


class MorphOne(MorphOneOrMany, HasOne):
    pass


class MorphMany(MorphOneOrMany, HasMany):
    pass


class MorphTo(Relation):
    """Inverse polymorphic relation: resolves the owner from the stored pair.

    Constraint calls made on the relation during eager loading (for
    example ``with_({"commentable": lambda q: q.with_trashed()})``) are
    recorded and replayed on each per-type query.
    """

    def __init__(
        self,
        parent: Model,
        related: None,
        db: Database,
        relation_name: str | None = None,
        name: str | None = None,
        type_column: str | None = None,
        id_column: str | None = None,
        owner_key: str | None = None,
    ):
        super().__init__(parent, None, db, relation_name)
        name = name or relation_name or ""
        self.morph_type = type_column or f"{name}_type"
        self.foreign_key = id_column or f"{name}_id"
        self.owner_key = owner_key
        self._calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self._nested: dict[str, Callable[[Any], Any] | None] = {}
        self._groups: dict[str, list[Any]] = {}
        self._dictionary: dict[str, dict[str, Model]] = {}

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)

        def record(*args: Any, **kwargs: Any) -> MorphTo:
            self._calls.append((name, args, kwargs))
            return self

        return record

    def _query_for(self, related: type[Model]) -> ModelQuery:
        query = related.query(self.db)
        for name, args, kwargs in self._calls:
            getattr(query, name)(*args, **kwargs)
        if self._nested:
            query.with_(self._nested)
        return query

    def _owner_key_for(self, related: type[Model]) -> str:
        return related.qualified_column(self.owner_key or related.primary_key)

    def add_constraints(self) -> None:
        pass

    def get_results(self) -> Model | None:
        tag = self.parent.attributes.get(self.morph_type)
        key = self.parent.attributes.get(self.foreign_key)
        if tag is None or key is None:
            return None
        related = registry.resolve_morph(tag)
        return self._query_for(related).where(self._owner_key_for(related), "=", key).first()

    def add_eager_constraints(self, models: list[Model]) -> None:
        groups: dict[str, dict[str, Any]] = defaultdict(dict)
        for model in models:
            tag = model.attributes.get(self.morph_type)
            key = model.attributes.get(self.foreign_key)
            if tag is not None and key is not None:
                groups[tag].setdefault(dictionary_key(key), key)
        self._groups = {tag: list(keys.values()) for tag, keys in groups.items()}

    def with_nested(self, relations: dict[str, Callable[[Any], Any] | None]) -> None:
        self._nested = dict(relations)

    def init_relation(self, models: list[Model], name: str) -> list[Model]:
        for model in models:
            model.set_relation(name, None)
        return models

    def get_eager(self) -> Collection:
        """One query per distinct owner type."""
        results = Collection()
        self._dictionary = {}
        for tag, keys in self._groups.items():
            related = registry.resolve_morph(tag)
            owner_key = self.owner_key or related.primary_key
            models = self._query_for(related).where_in(self._owner_key_for(related), keys).get()
            self._dictionary[tag] = {dictionary_key(m.attributes.get(owner_key)): m for m in models}
            results.extend(models)
        return results

    def match(self, models: list[Model], results: Collection, name: str) -> list[Model]:
        for model in models:
            tag = model.attributes.get(self.morph_type)
            key = model.attributes.get(self.foreign_key)
            owner = None
            if tag is not None and key is not None:
                owner = self._dictionary.get(tag, {}).get(dictionary_key(key))
            model.set_relation(name, owner)
        return models

    def get_relation_existence_query(self, parent: ModelQuery) -> ModelQuery:
        raise QueryBuildError(
            f"has()/where_has() cannot target polymorphic relation [{self.relation_name}] on [{parent.model.__name__}]"
        )

    def associate(self, model: Model) -> Model:
        key = model.attributes.get(self.owner_key or model.primary_key)
        self.parent.set_attribute(self.foreign_key, key)
        self.parent.set_attribute(self.morph_type, model.get_morph_class())
        if self.relation_name:
            self.parent.set_relation(self.relation_name, model)
        return self.parent

    def dissociate(self) -> Model:
        self.parent.set_attribute(self.foreign_key, None)
        self.parent.set_attribute(self.morph_type, None)
        if self.relation_name:
            self.parent.set_relation(self.relation_name, None)
        return self.parent

    def __repr__(self) -> str:
        return f"MorphTo({type(self.parent).__name__}.{self.morph_type})"


class MorphToMany(BelongsToMany):
    """Polymorphic many-to-many through a ``{name}s`` pivot table.

    With ``inverse=True`` (``morphed_by_many``) the parent is the shared
    side (``Tag``) and the type column filters on the related class.
    """

    def __init__(
        self,
        parent: Model,
        related: type[Model],
        db: Database,
        relation_name: str | None = None,
        name: str = "",
        table: str | None = None,
        foreign_pivot_key: str | None = None,
        related_pivot_key: str | None = None,
        parent_key: str | None = None,
        related_key: str | None = None,
        pivot_columns: Iterable[str] = (),
        pivot_timestamps: bool = False,
        inverse: bool = False,
    ):
        owner = type(parent)
        self.morph_type = f"{name}_type"
        self.inverse = inverse
        self.morph_class = related.get_morph_class() if inverse else owner.get_morph_class()
        if inverse:
            foreign_pivot_key = foreign_pivot_key or foreign_key_for(owner.__name__, owner.primary_key)
            related_pivot_key = related_pivot_key or f"{name}_id"
        else:
            foreign_pivot_key = foreign_pivot_key or f"{name}_id"
            related_pivot_key = related_pivot_key or foreign_key_for(related.__name__, related.primary_key)
        super().__init__(
            parent,
            related,
            db,
            relation_name,
            table=table or plural(name),
            foreign_pivot_key=foreign_pivot_key,
            related_pivot_key=related_pivot_key,
            parent_key=parent_key,
            related_key=related_key,
            pivot_columns=pivot_columns,
            pivot_timestamps=pivot_timestamps,
        )

    @property
    def qualified_morph_type(self) -> str:
        return f"{self.table}.{self.morph_type}"

    def add_constraints(self) -> None:
        super().add_constraints()
        self.query.where(self.qualified_morph_type, "=", self.morph_class)

    def add_eager_constraints(self, models: list[Model]) -> None:
        super().add_eager_constraints(models)
        self.query.where(self.qualified_morph_type, "=", self.morph_class)

    def get_relation_existence_query(self, parent: ModelQuery) -> ModelQuery:
        query = super().get_relation_existence_query(parent)
        query.where(self.qualified_morph_type, "=", self.morph_class)
        return query

    def _pivot_query(self) -> QueryBuilder:
        return super()._pivot_query().where(self.morph_type, "=", self.morph_class)

    def _pivot_row(self, id: Any, attributes: Any) -> dict[str, Any]:
        row = super()._pivot_row(id, attributes)
        row[self.morph_type] = self.morph_class
        return row


def morph_one(related: str | type[Model], name: str, type_column: str | None = None, id_column: str | None = None, local_key: str | None = None) -> RelationDescriptor:
    return RelationDescriptor(
        MorphOne, related, name=name, type_column=type_column, id_column=id_column, local_key=local_key
    )


def morph_many(related: str | type[Model], name: str, type_column: str | None = None, id_column: str | None = None, local_key: str | None = None) -> RelationDescriptor:
    return RelationDescriptor(
        MorphMany, related, name=name, type_column=type_column, id_column=id_column, local_key=local_key
    )


def morph_to(name: str | None = None, type_column: str | None = None, id_column: str | None = None, owner_key: str | None = None) -> RelationDescriptor:
    return RelationDescriptor(
        MorphTo, None, name=name, type_column=type_column, id_column=id_column, owner_key=owner_key
    )


def morph_to_many(related: str | type[Model], name: str, table: str | None = None, **options: Any) -> RelationDescriptor:
    return RelationDescriptor(MorphToMany, related, name=name, table=table, **options)


def morphed_by_many(related: str | type[Model], name: str, table: str | None = None, **options: Any) -> RelationDescriptor:
    return RelationDescriptor(MorphToMany, related, name=name, table=table, inverse=True, **options)


__all__ = [
    "MorphMany",
    "MorphOne",
    "MorphOneOrMany",
    "MorphTo",
    "MorphToMany",
    "morph_many",
    "morph_one",
    "morph_to",
    "morph_to_many",
    "morphed_by_many",
]
