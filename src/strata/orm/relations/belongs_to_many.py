"""
Many-to-many relations through a pivot table.

Manifesto:
    The pivot table is the relationship.  Reads join through it and
    expose each row's pivot values as ``model.pivot``; writes compute
    the difference between what is attached and what was asked for, and
    send only the inserts and deletes that difference needs.  Asking to
    attach something already attached is a no-op, so pivot rows are
    never duplicated.

Architecture:
    ::

        author.books   SELECT books.*, author_book.author_id AS pivot_author_id, ...
                       FROM books INNER JOIN author_book
                            ON books.id = author_book.book_id
                       WHERE author_book.author_id = ?

        sync({2, 3}) with {1, 2} attached:
            detach {1}  → DELETE ... WHERE book_id IN (1)
            attach {3}  → INSERT (author_id, book_id) VALUES (?, 3)
            keep   {2}  → UPDATE only when pivot attributes were given

Examples:
    >>> author.relation("books").sync([2, 3])
    {'attached': [3], 'detached': [1], 'updated': []}
    >>> author.books[0].pivot.book_id
    2

Tags:
    orm, relations, many-to-many, pivot, strata
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from strata.core.errors import ConfigError

from ..collection import Collection
from ..naming import foreign_key_for, pivot_table_for
from .base import Relation, RelationDescriptor, dictionary_key, unique_keys

if TYPE_CHECKING:
    from strata.core.database import Database
    from strata.query.builder import QueryBuilder

    from ..model import Model
    from ..query import ModelQuery

_PIVOT_PREFIX = "pivot_"


class Pivot:
    """Pivot-row attribute bag attached to related models as ``model.pivot``."""

    def __init__(self, attributes: Mapping[str, Any] | None = None):
        self.attributes = dict(attributes or {})

    def __getattr__(self, key: str) -> Any:
        if key == "attributes":
            raise AttributeError(key)
        try:
            return self.attributes[key]
        except KeyError:
            raise AttributeError(f"Pivot has no attribute {key!r}") from None

    def __getitem__(self, key: str) -> Any:
        return self.attributes[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.attributes)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Pivot) and self.attributes == other.attributes

    def __repr__(self) -> str:
        return f"Pivot({self.attributes!r})"


class BelongsToMany(Relation):
    """Many-to-many relation resolved through a pivot table."""

    def __init__(
        self,
        parent: Model,
        related: type[Model],
        db: Database,
        relation_name: str | None = None,
        table: str | None = None,
        foreign_pivot_key: str | None = None,
        related_pivot_key: str | None = None,
        parent_key: str | None = None,
        related_key: str | None = None,
        pivot_columns: Iterable[str] = (),
        pivot_timestamps: bool = False,
    ):
        super().__init__(parent, related, db, relation_name)
        owner = type(parent)
        self.table = table or pivot_table_for(owner.__name__, related.__name__)
        self.foreign_pivot_key = foreign_pivot_key or foreign_key_for(owner.__name__, owner.primary_key)
        self.related_pivot_key = related_pivot_key or foreign_key_for(related.__name__, related.primary_key)
        self.parent_key = parent_key or owner.primary_key
        self.related_key = related_key or related.primary_key
        self.pivot_columns = list(pivot_columns)
        self.pivot_timestamps = pivot_timestamps
        if pivot_timestamps:
            self.pivot_columns += [related.created_at_column, related.updated_at_column]
        self._perform_join(self.query)

    def _perform_join(self, query: ModelQuery) -> None:
        query.join(
            self.table,
            query.qualify(self.related_key),
            "=",
            f"{self.table}.{self.related_pivot_key}",
        )

    @property
    def qualified_foreign_pivot_key(self) -> str:
        return f"{self.table}.{self.foreign_pivot_key}"

    def _parent_key_value(self) -> Any:
        return self.parent.attributes.get(self.parent_key)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def add_constraints(self) -> None:
        key = self._parent_key_value()
        if key is None:
            self.query.where_in(self.qualified_foreign_pivot_key, [])
            return
        self.query.where(self.qualified_foreign_pivot_key, "=", key)

    def add_eager_constraints(self, models: list[Model]) -> None:
        self.eager_keys = unique_keys(models, self.parent_key)
        self.query.where_in(self.qualified_foreign_pivot_key, self.eager_keys)

    def init_relation(self, models: list[Model], name: str) -> list[Model]:
        for model in models:
            model.set_relation(name, Collection())
        return models

    def match(self, models: list[Model], results: Collection, name: str) -> list[Model]:
        dictionary: dict[str, list[Model]] = defaultdict(list)
        for result in results:
            dictionary[dictionary_key(result.pivot.get(self.foreign_pivot_key))].append(result)
        for model in models:
            key = model.attributes.get(self.parent_key)
            model.set_relation(name, Collection(dictionary.get(dictionary_key(key), []) if key is not None else []))
        return models

    def get(self) -> Collection:
        models = self.query.get(*self._select_columns())
        self._hydrate_pivot(models)
        return models

    def get_results(self) -> Collection:
        if self._parent_key_value() is None:
            return Collection()
        return self.get()

    def _select_columns(self) -> list[str]:
        pivot = [self.foreign_pivot_key, self.related_pivot_key, *self.pivot_columns]
        return [f"{self.related.table}.*"] + [
            f"{self.table}.{column} as {_PIVOT_PREFIX}{column}" for column in dict.fromkeys(pivot)
        ]

    def _hydrate_pivot(self, models: Iterable[Model]) -> None:
        for model in models:
            values = {
                key[len(_PIVOT_PREFIX):]: model.attributes.pop(key)
                for key in list(model.attributes)
                if key.startswith(_PIVOT_PREFIX)
            }
            model.pivot = Pivot(values)
            model.sync_original()

    def get_relation_existence_query(self, parent: ModelQuery) -> ModelQuery:
        query = self._existence_query(parent)
        self._perform_join(query)
        query.where_column(self.qualified_foreign_pivot_key, "=", parent.qualify(self.parent_key))
        return query

    def with_pivot(self, *columns: str) -> BelongsToMany:
        self.pivot_columns.extend(columns)
        return self

    def where_pivot(self, column: str, operator: Any = None, value: Any = None) -> BelongsToMany:
        self.query.where(f"{self.table}.{column}", operator, value)
        return self

    # ------------------------------------------------------------------
    # Pivot writes
    # ------------------------------------------------------------------

    def _pivot_query(self) -> QueryBuilder:
        key = self._parent_key_value()
        if key is None:
            raise ConfigError(f"Save the {type(self.parent).__name__} before changing its {self.table} rows")
        return self.db.table(self.table).where(self.foreign_pivot_key, "=", key)

    def _pivot_row(self, id: Any, attributes: Mapping[str, Any]) -> dict[str, Any]:
        row = {self.foreign_pivot_key: self._parent_key_value(), self.related_pivot_key: id, **attributes}
        if self.pivot_timestamps:
            now = self.related.fresh_timestamp()
            row.setdefault(self.related.created_at_column, now)
            row.setdefault(self.related.updated_at_column, now)
        return row

    def _cast_key(self, value: Any) -> Any:
        if hasattr(value, "get_key"):
            value = value.attributes.get(self.related_key)
        if self.related.key_type == "int" and isinstance(value, str) and value.isdigit():
            return int(value)
        return value

    def _normalize(self, ids: Any) -> dict[Any, dict[str, Any]]:
        """``{id: pivot attributes}`` from ids, models, or a mapping."""
        if isinstance(ids, Mapping):
            return {self._cast_key(k): dict(v or {}) for k, v in ids.items()}
        if hasattr(ids, "get_key") or isinstance(ids, (str, bytes, int)) or not isinstance(ids, Iterable):
            ids = [ids]
        return {self._cast_key(item): {} for item in ids}

    def current_ids(self) -> list[Any]:
        return list(self._pivot_query().pluck(self.related_pivot_key))

    def _insert(self, records: Mapping[Any, Mapping[str, Any]]) -> list[Any]:
        rows = [self._pivot_row(id, attributes) for id, attributes in records.items()]
        if not rows:
            return []
        query = self.db.table(self.table)
        if len({tuple(sorted(row)) for row in rows}) == 1:
            query.insert(rows)
        else:
            for row in rows:
                query.insert(row)
        return list(records)

    def attach(self, ids: Any, attributes: Mapping[str, Any] | None = None) -> list[Any]:
        """Insert pivot rows for ids not already attached; returns those ids."""
        current = {dictionary_key(id) for id in self.current_ids()}
        records = {
            id: {**(attributes or {}), **extra}
            for id, extra in self._normalize(ids).items()
            if dictionary_key(id) not in current
        }
        return self._insert(records)

    def detach(self, ids: Any = None) -> int:
        """Delete pivot rows for *ids* (every row when ``None``)."""
        query = self._pivot_query()
        if ids is not None:
            keys = list(self._normalize(ids))
            if not keys:
                return 0
            query.where_in(self.related_pivot_key, keys)
        return query.delete()

    def sync(self, ids: Any, detaching: bool = True) -> dict[str, list[Any]]:
        """Make the attached set equal *ids*; returns what changed.

        Only the difference is written, inside one transaction.
        """
        changes: dict[str, list[Any]] = {"attached": [], "detached": [], "updated": []}
        records = self._normalize(ids)
        wanted = {dictionary_key(id) for id in records}
        with self.db.transaction():
            current = self.current_ids()
            attached = {dictionary_key(id) for id in current}

            if detaching:
                detach = [id for id in current if dictionary_key(id) not in wanted]
                if detach:
                    self.detach(detach)
                    changes["detached"] = detach

            changes["attached"] = self._insert(
                {id: attributes for id, attributes in records.items() if dictionary_key(id) not in attached}
            )
            for id, attributes in records.items():
                if dictionary_key(id) in attached and attributes and self.update_existing_pivot(id, attributes):
                    changes["updated"].append(id)
        return changes

    def sync_without_detaching(self, ids: Any) -> dict[str, list[Any]]:
        return self.sync(ids, detaching=False)

    def toggle(self, ids: Any) -> dict[str, list[Any]]:
        """Detach attached ids, attach the others."""
        records = self._normalize(ids)
        with self.db.transaction():
            attached = {dictionary_key(id) for id in self.current_ids()}
            detach = [id for id in records if dictionary_key(id) in attached]
            if detach:
                self.detach(detach)
            inserted = self._insert(
                {id: attributes for id, attributes in records.items() if dictionary_key(id) not in attached}
            )
        return {"attached": inserted, "detached": detach}

    def update_existing_pivot(self, id: Any, attributes: Mapping[str, Any]) -> int:
        values = dict(attributes)
        if self.pivot_timestamps:
            values.setdefault(self.related.updated_at_column, self.related.fresh_timestamp())
        return self._pivot_query().where(self.related_pivot_key, "=", self._cast_key(id)).update(values)


def belongs_to_many(
    related: str | type[Model],
    table: str | None = None,
    foreign_pivot_key: str | None = None,
    related_pivot_key: str | None = None,
    parent_key: str | None = None,
    related_key: str | None = None,
    pivot_columns: Iterable[str] = (),
    pivot_timestamps: bool = False,
) -> RelationDescriptor:
    return RelationDescriptor(
        BelongsToMany,
        related,
        table=table,
        foreign_pivot_key=foreign_pivot_key,
        related_pivot_key=related_pivot_key,
        parent_key=parent_key,
        related_key=related_key,
        pivot_columns=tuple(pivot_columns),
        pivot_timestamps=pivot_timestamps,
    )


__all__ = [
    "BelongsToMany",
    "Pivot",
    "belongs_to_many",
]
