"""Soft deletes: mark rows deleted with a timestamp instead of removing them.

A model opts in with ``soft_deletes = True``.  Its descriptor then
carries a :class:`SoftDeletingScope` under the ``"soft_deletes"`` key,
and every :class:`~strata.orm.query.ModelQuery` built for the model
applies it: plain reads, ``find``, aggregates, pagination counts,
relationship loads and ``where_has`` subqueries all see
``deleted_at IS NULL``.

    >>> repo.query().to_sql()
    ('SELECT "books".* FROM "books" WHERE "books"."deleted_at" IS NULL', [])
    >>> repo.only_trashed().to_sql()
    ('SELECT "books".* FROM "books" WHERE "books"."deleted_at" IS NOT NULL', [])
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from strata.query.builder import QueryBuilder

    from .model import Model

SCOPE_NAME = "soft_deletes"


class SoftDeletingScope:
    """Global scope restricting reads to live (or, flipped, trashed) rows."""

    def __init__(self, only_trashed: bool = False):
        self.only_trashed = only_trashed

    def apply(self, builder: QueryBuilder, model: type[Model]) -> None:
        column = builder.qualify(model.deleted_at_column)
        if self.only_trashed:
            builder.where_not_null(column)
        else:
            builder.where_null(column)

    def __repr__(self) -> str:
        return f"SoftDeletingScope(only_trashed={self.only_trashed})"


def soft_delete(model: Model) -> None:
    """Stamp ``deleted_at`` (and ``updated_at``) on one persisted model."""
    now = model.fresh_timestamp()
    columns: dict[str, Any] = {model.deleted_at_column: now}
    if model.timestamps:
        columns[model.updated_at_column] = now

    for column, value in columns.items():
        model.set_attribute(column, value)
    stored = {column: model.attributes[column] for column in columns}

    model.new_base_query().where(model.primary_key, model.get_key()).update(stored)
    for column, value in stored.items():
        model.original[column] = value


def restore(model: Model) -> bool:
    """Clear ``deleted_at`` and save; fires ``restoring``/``restored``."""
    if model.fire_event("restoring") is False:
        return False
    model.set_attribute(model.deleted_at_column, None)
    model.exists = True
    if not model.save():
        return False
    model.fire_event("restored")
    return True


__all__ = [
    "SCOPE_NAME",
    "SoftDeletingScope",
    "restore",
    "soft_delete",
]
