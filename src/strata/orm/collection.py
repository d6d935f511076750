"""Result collection returned by model queries."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .model import Model


class Collection(list):
    """A ``list`` of models with a few key-aware helpers.

    ``ModelQuery.get()`` always returns one (possibly empty); it is never
    ``None``.
    """

    def model_keys(self) -> list[Any]:
        return [model.get_key() for model in self]

    def pluck(self, attribute: str, key: str | None = None) -> list[Any] | dict[Any, Any]:
        if key is None:
            return [model.get_attribute(attribute) for model in self]
        return {model.get_attribute(key): model.get_attribute(attribute) for model in self}

    def key_by(self, attribute: str | Callable[[Model], Any]) -> dict[Any, Model]:
        if callable(attribute):
            return {attribute(model): model for model in self}
        return {model.get_attribute(attribute): model for model in self}

    def first(self, default: Any = None) -> Any:
        return self[0] if self else default

    def last(self, default: Any = None) -> Any:
        return self[-1] if self else default

    def find(self, key: Any, default: Any = None) -> Any:
        for model in self:
            if model.get_key() == key:
                return model
        return default

    def filter(self, predicate: Callable[[Model], Any]) -> Collection:
        return Collection(model for model in self if predicate(model))

    def is_empty(self) -> bool:
        return not self

    def is_not_empty(self) -> bool:
        return bool(self)

    def load(self, *relations: Any) -> Collection:
        """Eager-load *relations* onto every model (one query per relation)."""
        if self:
            self[0].new_query().with_(*relations).eager_load_relations(list(self))
        return self

    def to_list(self) -> list[dict[str, Any]]:
        return [model.to_dict() for model in self]

    def __repr__(self) -> str:
        return f"Collection({list.__repr__(self)})"


__all__ = ["Collection"]
