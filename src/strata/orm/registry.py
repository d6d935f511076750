"""Model registry, entity descriptors and the morph map.

Every :class:`~strata.orm.model.Model` subclass registers itself here at
class creation.  Relations may then name their related model as a string
(``has_many("Book")``) and polymorphic relations resolve stored type
tags back to classes.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from strata.core.errors import ConfigError

from .events import EventDispatcher

if TYPE_CHECKING:
    from .model import Model
    from .relations.base import RelationDescriptor


@dataclass
class EntityDescriptor:
    """Per-class metadata derived once, at class creation."""

    name: str
    table: str
    primary_key: str = "id"
    key_type: str = "int"
    incrementing: bool = True
    timestamps: bool = True
    created_at_column: str = "created_at"
    updated_at_column: str = "updated_at"
    soft_deletes: bool = False
    deleted_at_column: str = "deleted_at"
    fillable: tuple[str, ...] = ()
    guarded: tuple[str, ...] = ("*",)
    casts: dict[str, str] = field(default_factory=dict)
    accessors: dict[str, str] = field(default_factory=dict)
    mutators: dict[str, str] = field(default_factory=dict)
    relations: dict[str, RelationDescriptor] = field(default_factory=dict)
    global_scopes: dict[str, Any] = field(default_factory=dict)
    events: EventDispatcher = field(default_factory=EventDispatcher)


class ModelRegistry:
    """Class name → model class, plus the morph alias map."""

    def __init__(self) -> None:
        self._models: dict[str, type[Model]] = {}
        self._morph_map: dict[str, type[Model]] = {}
        self._lock = threading.Lock()

    def register(self, model: type[Model]) -> None:
        with self._lock:
            self._models[model.__name__] = model

    def resolve(self, reference: str | type[Model]) -> type[Model]:
        """Class for *reference* (a class, or a registered class name)."""
        if isinstance(reference, type):
            return reference
        model = self._models.get(reference)
        if model is None:
            raise ConfigError(f"Unknown model {reference!r}; is the module defining it imported?")
        return model

    def morph_map(self, mapping: dict[str, type[Model] | str]) -> dict[str, type[Model]]:
        """Register morph aliases (``{"post": Post}``) and return the full map."""
        with self._lock:
            for alias, model in mapping.items():
                self._morph_map[alias] = model if isinstance(model, type) else self.resolve(model)
            return dict(self._morph_map)

    def clear_morph_map(self) -> None:
        self._morph_map.clear()

    def morph_class_for(self, model: type[Model]) -> str:
        """The tag stored in ``{name}_type`` columns for *model*."""
        for alias, mapped in self._morph_map.items():
            if mapped is model:
                return alias
        return model.morph_class or model.__name__

    def resolve_morph(self, tag: str) -> type[Model]:
        if tag in self._morph_map:
            return self._morph_map[tag]
        if tag in self._models:
            return self._models[tag]
        for model in self._models.values():
            if model.morph_class == tag:
                return model
        raise ConfigError(f"No model registered for morph type {tag!r}")


registry = ModelRegistry()


def morph_map(mapping: dict[str, type[Model] | str]) -> dict[str, type[Model]]:
    return registry.morph_map(mapping)


__all__ = [
    "EntityDescriptor",
    "ModelRegistry",
    "morph_map",
    "registry",
]
