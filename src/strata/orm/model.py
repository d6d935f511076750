"""
Declarative active-record base model.

Manifesto:
    A model instance is an attribute map plus a snapshot of what the
    database last held.  Everything else (dirty tracking, casts,
    serialisation, persistence) is derived from those two dicts and the
    class's :class:`~strata.orm.registry.EntityDescriptor`, which is
    built once in ``__init_subclass__``.

    - **Explicit database:** instances carry the :class:`Database` they
      were loaded from or created through; there is no global connection
    - **Safe mass assignment:** ``fill()`` drops keys the model does not
      allow; ``force_fill()`` is the escape hatch
    - **Minimal writes:** ``save()`` updates dirty columns only and sends
      nothing for a clean model

Architecture:
    ::

        class Book(Model)  ──__init_subclass__──►  EntityDescriptor
            fillable / casts / @accessor / @mutator     │ registry
            author = belongs_to("Author")               ▼
                                                     ModelQuery(Book, db)
        book.title      → get_attribute → accessor │ cast │ raw
        book.title = x  → set_attribute → mutator  → attributes
        book.save()     → INSERT (new) │ UPDATE dirty (existing)
        book.author     → lazy relation load (one query, then cached)

Examples:
    >>> class Book(Model):
    ...     fillable = ["title", "year", "author_id"]
    ...     casts = {"year": "int"}
    ...     author = belongs_to("Author")
    >>> books = db.repository(Book)
    >>> book = books.create({"title": "Dune", "year": 1965})
    >>> book.year = 1966
    >>> book.get_dirty()
    {'year': 1966}
    >>> book.save()
    True

Tags:
    orm, active-record, model, attributes, dirty-tracking, strata
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, ClassVar

from strata.core.errors import ConfigError, MassAssignmentError, ModelNotFoundError, RelationNotFoundError
from strata.core.settings import get_settings

from .collection import Collection
from .naming import table_name_for
from .query import ModelQuery
from .registry import EntityDescriptor, registry
from .relations.base import RelationDescriptor
from .soft_deletes import SCOPE_NAME, SoftDeletingScope, restore, soft_delete

if TYPE_CHECKING:
    from strata.core.database import Database
    from strata.query.builder import QueryBuilder

CASTS = frozenset({"int", "float", "bool", "str", "json", "datetime", "date", "decimal"})

_INTERNAL = frozenset({"attributes", "original", "exists", "was_recently_created", "pivot"})


def accessor(column: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Mark a method as the read accessor for *column*.

    The method receives the raw stored value (``None`` for computed
    attributes listed in ``appends``).
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        fn.__strata_accessor__ = column  # type: ignore[attr-defined]
        return fn

    return decorator


def mutator(column: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Mark a method as the write mutator for *column*; it returns the value to store."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        fn.__strata_mutator__ = column  # type: ignore[attr-defined]
        return fn

    return decorator


class Model:
    """Base class for database-backed entities."""

    table: ClassVar[str | None] = None
    primary_key: ClassVar[str] = "id"
    key_type: ClassVar[str] = "int"
    incrementing: ClassVar[bool] = True
    timestamps: ClassVar[bool] = True
    created_at_column: ClassVar[str] = "created_at"
    updated_at_column: ClassVar[str] = "updated_at"
    soft_deletes: ClassVar[bool] = False
    deleted_at_column: ClassVar[str] = "deleted_at"
    fillable: ClassVar[list[str]] = []
    guarded: ClassVar[list[str]] = ["*"]
    hidden: ClassVar[list[str]] = []
    visible: ClassVar[list[str]] = []
    appends: ClassVar[list[str]] = []
    casts: ClassVar[dict[str, str]] = {}
    morph_class: ClassVar[str | None] = None
    date_format: ClassVar[str] = "%Y-%m-%d %H:%M:%S"

    __descriptor__: ClassVar[EntityDescriptor]

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        own = cls.__dict__
        if own.get("fillable") and own.get("guarded"):
            raise MassAssignmentError(
                f"{cls.__name__} declares both fillable and guarded; declare exactly one"
            ).with_context(model=cls.__name__)
        if own.get("__abstract__", False):
            return
        cls.table = own.get("table") or table_name_for(cls.__name__)
        cls.__descriptor__ = _build_descriptor(cls)
        registry.register(cls)

    def __init__(self, attributes: Mapping[str, Any] | None = None, *, db: Database | None = None, **values: Any):
        if "__descriptor__" not in type(self).__dict__:
            raise ConfigError(f"{type(self).__name__} is abstract and cannot be instantiated")
        self.attributes: dict[str, Any] = {}
        self.original: dict[str, Any] = {}
        self.exists = False
        self.was_recently_created = False
        self.pivot: Any = None
        self._relations: dict[str, Any] = {}
        self._changes: dict[str, Any] = {}
        self._db = db
        self._force_deleting = False
        if attributes or values:
            self.fill({**(attributes or {}), **values})

    # ------------------------------------------------------------------
    # Class-level configuration
    # ------------------------------------------------------------------

    @classmethod
    def descriptor(cls) -> EntityDescriptor:
        try:
            return cls.__dict__["__descriptor__"]
        except KeyError:
            raise ConfigError(f"{cls.__name__} is abstract and has no table") from None

    @classmethod
    def query(cls, db: Database) -> ModelQuery:
        """Scoped query for this model on *db*."""
        return ModelQuery(cls, db)

    @classmethod
    def qualified_column(cls, column: str) -> str:
        return column if "." in column else f"{cls.table}.{column}"

    @classmethod
    def qualified_key_name(cls) -> str:
        return cls.qualified_column(cls.primary_key)

    @classmethod
    def get_morph_class(cls) -> str:
        return registry.morph_class_for(cls)

    @classmethod
    def get_relation_descriptor(cls, name: str) -> RelationDescriptor:
        relation = cls.descriptor().relations.get(name)
        if relation is None:
            raise RelationNotFoundError(cls.__name__, name)
        return relation

    @classmethod
    def add_global_scope(cls, name: str, scope: Any) -> None:
        """Register *scope* (callable ``(builder, model_cls)`` or object with ``apply``)."""
        cls.descriptor().global_scopes[name] = scope

    @classmethod
    def listen(cls, event: str, callback: Callable[[Any], Any] | None = None) -> Any:
        """Register a lifecycle listener; usable as ``@Book.listen("saving")``."""
        if callback is None:
            return lambda fn: cls.descriptor().events.listen(event, fn)
        return cls.descriptor().events.listen(event, callback)

    @classmethod
    def observe(cls, observer: Any) -> None:
        cls.descriptor().events.observe(observer)

    @classmethod
    def new_from_builder(cls, row: Mapping[str, Any], db: Database | None = None) -> Model:
        """Instance for a fetched row: raw attributes, ``exists`` set."""
        model = cls(db=db)
        model.attributes = dict(row)
        model.exists = True
        model.sync_original()
        return model

    @staticmethod
    def fresh_timestamp() -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)

    # ------------------------------------------------------------------
    # Database handle and queries
    # ------------------------------------------------------------------

    def get_db(self) -> Database:
        if self._db is None:
            raise ConfigError(
                f"{type(self).__name__} has no database; create it through a Repository or pass db="
            )
        return self._db

    def set_db(self, db: Database) -> Model:
        self._db = db
        return self

    def new_query(self) -> ModelQuery:
        return ModelQuery(type(self), self.get_db())

    def new_query_without_scopes(self) -> ModelQuery:
        return self.new_query().without_global_scopes()

    def new_base_query(self) -> QueryBuilder:
        """Plain builder on this model's table, without any scope."""
        return self.get_db().table(self.table)

    def new_instance(self, attributes: Mapping[str, Any] | None = None, exists: bool = False) -> Model:
        model = type(self)(attributes, db=self._db)
        model.exists = exists
        return model

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def get_key(self) -> Any:
        return self.attributes.get(self.primary_key)

    def get_key_name(self) -> str:
        return self.primary_key

    def _key_for_save(self) -> Any:
        return self.original.get(self.primary_key, self.get_key())

    # ------------------------------------------------------------------
    # Attribute access
    # ------------------------------------------------------------------

    def __getattr__(self, key: str) -> Any:
        if key.startswith("_") or key in _INTERNAL:
            raise AttributeError(key)
        descriptor = self.descriptor()
        if key in self.attributes or key in descriptor.accessors or key in self._relations:
            return self.get_attribute(key)
        # Declared columns read as None until set or loaded.
        if key == descriptor.primary_key or key in descriptor.fillable or key in descriptor.casts:
            return None
        raise AttributeError(f"{type(self).__name__!r} has no attribute or column {key!r}")

    def __setattr__(self, key: str, value: Any) -> None:
        if key.startswith("_") or key in _INTERNAL:
            object.__setattr__(self, key, value)
            return
        class_attr = getattr(type(self), key, None)
        if isinstance(class_attr, RelationDescriptor):
            self.set_relation(key, value)
        elif class_attr is not None or hasattr(type(self), key):
            object.__setattr__(self, key, value)
        else:
            self.set_attribute(key, value)

    def __getitem__(self, key: str) -> Any:
        return self.get_attribute(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.set_attribute(key, value)

    def __delitem__(self, key: str) -> None:
        self.attributes.pop(key, None)
        self._relations.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self.attributes or key in self._relations

    def get_attribute(self, key: str) -> Any:
        """Accessor, then cast, then raw value; loaded or lazy relations last."""
        descriptor = self.descriptor()
        if key in descriptor.accessors:
            return getattr(self, descriptor.accessors[key])(self.attributes.get(key))
        if key in self.attributes:
            return self._cast(key, self.attributes[key])
        if key in self._relations:
            return self._relations[key]
        if key in descriptor.relations:
            return self.get_relation_value(key)
        return None

    def set_attribute(self, key: str, value: Any) -> Model:
        descriptor = self.descriptor()
        if key in descriptor.mutators:
            value = getattr(self, descriptor.mutators[key])(value)
        self.attributes[key] = self._to_storage(key, value)
        return self

    def get_casts(self) -> dict[str, str]:
        return dict(self.descriptor().casts)

    def _cast(self, key: str, value: Any) -> Any:
        cast = self.descriptor().casts.get(key)
        if value is None or cast is None:
            return value
        if cast == "int":
            return int(value)
        if cast == "float":
            return float(value)
        if cast == "bool":
            return bool(value)
        if cast == "str":
            return str(value)
        if cast == "decimal":
            return value if isinstance(value, Decimal) else Decimal(str(value))
        if cast == "json":
            return json.loads(value) if isinstance(value, (str, bytes)) else value
        if cast == "datetime":
            return self._as_datetime(value)
        if cast == "date":
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, date):
                return value
            return date.fromisoformat(str(value)[:10])
        return value

    def _as_datetime(self, value: Any) -> datetime:
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        try:
            return datetime.strptime(str(value), self.date_format)
        except ValueError:
            return datetime.fromisoformat(str(value))

    def _to_storage(self, key: str, value: Any) -> Any:
        cast = self.descriptor().casts.get(key)
        if value is None or cast is None:
            return value
        if cast == "json" and not isinstance(value, (str, bytes)):
            return json.dumps(value)
        if cast == "datetime" and isinstance(value, date):
            return self._as_datetime(value).strftime(self.date_format)
        if cast == "date" and isinstance(value, date):
            return (value.date() if isinstance(value, datetime) else value).isoformat()
        return value

    # ------------------------------------------------------------------
    # Mass assignment
    # ------------------------------------------------------------------

    def is_fillable(self, key: str) -> bool:
        descriptor = self.descriptor()
        if descriptor.fillable:
            return key in descriptor.fillable
        if "*" in descriptor.guarded:
            return False
        return key not in descriptor.guarded

    def totally_guarded(self) -> bool:
        descriptor = self.descriptor()
        return not descriptor.fillable and "*" in descriptor.guarded

    def fill(self, attributes: Mapping[str, Any]) -> Model:
        """Assign allowed keys; disallowed keys are dropped."""
        totally_guarded = self.totally_guarded()
        for key, value in attributes.items():
            if self.is_fillable(key):
                self.set_attribute(key, value)
            elif totally_guarded and get_settings().strict_mass_assignment:
                raise MassAssignmentError(
                    f"Add [{key}] to fillable to allow mass assignment on {type(self).__name__}"
                ).with_context(model=type(self).__name__, attribute=key)
        return self

    def force_fill(self, attributes: Mapping[str, Any]) -> Model:
        for key, value in attributes.items():
            self.set_attribute(key, value)
        return self

    # ------------------------------------------------------------------
    # Dirty tracking
    # ------------------------------------------------------------------

    def get_original(self, key: str | None = None, default: Any = None) -> Any:
        if key is None:
            return dict(self.original)
        return self.original.get(key, default)

    def sync_original(self) -> Model:
        self.original = dict(self.attributes)
        return self

    def get_dirty(self) -> dict[str, Any]:
        return {
            key: value
            for key, value in self.attributes.items()
            if key not in self.original or not self._original_is_equivalent(key)
        }

    def is_dirty(self, *columns: str) -> bool:
        dirty = self.get_dirty()
        if not columns:
            return bool(dirty)
        return any(column in dirty for column in columns)

    def is_clean(self, *columns: str) -> bool:
        return not self.is_dirty(*columns)

    def was_changed(self, *columns: str) -> bool:
        """Whether the last ``save()`` wrote any (or the given) columns."""
        if not columns:
            return bool(self._changes)
        return any(column in self._changes for column in columns)

    def get_changes(self) -> dict[str, Any]:
        return dict(self._changes)

    def _original_is_equivalent(self, key: str) -> bool:
        current, original = self.attributes[key], self.original[key]
        if current == original:
            return True
        if current is None or original is None:
            return False
        if key in self.descriptor().casts:
            try:
                return self._cast(key, current) == self._cast(key, original)
            except (TypeError, ValueError, InvalidOperation):
                return False
        return False

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def fire_event(self, event: str) -> bool:
        return self.descriptor().events.fire(event, self)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> bool:
        """INSERT a new model or UPDATE the dirty columns of an existing one.

        Returns ``False`` when a ``saving``/``creating``/``updating``
        listener cancels.
        """
        if self.fire_event("saving") is False:
            return False
        saved = self._perform_update() if self.exists else self._perform_insert()
        if saved:
            self.fire_event("saved")
            self.sync_original()
        return saved

    def _perform_insert(self) -> bool:
        if self.fire_event("creating") is False:
            return False
        if self.timestamps:
            self._update_timestamps()

        query = self.new_base_query()
        if self.incrementing and self.get_key() is None:
            self.attributes[self.primary_key] = query.insert_get_id(dict(self.attributes), self.primary_key)
        else:
            query.insert(dict(self.attributes))

        self.exists = True
        self.was_recently_created = True
        self._changes = {}
        self.fire_event("created")
        return True

    def _perform_update(self) -> bool:
        if not self.is_dirty():
            return True
        if self.fire_event("updating") is False:
            return False
        if self.timestamps:
            self._update_timestamps()

        dirty = self.get_dirty()
        self.new_base_query().where(self.primary_key, self._key_for_save()).update(dirty)
        self._changes = dirty
        self.fire_event("updated")
        return True

    def _update_timestamps(self) -> None:
        now = self.fresh_timestamp()
        if not self.is_dirty(self.updated_at_column):
            self.set_attribute(self.updated_at_column, now)
        if not self.exists and self.attributes.get(self.created_at_column) is None:
            self.set_attribute(self.created_at_column, now)

    def update(self, attributes: Mapping[str, Any]) -> bool:
        """``fill()`` then ``save()``; ``False`` for a model not yet persisted."""
        if not self.exists:
            return False
        return self.fill(attributes).save()

    def delete(self) -> bool:
        """Delete the row (soft when the model uses soft deletes)."""
        if not self.exists:
            return False
        if self.get_key() is None:
            raise ConfigError(f"{type(self).__name__} has no primary key value to delete by")
        if self.fire_event("deleting") is False:
            return False

        if self.soft_deletes and not self._force_deleting:
            soft_delete(self)
        else:
            self.new_base_query().where(self.primary_key, self._key_for_save()).delete()
            self.exists = False

        self.fire_event("deleted")
        return True

    def force_delete(self) -> bool:
        """Physically delete the row, bypassing soft deletes."""
        if not self.soft_deletes:
            return self.delete()
        if not self.exists:
            return False
        if self.fire_event("force_deleting") is False:
            return False
        self._force_deleting = True
        try:
            deleted = self.delete()
        finally:
            self._force_deleting = False
        if deleted:
            self.fire_event("force_deleted")
        return deleted

    def restore(self) -> bool:
        if not self.soft_deletes:
            return False
        return restore(self)

    def trashed(self) -> bool:
        return self.soft_deletes and self.attributes.get(self.deleted_at_column) is not None

    def touch(self) -> bool:
        """Bump ``updated_at`` and save."""
        if not self.timestamps:
            return False
        self.set_attribute(self.updated_at_column, self.fresh_timestamp())
        return self.save()

    def refresh(self) -> Model:
        """Reload attributes (and loaded relations) from the database."""
        if not self.exists:
            return self
        row = self.new_base_query().where(self.primary_key, self.get_key()).first()
        if row is None:
            raise ModelNotFoundError(type(self).__name__, self.get_key())
        self.attributes = dict(row)
        self.sync_original()
        loaded = [name for name in self._relations if name in self.descriptor().relations]
        self._relations = {}
        if loaded:
            self.load(*loaded)
        return self

    def fresh(self, *relations: Any) -> Model | None:
        """A newly fetched copy of this model, or ``None`` if the row is gone."""
        if not self.exists:
            return None
        query = self.new_query_without_scopes().where(self.qualified_key_name(), self.get_key())
        if relations:
            query.with_(*relations)
        return query.first()

    def replicate(self, except_: list[str] | None = None) -> Model:
        """Unsaved copy without key or timestamps."""
        excluded = {self.primary_key, *(except_ or [])}
        if self.timestamps:
            excluded.update({self.created_at_column, self.updated_at_column})
        clone = type(self)(db=self._db)
        clone.attributes = {k: v for k, v in self.attributes.items() if k not in excluded}
        clone._relations = dict(self._relations)
        return clone

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def relation(self, name: str) -> Any:
        """Relation query object for *name*, constrained to this model."""
        return type(self).get_relation_descriptor(name).make(self, self.get_db())

    def get_relation_value(self, name: str) -> Any:
        """Loaded relation value; loads it (one query) on first access."""
        if name not in self._relations:
            self._relations[name] = self.relation(name).get_results()
        return self._relations[name]

    def set_relation(self, name: str, value: Any) -> Model:
        self._relations[name] = value
        return self

    def unset_relation(self, name: str) -> Model:
        self._relations.pop(name, None)
        return self

    def relation_loaded(self, name: str) -> bool:
        return name in self._relations

    def get_relations(self) -> dict[str, Any]:
        return dict(self._relations)

    def load(self, *relations: Any) -> Model:
        """Eager-load *relations* onto this model."""
        self.new_query().with_(*relations).eager_load_relations([self])
        return self

    def load_missing(self, *relations: str) -> Model:
        missing = [name for name in relations if name.split(".", 1)[0] not in self._relations]
        if missing:
            self.load(*missing)
        return self

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def attributes_to_dict(self) -> dict[str, Any]:
        """Raw attribute map, exactly as stored."""
        return dict(self.attributes)

    def to_dict(self) -> dict[str, Any]:
        """Casted attributes, appended accessors and loaded relations.

        ``visible`` (when non-empty) whitelists keys; ``hidden`` removes
        keys.
        """
        data: dict[str, Any] = {}
        for key in self.attributes:
            data[key] = self._serialize(self.get_attribute(key))
        for key in self.appends:
            data[key] = self._serialize(self.get_attribute(key))
        for name, value in self._relations.items():
            if isinstance(value, Collection):
                data[name] = value.to_list()
            elif isinstance(value, Model):
                data[name] = value.to_dict()
            else:
                data[name] = value
        if self.pivot is not None:
            data["pivot"] = self.pivot.to_dict()

        if self.visible:
            data = {k: v for k, v in data.items() if k in self.visible}
        return {k: v for k, v in data.items() if k not in self.hidden}

    def _serialize(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.strftime(self.date_format)
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, Decimal):
            return str(value)
        return value

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def is_(self, other: Any) -> bool:
        """Same class, same table, same non-null key."""
        return (
            isinstance(other, Model)
            and type(self) is type(other)
            and self.table == other.table
            and self.get_key() is not None
            and self.get_key() == other.get_key()
        )

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        return self.is_(other)

    def __hash__(self) -> int:
        return hash((type(self), self.table, self.get_key()))

    def __repr__(self) -> str:
        key = self.get_key()
        return f"<{type(self).__name__} {self.primary_key}={key!r}>" if key is not None else f"<{type(self).__name__} new>"


def _build_descriptor(cls: type[Model]) -> EntityDescriptor:
    if cls.key_type not in ("int", "str"):
        raise ConfigError(f"{cls.__name__}.key_type must be 'int' or 'str', got {cls.key_type!r}")

    casts: dict[str, str] = {}
    if cls.timestamps:
        casts[cls.created_at_column] = "datetime"
        casts[cls.updated_at_column] = "datetime"
    if cls.soft_deletes:
        casts[cls.deleted_at_column] = "datetime"
    for column, cast in cls.casts.items():
        if cast not in CASTS:
            raise ConfigError(f"{cls.__name__}.casts[{column!r}]: unknown cast {cast!r}")
        casts[column] = cast

    accessors: dict[str, str] = {}
    mutators: dict[str, str] = {}
    relations: dict[str, RelationDescriptor] = {}
    for klass in reversed(cls.__mro__):
        for name, value in vars(klass).items():
            if isinstance(value, RelationDescriptor):
                relations[name] = value
            elif callable(value):
                if hasattr(value, "__strata_accessor__"):
                    accessors[value.__strata_accessor__] = name
                if hasattr(value, "__strata_mutator__"):
                    mutators[value.__strata_mutator__] = name

    scopes: dict[str, Any] = {}
    for base in cls.__mro__[1:]:
        inherited = base.__dict__.get("__descriptor__")
        if inherited is not None:
            scopes.update(inherited.global_scopes)
            break
    if cls.soft_deletes:
        scopes[SCOPE_NAME] = SoftDeletingScope()
    else:
        scopes.pop(SCOPE_NAME, None)

    return EntityDescriptor(
        name=cls.__name__,
        table=cls.table,
        primary_key=cls.primary_key,
        key_type=cls.key_type,
        incrementing=cls.incrementing,
        timestamps=cls.timestamps,
        created_at_column=cls.created_at_column,
        updated_at_column=cls.updated_at_column,
        soft_deletes=cls.soft_deletes,
        deleted_at_column=cls.deleted_at_column,
        fillable=tuple(cls.fillable),
        guarded=tuple(cls.guarded),
        casts=casts,
        accessors=accessors,
        mutators=mutators,
        relations=relations,
        global_scopes=scopes,
    )


__all__ = [
    "CASTS",
    "Model",
    "accessor",
    "mutator",
]
