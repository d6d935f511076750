"""
Model queries: scoped builders that hydrate rows into models.

Manifesto:
    A :class:`ModelQuery` is a :class:`~strata.query.builder.QueryBuilder`
    on the model's table plus three things the plain builder does not
    know about: global scopes, local scopes and eager loads.  Global
    scopes (soft deletes among them) are applied to a clone at execution
    time, so every terminal call (reads, aggregates, pagination counts,
    ``where_has`` subqueries) sees them and the query object itself stays
    reusable.

Architecture:
    ::

        ModelQuery(Book, db)
          .where(...) / .order_by(...)    ──► forwarded to QueryBuilder
          .published()                    ──► Book.scope_published(query)
          .with_("author", "tags.posts")  ──► eager-load plan
          .get()
             │ to_base(): clone + global scopes
             ▼
          rows ─► Book.new_from_builder ─► Collection
             │
             └─ for each eager relation (one query each):
                  add_eager_constraints(models) → get_eager() → match()

        Repository(db, Book)  ── create / find / first_or_create / destroy

Examples:
    >>> books = db.repository(Book)
    >>> books.query().where("year", ">", 1990).with_("author").get()
    Collection([<Book id=3>, <Book id=4>])
    >>> books.query().where_has("tags", lambda q: q.where("name", "sci-fi")).count()
    2

Tags:
    orm, query, scopes, eager-loading, repository, strata
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

from strata.core.errors import ModelNotFoundError, QueryBuildError
from strata.query.expressions import validate_operator
from strata.query.pagination import Page, validate_page

from .collection import Collection
from .soft_deletes import SCOPE_NAME, SoftDeletingScope

if TYPE_CHECKING:
    from strata.core.cancellation import CancellationToken
    from strata.core.database import Database
    from strata.query.builder import QueryBuilder

    from .model import Model

# Builder methods that only add constraints; forwarded and chained.
_PASSTHROUGH = frozenset(
    {
        "where",
        "or_where",
        "where_not",
        "or_where_not",
        "where_in",
        "or_where_in",
        "where_not_in",
        "or_where_not_in",
        "where_null",
        "or_where_null",
        "where_not_null",
        "or_where_not_null",
        "where_between",
        "or_where_between",
        "where_not_between",
        "where_column",
        "or_where_column",
        "where_raw",
        "or_where_raw",
        "where_exists",
        "or_where_exists",
        "where_not_exists",
        "join",
        "left_join",
        "right_join",
        "cross_join",
        "group_by",
        "having",
        "or_having",
        "having_raw",
        "order_by",
        "order_by_desc",
        "order_by_raw",
        "latest",
        "oldest",
        "reorder",
        "limit",
        "take",
        "offset",
        "skip",
        "for_page",
        "distinct",
        "select",
        "add_select",
        "select_raw",
        "select_sub",
    }
)

EagerLoads = dict[str, "Callable[[Any], Any] | None"]


class ModelQuery:
    """Query for one model class on one database."""

    def __init__(self, model: type[Model], db: Database):
        self.model = model
        self.db = db
        self.builder: QueryBuilder = db.table(model.table)
        self._eager: EagerLoads = {}
        self._scopes: dict[str, Any] = dict(model.descriptor().global_scopes)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_") or name in ("model", "db", "builder"):
            raise AttributeError(name)
        if name in _PASSTHROUGH:
            method = getattr(self.builder, name)

            def forward(*args: Any, **kwargs: Any) -> ModelQuery:
                method(*args, **kwargs)
                return self

            return forward
        if hasattr(self.model, f"scope_{name}"):
            return lambda *args, **kwargs: self.scope(name, *args, **kwargs)
        raise AttributeError(f"ModelQuery for {self.model.__name__} has no method or scope {name!r}")

    def clone(self) -> ModelQuery:
        copy = ModelQuery.__new__(ModelQuery)
        copy.model = self.model
        copy.db = self.db
        copy.builder = self.builder.clone()
        copy._eager = dict(self._eager)
        copy._scopes = dict(self._scopes)
        return copy

    def aliased(self, alias: str) -> ModelQuery:
        """Read the model's table as *alias*; scopes qualify columns with it."""
        self.builder.from_(f"{self.model.table} as {alias}")
        return self

    def qualify(self, column: str) -> str:
        return self.builder.qualify(column)

    def with_token(self, token: CancellationToken | None) -> ModelQuery:
        self.builder.with_token(token)
        return self

    def when(self, condition: Any, callback: Callable[[ModelQuery], Any]) -> ModelQuery:
        if condition:
            callback(self)
        return self

    # ------------------------------------------------------------------
    # Scopes
    # ------------------------------------------------------------------

    def scope(self, name: str, *args: Any, **kwargs: Any) -> ModelQuery:
        """Apply the model's ``scope_<name>(query, *args)`` local scope."""
        method = getattr(self.model(db=self.db), f"scope_{name}", None)
        if method is None:
            raise QueryBuildError(f"Call to undefined scope [{name}] on model [{self.model.__name__}]")
        result = method(self, *args, **kwargs)
        return result if isinstance(result, ModelQuery) else self

    def without_global_scope(self, name: str) -> ModelQuery:
        self._scopes.pop(name, None)
        return self

    def without_global_scopes(self, *names: str) -> ModelQuery:
        if not names:
            self._scopes.clear()
        for name in names:
            self._scopes.pop(name, None)
        return self

    def with_trashed(self) -> ModelQuery:
        return self.without_global_scope(SCOPE_NAME)

    def only_trashed(self) -> ModelQuery:
        if self.model.soft_deletes:
            self._scopes[SCOPE_NAME] = SoftDeletingScope(only_trashed=True)
        return self

    def to_base(self) -> QueryBuilder:
        """Builder clone with every global scope applied."""
        builder = self.builder.clone()
        for scope in self._scopes.values():
            if builder.descriptor.has_or_predicates:
                builder.group_existing_wheres()
            if hasattr(scope, "apply"):
                scope.apply(builder, self.model)
            else:
                scope(builder, self.model)
        return builder

    def _select_base(self, builder: QueryBuilder) -> QueryBuilder:
        if not builder.descriptor.columns:
            builder.select(builder.qualify("*"))
        return builder

    def to_sql(self) -> tuple[str, list[Any]]:
        return self._select_base(self.to_base()).to_sql()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def hydrate(self, rows: Iterable[Mapping[str, Any]]) -> Collection:
        return Collection(self.model.new_from_builder(row, self.db) for row in rows)

    def get(self, *columns: Any) -> Collection:
        """Hydrated models (an empty collection when nothing matches)."""
        builder = self.to_base()
        if columns:
            builder.select(*columns)
        else:
            self._select_base(builder)
        models = self.hydrate(builder.get())
        if models and self._eager:
            self.eager_load_relations(models)
        return models

    def first(self, *columns: Any) -> Model | None:
        query = self.clone()
        query.builder.limit(1)
        return query.get(*columns).first()

    def first_or_fail(self, *columns: Any) -> Model:
        model = self.first(*columns)
        if model is None:
            raise ModelNotFoundError(self.model.__name__)
        return model

    def find(self, id: Any, *columns: Any) -> Any:
        if isinstance(id, (list, tuple, set)):
            return self.find_many(id, *columns)
        query = self.clone()
        query.builder.where(self.model.qualified_key_name(), "=", id)
        return query.first(*columns)

    def find_many(self, ids: Iterable[Any], *columns: Any) -> Collection:
        ids = list(ids)
        if not ids:
            return Collection()
        query = self.clone()
        query.builder.where_in(self.model.qualified_key_name(), ids)
        return query.get(*columns)

    def find_or_fail(self, id: Any, *columns: Any) -> Any:
        if isinstance(id, (list, tuple, set)):
            ids = list(dict.fromkeys(id))
            models = self.find_many(ids, *columns)
            if len(models) != len(ids):
                found = {str(key) for key in models.model_keys()}
                raise ModelNotFoundError(self.model.__name__, [i for i in ids if str(i) not in found])
            return models
        model = self.find(id, *columns)
        if model is None:
            raise ModelNotFoundError(self.model.__name__, id)
        return model

    def value(self, column: str) -> Any:
        return self.to_base().value(column)

    def pluck(self, column: str, key: str | None = None) -> list[Any] | dict[Any, Any]:
        return self.to_base().pluck(column, key)

    def paginate(self, per_page: int = 15, page: int = 1) -> Page[Model]:
        validate_page(page, per_page)
        total = self.to_base().get_count_for_pagination()
        items = self.clone().for_page(page, per_page).get() if total else Collection()
        return Page(items=items, total=total, per_page=per_page, current_page=page)

    def chunk(self, size: int, callback: Callable[[Collection], Any]) -> bool:
        """Feed hydrated models to *callback* in primary-key order."""

        def fetch(query: QueryBuilder) -> Collection:
            models = self.hydrate(query.get())
            if models and self._eager:
                self.eager_load_relations(models)
            return models

        base = self._select_base(self.to_base())
        return base._chunk_by(size, callback, self.model.qualified_key_name(), fetch)

    # ------------------------------------------------------------------
    # Aggregates (never hydrate)
    # ------------------------------------------------------------------

    def count(self, column: str = "*") -> int:
        return self.to_base().count(column)

    def sum(self, column: str) -> Any:
        return self.to_base().sum(column)

    def avg(self, column: str) -> Any:
        return self.to_base().avg(column)

    average = avg

    def min(self, column: str) -> Any:
        return self.to_base().min(column)

    def max(self, column: str) -> Any:
        return self.to_base().max(column)

    def exists(self) -> bool:
        return self.to_base().exists()

    def doesnt_exist(self) -> bool:
        return not self.exists()

    # ------------------------------------------------------------------
    # Writes (no model events)
    # ------------------------------------------------------------------

    def update(self, values: Mapping[str, Any]) -> int:
        return self.to_base().update(self._with_updated_at(values))

    def increment(self, column: str, amount: Any = 1, extra: Mapping[str, Any] | None = None) -> int:
        return self.to_base().increment(column, amount, self._with_updated_at(extra or {}))

    def decrement(self, column: str, amount: Any = 1, extra: Mapping[str, Any] | None = None) -> int:
        return self.to_base().decrement(column, amount, self._with_updated_at(extra or {}))

    def delete(self) -> int:
        """Delete matching rows; soft-deleting models get ``deleted_at`` stamped."""
        if self.model.soft_deletes:
            now = self.model.fresh_timestamp()
            return self.to_base().update(self._with_updated_at({self.model.deleted_at_column: now}, now))
        return self.to_base().delete()

    def force_delete(self) -> int:
        return self.to_base().delete()

    def restore(self) -> int:
        if not self.model.soft_deletes:
            return 0
        query = self.clone().with_trashed()
        return query.to_base().update(self._with_updated_at({self.model.deleted_at_column: None}))

    def _with_updated_at(self, values: Mapping[str, Any], now: Any = None) -> dict[str, Any]:
        values = dict(values)
        if self.model.timestamps and self.model.updated_at_column not in values:
            values[self.model.updated_at_column] = now or self.model.fresh_timestamp()
        return values

    # ------------------------------------------------------------------
    # Eager loading
    # ------------------------------------------------------------------

    def with_(self, *relations: Any) -> ModelQuery:
        """Eager-load relations: names, dotted paths, or ``{name: constraint}``."""
        for item in relations:
            if isinstance(item, Mapping):
                for name, constraint in item.items():
                    self._add_eager(name, constraint)
            elif isinstance(item, (list, tuple)):
                self.with_(*item)
            else:
                self._add_eager(item, None)
        return self

    def without(self, *names: str) -> ModelQuery:
        for name in names:
            for key in [k for k in self._eager if k == name or k.startswith(name + ".")]:
                del self._eager[key]
        return self

    def get_eager_loads(self) -> EagerLoads:
        return dict(self._eager)

    def _add_eager(self, name: str, constraint: Callable[[Any], Any] | None) -> None:
        segments = name.split(".")
        self.model.get_relation_descriptor(segments[0])
        for i in range(1, len(segments)):
            self._eager.setdefault(".".join(segments[:i]), None)
        self._eager[name] = constraint

    def eager_load_relations(self, models: list[Model]) -> list[Model]:
        for name, constraint in self._eager.items():
            if "." not in name:
                self._eager_load_relation(models, name, constraint)
        return models

    def _eager_load_relation(self, models: list[Model], name: str, constraint: Callable[[Any], Any] | None) -> None:
        relation = self._blank_relation(name)
        nested = {key[len(name) + 1:]: c for key, c in self._eager.items() if key.startswith(name + ".")}
        if nested:
            relation.with_nested(nested)
        relation.add_eager_constraints(models)
        if constraint is not None:
            constraint(relation)
        relation.init_relation(models, name)
        relation.match(models, relation.get_eager(), name)

    def _blank_relation(self, name: str) -> Any:
        descriptor = self.model.get_relation_descriptor(name)
        return descriptor.make(self.model(db=self.db), self.db, constrain=False)

    # ------------------------------------------------------------------
    # Relationship existence
    # ------------------------------------------------------------------

    def has(
        self,
        relation: str,
        operator: str = ">=",
        count: int = 1,
        boolean: str = "and",
        callback: Callable[[ModelQuery], Any] | None = None,
    ) -> ModelQuery:
        """Constrain to models with (a number of) related rows.

        ``has("books")`` compiles to ``EXISTS (...)``; other counts use a
        correlated ``(SELECT COUNT(*) ...) op n``.  Dotted paths nest.
        """
        if "." in relation:
            first, rest = relation.split(".", 1)
            return self.has(first, ">=", 1, boolean, lambda q: q.has(rest, operator, count, "and", callback))

        operator = validate_operator(operator)
        sub = self._blank_relation(relation).get_relation_existence_query(self)
        if callback is not None:
            callback(sub)
        builder = sub.to_base()

        if (operator, count) in ((">=", 1), (">", 0)):
            self.builder.where_exists(builder, boolean)
        elif (operator, count) in (("<", 1), ("=", 0), ("<=", 0)):
            self.builder.where_exists(builder, boolean, negated=True)
        else:
            builder.descriptor.columns = []
            builder.select_raw("COUNT(*)")
            sql, bindings = builder.to_sql()
            placeholder = self.db.dialect.placeholder(len(bindings))
            self.builder.where_raw(f"({sql}) {operator.upper()} {placeholder}", [*bindings, count], boolean)
        return self

    def or_has(self, relation: str, operator: str = ">=", count: int = 1) -> ModelQuery:
        return self.has(relation, operator, count, "or")

    def doesnt_have(
        self,
        relation: str,
        boolean: str = "and",
        callback: Callable[[ModelQuery], Any] | None = None,
    ) -> ModelQuery:
        return self.has(relation, "<", 1, boolean, callback)

    def or_doesnt_have(self, relation: str) -> ModelQuery:
        return self.doesnt_have(relation, "or")

    def where_has(
        self,
        relation: str,
        callback: Callable[[ModelQuery], Any] | None = None,
        operator: str = ">=",
        count: int = 1,
    ) -> ModelQuery:
        return self.has(relation, operator, count, "and", callback)

    def or_where_has(
        self,
        relation: str,
        callback: Callable[[ModelQuery], Any] | None = None,
        operator: str = ">=",
        count: int = 1,
    ) -> ModelQuery:
        return self.has(relation, operator, count, "or", callback)

    def where_doesnt_have(self, relation: str, callback: Callable[[ModelQuery], Any] | None = None) -> ModelQuery:
        return self.doesnt_have(relation, "and", callback)

    def or_where_doesnt_have(self, relation: str, callback: Callable[[ModelQuery], Any] | None = None) -> ModelQuery:
        return self.doesnt_have(relation, "or", callback)

    def with_count(self, *relations: Any) -> ModelQuery:
        """Add ``{relation}_count`` columns (``"books as total"`` renames)."""
        for item in relations:
            entries = item.items() if isinstance(item, Mapping) else [(item, None)]
            for name, constraint in entries:
                relation_name, alias = name, f"{name}_count"
                if " as " in name.lower():
                    index = name.lower().index(" as ")
                    relation_name, alias = name[:index].strip(), name[index + 4:].strip()
                sub = self._blank_relation(relation_name).get_relation_existence_query(self)
                if constraint is not None:
                    constraint(sub)
                builder = sub.to_base()
                builder.descriptor.columns = []
                builder.select_raw("COUNT(*)")
                self.builder.select_sub(builder, alias)
        return self

    def __repr__(self) -> str:
        return f"ModelQuery({self.model.__name__})"


class Repository:
    """Query factory and persistence helpers for one model class.

    ::

        authors = Repository(db, Author)
        author = authors.create({"name": "Ursula K. Le Guin"})
        authors.where("name", "like", "U%").count()
    """

    def __init__(self, db: Database, model: type[Model]):
        self.db = db
        self.model = model

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_") or name in ("db", "model"):
            raise AttributeError(name)
        return getattr(self.query(), name)

    def query(self) -> ModelQuery:
        return ModelQuery(self.model, self.db)

    def new(self, attributes: Mapping[str, Any] | None = None) -> Model:
        return self.model(attributes, db=self.db)

    def create(self, attributes: Mapping[str, Any] | None = None) -> Model:
        model = self.new(attributes)
        model.save()
        return model

    def force_create(self, attributes: Mapping[str, Any]) -> Model:
        model = self.new()
        model.force_fill(attributes)
        model.save()
        return model

    def all(self, *columns: Any) -> Collection:
        return self.query().get(*columns)

    def find(self, id: Any, *columns: Any) -> Any:
        return self.query().find(id, *columns)

    def find_many(self, ids: Iterable[Any], *columns: Any) -> Collection:
        return self.query().find_many(ids, *columns)

    def find_or_fail(self, id: Any, *columns: Any) -> Any:
        return self.query().find_or_fail(id, *columns)

    def first_or_new(self, attributes: Mapping[str, Any], values: Mapping[str, Any] | None = None) -> Model:
        found = self.query().where(dict(attributes)).first()
        if found is not None:
            return found
        return self.new({**attributes, **(values or {})})

    def first_or_create(self, attributes: Mapping[str, Any], values: Mapping[str, Any] | None = None) -> Model:
        model = self.first_or_new(attributes, values)
        if not model.exists:
            model.save()
        return model

    def update_or_create(self, attributes: Mapping[str, Any], values: Mapping[str, Any] | None = None) -> Model:
        model = self.first_or_new(attributes)
        model.fill(values or {})
        model.save()
        return model

    def destroy(self, *ids: Any) -> int:
        """Delete by key through each model (events fire); returns the count."""
        keys: list[Any] = []
        for id in ids:
            keys.extend(id if isinstance(id, (list, tuple, set)) else [id])
        if not keys:
            return 0
        deleted = 0
        for model in self.query().find_many(keys):
            if model.delete():
                deleted += 1
        return deleted

    def with_(self, *relations: Any) -> ModelQuery:
        return self.query().with_(*relations)

    def with_trashed(self) -> ModelQuery:
        return self.query().with_trashed()

    def only_trashed(self) -> ModelQuery:
        return self.query().only_trashed()

    def __repr__(self) -> str:
        return f"Repository({self.model.__name__})"


__all__ = [
    "ModelQuery",
    "Repository",
]
