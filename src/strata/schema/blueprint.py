"""
Blueprint: the mutable table description a migration fills in.

A :class:`Blueprint` is handed to the configuration function passed to
``SchemaBuilder.create()`` / ``SchemaBuilder.table()``.  Column methods
return a :class:`ColumnDefinition` whose modifiers chain; table-level
methods queue commands (indexes, foreign keys, drops, renames).  The
dialect's :class:`~strata.schema.grammar.SchemaGrammar` turns the
finished blueprint into DDL.

Examples:
    >>> def books(table: Blueprint) -> None:
    ...     table.id()
    ...     table.string("title")
    ...     table.string("isbn", 13).unique()
    ...     table.foreign_id("author_id").constrained().cascade_on_delete()
    ...     table.timestamps()
    ...     table.soft_deletes()
    >>> db.schema().create("books", books)

Tags:
    schema, ddl, blueprint, migrations, strata
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from strata.core.errors import SchemaError
from strata.orm.naming import plural

_MISSING = object()


class ForeignKeyAction(str, Enum):
    """Referential actions for ON DELETE / ON UPDATE."""

    CASCADE = "cascade"
    SET_NULL = "set null"
    RESTRICT = "restrict"
    NO_ACTION = "no action"


class ColumnDefinition:
    """One column plus its chainable modifiers."""

    def __init__(self, type: str, name: str, **attributes: Any):
        self.type = type
        self.name = name
        self.attributes = attributes
        self.is_nullable = False
        self.default_value: Any = _MISSING
        self.is_use_current = False
        self.is_unique = False
        self.is_index = False
        self.is_primary = False
        self.is_unsigned = attributes.pop("unsigned", False)
        self.auto_increment = attributes.pop("auto_increment", False)
        self.after_column: str | None = None
        self.comment_text: str | None = None
        self.is_change = False

    @property
    def has_default(self) -> bool:
        return self.default_value is not _MISSING

    def nullable(self, flag: bool = True) -> ColumnDefinition:
        self.is_nullable = flag
        return self

    def default(self, value: Any) -> ColumnDefinition:
        self.default_value = value
        return self

    def use_current(self) -> ColumnDefinition:
        """Default to the current timestamp."""
        self.is_use_current = True
        return self

    def unique(self) -> ColumnDefinition:
        self.is_unique = True
        return self

    def index(self) -> ColumnDefinition:
        self.is_index = True
        return self

    def primary(self) -> ColumnDefinition:
        self.is_primary = True
        return self

    def unsigned(self) -> ColumnDefinition:
        self.is_unsigned = True
        return self

    def after(self, column: str) -> ColumnDefinition:
        """Column position hint (ignored by SQLite and PostgreSQL)."""
        self.after_column = column
        return self

    def comment(self, text: str) -> ColumnDefinition:
        self.comment_text = text
        return self

    def change(self) -> ColumnDefinition:
        """Modify an existing column instead of adding one."""
        self.is_change = True
        return self

    def __repr__(self) -> str:
        return f"ColumnDefinition({self.type!r}, {self.name!r})"


@dataclass
class ForeignKeyDefinition:
    """``FOREIGN KEY (columns) REFERENCES on_table (references_columns)``."""

    columns: list[str]
    references_columns: list[str] = field(default_factory=lambda: ["id"])
    on_table: str | None = None
    on_delete_action: str | None = None
    on_update_action: str | None = None
    constraint_name: str | None = None

    def references(self, *columns: str) -> ForeignKeyDefinition:
        self.references_columns = list(columns)
        return self

    def on(self, table: str) -> ForeignKeyDefinition:
        self.on_table = table
        return self

    def name(self, name: str) -> ForeignKeyDefinition:
        self.constraint_name = name
        return self

    def on_delete(self, action: ForeignKeyAction | str) -> ForeignKeyDefinition:
        self.on_delete_action = _action(action)
        return self

    def on_update(self, action: ForeignKeyAction | str) -> ForeignKeyDefinition:
        self.on_update_action = _action(action)
        return self

    def cascade_on_delete(self) -> ForeignKeyDefinition:
        return self.on_delete(ForeignKeyAction.CASCADE)

    def null_on_delete(self) -> ForeignKeyDefinition:
        return self.on_delete(ForeignKeyAction.SET_NULL)

    def restrict_on_delete(self) -> ForeignKeyDefinition:
        return self.on_delete(ForeignKeyAction.RESTRICT)

    def cascade_on_update(self) -> ForeignKeyDefinition:
        return self.on_update(ForeignKeyAction.CASCADE)


class ForeignIdColumnDefinition(ColumnDefinition):
    """``unsigned big integer`` column that can declare its own foreign key."""

    def __init__(self, blueprint: Blueprint, name: str):
        super().__init__("big_integer", name, unsigned=True)
        self._blueprint = blueprint

    def constrained(self, table: str | None = None, column: str = "id") -> ForeignKeyDefinition:
        """Reference the conventional table: ``author_id`` → ``authors.id``."""
        if table is None:
            base = self.name[:-3] if self.name.endswith("_id") else self.name
            table = plural(base)
        return self.references(column).on(table)

    def references(self, *columns: str) -> ForeignKeyDefinition:
        return self._blueprint.foreign(self.name).references(*columns)


@dataclass
class Command:
    """Table-level schema command (index, foreign key, drop, rename)."""

    name: str
    columns: list[str] = field(default_factory=list)
    index: str | None = None
    params: dict[str, Any] = field(default_factory=dict)


class Blueprint:
    """Columns and commands describing one CREATE or ALTER TABLE."""

    def __init__(self, table: str, *, creating: bool = False, prefix: str = ""):
        self.table = table
        self.creating = creating
        self.prefix = prefix
        self.if_not_exists = False
        self.columns: list[ColumnDefinition] = []
        self.commands: list[Command] = []
        self.foreign_keys: list[ForeignKeyDefinition] = []

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    def add_column(self, type: str, name: str, **attributes: Any) -> ColumnDefinition:
        column = ColumnDefinition(type, name, **attributes)
        self.columns.append(column)
        return column

    def id(self, name: str = "id") -> ColumnDefinition:
        return self.big_increments(name)

    def increments(self, name: str) -> ColumnDefinition:
        return self.add_column("integer", name, auto_increment=True, unsigned=True)

    def big_increments(self, name: str) -> ColumnDefinition:
        return self.add_column("big_integer", name, auto_increment=True, unsigned=True)

    def string(self, name: str, length: int = 255) -> ColumnDefinition:
        return self.add_column("string", name, length=length)

    def char(self, name: str, length: int = 255) -> ColumnDefinition:
        return self.add_column("char", name, length=length)

    def text(self, name: str) -> ColumnDefinition:
        return self.add_column("text", name)

    def integer(self, name: str, *, unsigned: bool = False) -> ColumnDefinition:
        return self.add_column("integer", name, unsigned=unsigned)

    def big_integer(self, name: str, *, unsigned: bool = False) -> ColumnDefinition:
        return self.add_column("big_integer", name, unsigned=unsigned)

    def small_integer(self, name: str, *, unsigned: bool = False) -> ColumnDefinition:
        return self.add_column("small_integer", name, unsigned=unsigned)

    def tiny_integer(self, name: str, *, unsigned: bool = False) -> ColumnDefinition:
        return self.add_column("tiny_integer", name, unsigned=unsigned)

    def unsigned_integer(self, name: str) -> ColumnDefinition:
        return self.integer(name, unsigned=True)

    def unsigned_big_integer(self, name: str) -> ColumnDefinition:
        return self.big_integer(name, unsigned=True)

    def boolean(self, name: str) -> ColumnDefinition:
        return self.add_column("boolean", name)

    def decimal(self, name: str, precision: int = 8, scale: int = 2) -> ColumnDefinition:
        return self.add_column("decimal", name, precision=precision, scale=scale)

    def float(self, name: str) -> ColumnDefinition:
        return self.add_column("float", name)

    def double(self, name: str) -> ColumnDefinition:
        return self.add_column("double", name)

    def date(self, name: str) -> ColumnDefinition:
        return self.add_column("date", name)

    def datetime(self, name: str) -> ColumnDefinition:
        return self.add_column("datetime", name)

    def time(self, name: str) -> ColumnDefinition:
        return self.add_column("time", name)

    def timestamp(self, name: str) -> ColumnDefinition:
        return self.add_column("timestamp", name)

    def timestamps(self) -> None:
        """Nullable ``created_at`` and ``updated_at``."""
        self.timestamp("created_at").nullable()
        self.timestamp("updated_at").nullable()

    def soft_deletes(self, column: str = "deleted_at") -> ColumnDefinition:
        return self.timestamp(column).nullable()

    def json(self, name: str) -> ColumnDefinition:
        return self.add_column("json", name)

    def uuid(self, name: str = "uuid") -> ColumnDefinition:
        return self.add_column("uuid", name)

    def enum(self, name: str, values: list[str] | tuple[str, ...]) -> ColumnDefinition:
        """String column restricted to *values* by a CHECK constraint."""
        if not values:
            raise SchemaError(f"enum column {name!r} needs at least one value")
        return self.add_column("enum", name, values=list(values))

    def morphs(self, name: str) -> None:
        """``{name}_type`` + ``{name}_id`` with a composite index."""
        self.string(f"{name}_type")
        self.unsigned_big_integer(f"{name}_id")
        self.index([f"{name}_type", f"{name}_id"])

    def nullable_morphs(self, name: str) -> None:
        self.string(f"{name}_type").nullable()
        self.unsigned_big_integer(f"{name}_id").nullable()
        self.index([f"{name}_type", f"{name}_id"])

    def foreign_id(self, name: str) -> ForeignIdColumnDefinition:
        column = ForeignIdColumnDefinition(self, name)
        self.columns.append(column)
        return column

    # ------------------------------------------------------------------
    # Indexes and keys
    # ------------------------------------------------------------------

    def primary(self, columns: str | list[str], name: str | None = None) -> Command:
        return self._index_command("primary", columns, name)

    def unique(self, columns: str | list[str], name: str | None = None) -> Command:
        return self._index_command("unique", columns, name)

    def index(self, columns: str | list[str], name: str | None = None) -> Command:
        return self._index_command("index", columns, name)

    def foreign(self, columns: str | list[str], name: str | None = None) -> ForeignKeyDefinition:
        columns = [columns] if isinstance(columns, str) else list(columns)
        definition = ForeignKeyDefinition(
            columns=columns,
            constraint_name=name or self.create_index_name("foreign", columns),
        )
        self.foreign_keys.append(definition)
        return definition

    def _index_command(self, type: str, columns: str | list[str], name: str | None) -> Command:
        columns = [columns] if isinstance(columns, str) else list(columns)
        command = Command(type, columns, name or self.create_index_name(type, columns))
        self.commands.append(command)
        return command

    def create_index_name(self, type: str, columns: list[str]) -> str:
        """Conventional name: ``{prefix}{table}_{cols}_{type}``."""
        name = f"{self.prefix}{self.table}_{'_'.join(columns)}_{type}".lower()
        return name.replace("-", "_").replace(".", "_")

    # ------------------------------------------------------------------
    # Drops and renames
    # ------------------------------------------------------------------

    def drop_column(self, *names: str) -> None:
        for name in names:
            self.commands.append(Command("drop_column", [name]))

    def rename_column(self, from_: str, to: str) -> None:
        self.commands.append(Command("rename_column", [from_], params={"to": to}))

    def drop_index(self, name: str | list[str]) -> None:
        self.commands.append(Command("drop_index", index=self._drop_name("index", name)))

    def drop_unique(self, name: str | list[str]) -> None:
        self.commands.append(Command("drop_unique", index=self._drop_name("unique", name)))

    def drop_primary(self, name: str | list[str] | None = None) -> None:
        index = self._drop_name("primary", name) if name else f"{self.prefix}{self.table}_pkey"
        self.commands.append(Command("drop_primary", index=index))

    def drop_foreign(self, name: str | list[str]) -> None:
        self.commands.append(Command("drop_foreign", index=self._drop_name("foreign", name)))

    def drop_timestamps(self) -> None:
        self.drop_column("created_at", "updated_at")

    def drop_soft_deletes(self, column: str = "deleted_at") -> None:
        self.drop_column(column)

    def _drop_name(self, type: str, name: str | list[str]) -> str:
        # A column list means "the index created with the conventional name".
        if isinstance(name, list):
            return self.create_index_name(type, name)
        return name

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    def added_columns(self) -> list[ColumnDefinition]:
        return [c for c in self.columns if not c.is_change]

    def changed_columns(self) -> list[ColumnDefinition]:
        return [c for c in self.columns if c.is_change]

    def implied_commands(self) -> list[Command]:
        """Index commands declared on columns, e.g. ``string("isbn").unique()``."""
        commands = []
        for column in self.columns:
            for type, flag in (("unique", column.is_unique), ("index", column.is_index)):
                if flag:
                    commands.append(Command(type, [column.name], self.create_index_name(type, [column.name])))
            if column.is_primary and not column.auto_increment:
                commands.append(Command("primary", [column.name], self.create_index_name("primary", [column.name])))
        return commands

    def __repr__(self) -> str:
        return f"Blueprint({self.table!r}, creating={self.creating})"


def _action(action: ForeignKeyAction | str) -> str:
    try:
        return ForeignKeyAction(action.lower() if isinstance(action, str) else action).value
    except ValueError:
        raise SchemaError(f"Unknown foreign key action: {action!r}") from None


__all__ = [
    "Blueprint",
    "ColumnDefinition",
    "Command",
    "ForeignIdColumnDefinition",
    "ForeignKeyAction",
    "ForeignKeyDefinition",
]
