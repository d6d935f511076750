"""
Schema grammars: blueprint → DDL statements, one class per dialect.

Manifesto:
    A ``create`` blueprint compiles to exactly one ``CREATE TABLE``
    statement followed by its ``CREATE INDEX`` statements.  A ``table``
    (alter) blueprint compiles to a sequence of ``ALTER TABLE`` /
    ``CREATE INDEX`` / ``DROP INDEX`` statements.  Anything the backend
    cannot express raises :class:`SchemaError` before any statement is
    sent.

Architecture:
    ::

        SchemaGrammar (shared: quoting, defaults, index DDL)
        ├── SQLiteSchemaGrammar      INTEGER PRIMARY KEY AUTOINCREMENT,
        │                            inline FOREIGN KEYs, no ALTER COLUMN
        └── PostgreSQLSchemaGrammar  BIGSERIAL, ALTER COLUMN ... TYPE,
                                     ADD/DROP CONSTRAINT, COMMENT ON

    DDL cannot take bound parameters, so default values and enum
    members are rendered as escaped SQL literals.

Tags:
    schema, ddl, grammar, sqlite, postgresql, strata
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from strata.core.dialect import Dialect, PostgreSQLDialect, SQLiteDialect
from strata.core.errors import SchemaError
from strata.query.expressions import Expression

from .blueprint import Blueprint, ColumnDefinition, Command, ForeignKeyDefinition


class SchemaGrammar:
    """Dialect-independent parts of DDL compilation."""

    type_map: dict[str, str] = {}

    def __init__(self, dialect: Dialect, prefix: str = ""):
        self.dialect = dialect
        self.prefix = prefix

    # ------------------------------------------------------------------
    # Quoting
    # ------------------------------------------------------------------

    def quote(self, name: str) -> str:
        return self.dialect.quote_identifier(name)

    def wrap_table(self, table: str) -> str:
        return self.quote(self.prefix + table)

    def columnize(self, columns: list[str]) -> str:
        return ", ".join(self.quote(c) for c in columns)

    def literal(self, value: Any) -> str:
        """Render a default value as a SQL literal."""
        if isinstance(value, Expression):
            return value.sql
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return self.boolean_literal(value)
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        if isinstance(value, (datetime, date)):
            value = value.isoformat(sep=" ") if isinstance(value, datetime) else value.isoformat()
        return "'" + str(value).replace("'", "''") + "'"

    def boolean_literal(self, value: bool) -> str:
        return "1" if value else "0"

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def compile(self, blueprint: Blueprint) -> list[str]:
        if blueprint.creating:
            return self.compile_create(blueprint)
        return self.compile_alter(blueprint)

    def compile_create(self, blueprint: Blueprint) -> list[str]:
        definitions = [self.column_definition(blueprint, column) for column in blueprint.columns]

        commands = blueprint.commands + blueprint.implied_commands()
        self._check_declared(blueprint, commands)
        primaries = [c for c in commands if c.name == "primary"]
        if len(primaries) > 1:
            raise SchemaError(f"Multiple primary keys defined for table {blueprint.table!r}")
        for command in primaries:
            definitions.append(f"PRIMARY KEY ({self.columnize(command.columns)})")

        for foreign in blueprint.foreign_keys:
            definitions.append(self.foreign_key_clause(foreign))

        for column in blueprint.columns:
            if column.type == "enum":
                values = ", ".join(self.literal(v) for v in column.attributes["values"])
                definitions.append(f"CHECK ({self.quote(column.name)} IN ({values}))")

        if_not_exists = "IF NOT EXISTS " if blueprint.if_not_exists else ""
        statements = [
            f"CREATE TABLE {if_not_exists}{self.wrap_table(blueprint.table)} ({', '.join(definitions)})"
        ]

        for command in commands:
            if command.name in ("unique", "index"):
                statements.append(self.compile_index(blueprint, command))
            elif command.name not in ("primary",):
                statements.extend(self.compile_command(blueprint, command))

        statements.extend(self.compile_comments(blueprint, blueprint.columns))
        return statements

    def _check_declared(self, blueprint: Blueprint, commands: list[Command]) -> None:
        declared = {column.name for column in blueprint.columns}
        keys = [(c.name, c.columns) for c in commands if c.name in ("primary", "unique", "index")]
        keys += [("foreign", f.columns) for f in blueprint.foreign_keys]
        for kind, columns in keys:
            missing = [name for name in columns if name not in declared]
            if missing:
                raise SchemaError(
                    f"{kind.capitalize()} key on {blueprint.table!r} names undeclared column(s): {', '.join(missing)}"
                )

    def compile_alter(self, blueprint: Blueprint) -> list[str]:
        table = self.wrap_table(blueprint.table)
        statements = []

        for column in blueprint.added_columns():
            statements.extend(self.compile_add_column(blueprint, column))
        for column in blueprint.changed_columns():
            statements.extend(self.compile_change(blueprint, column))
        for foreign in blueprint.foreign_keys:
            statements.extend(self.compile_add_foreign(blueprint, foreign))

        for command in blueprint.commands + blueprint.implied_commands():
            if command.name in ("unique", "index"):
                statements.append(self.compile_index(blueprint, command))
            elif command.name == "primary":
                statements.extend(self.compile_add_primary(blueprint, command))
            else:
                statements.extend(self.compile_command(blueprint, command))

        statements.extend(self.compile_comments(blueprint, blueprint.added_columns()))
        if not statements:
            raise SchemaError(f"Blueprint for {table} contains no changes")
        return statements

    def compile_command(self, blueprint: Blueprint, command: Command) -> list[str]:
        table = self.wrap_table(blueprint.table)
        if command.name == "drop_column":
            return [f"ALTER TABLE {table} DROP COLUMN {self.quote(command.columns[0])}"]
        if command.name == "rename_column":
            return [
                f"ALTER TABLE {table} RENAME COLUMN {self.quote(command.columns[0])} "
                f"TO {self.quote(command.params['to'])}"
            ]
        if command.name in ("drop_index", "drop_unique"):
            return [self.compile_drop_index(command.index)]
        if command.name == "drop_foreign":
            return self.compile_drop_foreign(blueprint, command.index)
        if command.name == "drop_primary":
            return self.compile_drop_primary(blueprint, command.index)
        raise SchemaError(f"Unknown schema command: {command.name}")

    # ------------------------------------------------------------------
    # Pieces
    # ------------------------------------------------------------------

    def column_definition(self, blueprint: Blueprint, column: ColumnDefinition) -> str:
        sql = f"{self.quote(column.name)} {self.column_type(column)}"
        if column.auto_increment:
            return sql
        return sql + self.modifiers(column)

    def column_type(self, column: ColumnDefinition) -> str:
        if column.auto_increment:
            return self.auto_increment_type(column)
        template = self.type_map.get(column.type)
        if template is None:
            raise SchemaError(f"Unsupported column type {column.type!r} for {self.dialect.name}")
        return template.format(**column.attributes)

    def auto_increment_type(self, column: ColumnDefinition) -> str:
        raise NotImplementedError

    def modifiers(self, column: ColumnDefinition) -> str:
        sql = "" if column.is_nullable else " NOT NULL"
        if column.is_use_current:
            sql += f" DEFAULT {self.dialect.now()}"
        elif column.has_default:
            sql += f" DEFAULT {self.literal(column.default_value)}"
        return sql

    def foreign_key_clause(self, foreign: ForeignKeyDefinition) -> str:
        if not foreign.on_table:
            raise SchemaError(f"Foreign key on {foreign.columns} has no referenced table; call .on(table)")
        sql = (
            f"CONSTRAINT {self.quote(foreign.constraint_name)} "
            f"FOREIGN KEY ({self.columnize(foreign.columns)}) "
            f"REFERENCES {self.wrap_table(foreign.on_table)} ({self.columnize(foreign.references_columns)})"
        )
        if foreign.on_delete_action:
            sql += f" ON DELETE {foreign.on_delete_action.upper()}"
        if foreign.on_update_action:
            sql += f" ON UPDATE {foreign.on_update_action.upper()}"
        return sql

    def compile_index(self, blueprint: Blueprint, command: Command) -> str:
        unique = "UNIQUE " if command.name == "unique" else ""
        if_not_exists = "IF NOT EXISTS " if blueprint.if_not_exists else ""
        return (
            f"CREATE {unique}INDEX {if_not_exists}{self.quote(command.index)} "
            f"ON {self.wrap_table(blueprint.table)} ({self.columnize(command.columns)})"
        )

    def compile_drop_index(self, name: str) -> str:
        return f"DROP INDEX {self.quote(name)}"

    def compile_add_column(self, blueprint: Blueprint, column: ColumnDefinition) -> list[str]:
        return [f"ALTER TABLE {self.wrap_table(blueprint.table)} ADD COLUMN {self.column_definition(blueprint, column)}"]

    def compile_change(self, blueprint: Blueprint, column: ColumnDefinition) -> list[str]:
        raise NotImplementedError

    def compile_add_foreign(self, blueprint: Blueprint, foreign: ForeignKeyDefinition) -> list[str]:
        raise NotImplementedError

    def compile_add_primary(self, blueprint: Blueprint, command: Command) -> list[str]:
        raise NotImplementedError

    def compile_drop_foreign(self, blueprint: Blueprint, name: str) -> list[str]:
        raise NotImplementedError

    def compile_drop_primary(self, blueprint: Blueprint, name: str) -> list[str]:
        raise NotImplementedError

    def compile_comments(self, blueprint: Blueprint, columns: list[ColumnDefinition]) -> list[str]:
        return []

    # ------------------------------------------------------------------
    # Whole-table statements
    # ------------------------------------------------------------------

    def compile_drop(self, table: str) -> str:
        return f"DROP TABLE {self.wrap_table(table)}"

    def compile_drop_if_exists(self, table: str) -> str:
        return f"DROP TABLE IF EXISTS {self.wrap_table(table)}"

    def compile_rename(self, from_: str, to: str) -> str:
        return f"ALTER TABLE {self.wrap_table(from_)} RENAME TO {self.wrap_table(to)}"

    def compile_drop_all_tables(self, tables: list[str]) -> list[str]:
        """*tables* are actual (already prefixed) names."""
        return [f"DROP TABLE IF EXISTS {self.quote(t)}" for t in tables]

    def compile_disable_foreign_keys(self) -> str:
        raise NotImplementedError

    def compile_enable_foreign_keys(self) -> str:
        raise NotImplementedError


class SQLiteSchemaGrammar(SchemaGrammar):
    """SQLite DDL.

    ``after()`` is ignored (columns append), ``change()``, new foreign
    keys and primary keys on existing tables raise :class:`SchemaError`
    because SQLite's ALTER TABLE cannot express them.  ``drop_column``
    needs SQLite 3.35 or newer.
    """

    type_map = {
        "string": "VARCHAR({length})",
        "char": "VARCHAR({length})",
        "text": "TEXT",
        "integer": "INTEGER",
        "big_integer": "INTEGER",
        "small_integer": "INTEGER",
        "tiny_integer": "INTEGER",
        "boolean": "TINYINT(1)",
        "decimal": "NUMERIC({precision}, {scale})",
        "float": "FLOAT",
        "double": "DOUBLE",
        "date": "DATE",
        "datetime": "DATETIME",
        "time": "TIME",
        "timestamp": "DATETIME",
        "json": "TEXT",
        "uuid": "VARCHAR(36)",
        "enum": "VARCHAR(255)",
    }

    def auto_increment_type(self, column: ColumnDefinition) -> str:
        return "INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL"

    def compile_add_column(self, blueprint: Blueprint, column: ColumnDefinition) -> list[str]:
        if column.auto_increment or column.is_primary:
            raise SchemaError("SQLite cannot add a primary key column to an existing table")
        if not column.is_nullable and not column.has_default and not column.is_use_current:
            raise SchemaError(
                f"SQLite cannot add NOT NULL column {column.name!r} without a default; "
                "make it nullable() or give it a default()"
            )
        if column.is_use_current:
            raise SchemaError("SQLite cannot add a column with a non-constant default")
        statements = super().compile_add_column(blueprint, column)
        if column.type == "enum":
            raise SchemaError("SQLite cannot add a CHECK constrained enum column to an existing table")
        return statements

    def compile_change(self, blueprint: Blueprint, column: ColumnDefinition) -> list[str]:
        raise SchemaError(f"SQLite does not support modifying column {column.name!r}")

    def compile_add_foreign(self, blueprint: Blueprint, foreign: ForeignKeyDefinition) -> list[str]:
        raise SchemaError("SQLite does not support adding foreign keys to an existing table")

    def compile_add_primary(self, blueprint: Blueprint, command: Command) -> list[str]:
        raise SchemaError("SQLite does not support adding a primary key to an existing table")

    def compile_drop_foreign(self, blueprint: Blueprint, name: str) -> list[str]:
        raise SchemaError("SQLite does not support dropping foreign keys")

    def compile_drop_primary(self, blueprint: Blueprint, name: str) -> list[str]:
        raise SchemaError("SQLite does not support dropping a primary key")

    def compile_disable_foreign_keys(self) -> str:
        return "PRAGMA foreign_keys = OFF"

    def compile_enable_foreign_keys(self) -> str:
        return "PRAGMA foreign_keys = ON"


class PostgreSQLSchemaGrammar(SchemaGrammar):
    """PostgreSQL DDL (``unsigned`` is accepted and ignored)."""

    type_map = {
        "string": "VARCHAR({length})",
        "char": "CHAR({length})",
        "text": "TEXT",
        "integer": "INTEGER",
        "big_integer": "BIGINT",
        "small_integer": "SMALLINT",
        "tiny_integer": "SMALLINT",
        "boolean": "BOOLEAN",
        "decimal": "DECIMAL({precision}, {scale})",
        "float": "REAL",
        "double": "DOUBLE PRECISION",
        "date": "DATE",
        "datetime": "TIMESTAMP(0) WITHOUT TIME ZONE",
        "time": "TIME(0) WITHOUT TIME ZONE",
        "timestamp": "TIMESTAMP(0) WITHOUT TIME ZONE",
        "json": "JSON",
        "uuid": "UUID",
        "enum": "VARCHAR(255)",
    }

    def boolean_literal(self, value: bool) -> str:
        return "TRUE" if value else "FALSE"

    def auto_increment_type(self, column: ColumnDefinition) -> str:
        base = "BIGSERIAL" if column.type == "big_integer" else "SERIAL"
        return f"{base} PRIMARY KEY"

    def compile_change(self, blueprint: Blueprint, column: ColumnDefinition) -> list[str]:
        table = self.wrap_table(blueprint.table)
        name = self.quote(column.name)
        prefix = f"ALTER TABLE {table} ALTER COLUMN {name}"
        statements = [
            f"{prefix} TYPE {self.column_type(column)} USING {name}::{self.column_type(column)}",
            f"{prefix} {'DROP' if column.is_nullable else 'SET'} NOT NULL",
        ]
        if column.is_use_current:
            statements.append(f"{prefix} SET DEFAULT {self.dialect.now()}")
        elif column.has_default:
            statements.append(f"{prefix} SET DEFAULT {self.literal(column.default_value)}")
        else:
            statements.append(f"{prefix} DROP DEFAULT")
        statements.extend(self.compile_comments(blueprint, [column]))
        return statements

    def compile_add_foreign(self, blueprint: Blueprint, foreign: ForeignKeyDefinition) -> list[str]:
        return [f"ALTER TABLE {self.wrap_table(blueprint.table)} ADD {self.foreign_key_clause(foreign)}"]

    def compile_add_primary(self, blueprint: Blueprint, command: Command) -> list[str]:
        return [
            f"ALTER TABLE {self.wrap_table(blueprint.table)} ADD CONSTRAINT {self.quote(command.index)} "
            f"PRIMARY KEY ({self.columnize(command.columns)})"
        ]

    def compile_drop_foreign(self, blueprint: Blueprint, name: str) -> list[str]:
        return [f"ALTER TABLE {self.wrap_table(blueprint.table)} DROP CONSTRAINT {self.quote(name)}"]

    def compile_drop_primary(self, blueprint: Blueprint, name: str) -> list[str]:
        return [f"ALTER TABLE {self.wrap_table(blueprint.table)} DROP CONSTRAINT {self.quote(name)}"]

    def compile_comments(self, blueprint: Blueprint, columns: list[ColumnDefinition]) -> list[str]:
        return [
            f"COMMENT ON COLUMN {self.wrap_table(blueprint.table)}.{self.quote(c.name)} "
            f"IS {self.literal(c.comment_text)}"
            for c in columns
            if c.comment_text is not None
        ]

    def compile_drop_all_tables(self, tables: list[str]) -> list[str]:
        if not tables:
            return []
        return [f"DROP TABLE IF EXISTS {', '.join(self.quote(t) for t in tables)} CASCADE"]

    def compile_disable_foreign_keys(self) -> str:
        return "SET CONSTRAINTS ALL DEFERRED"

    def compile_enable_foreign_keys(self) -> str:
        return "SET CONSTRAINTS ALL IMMEDIATE"


def get_schema_grammar(dialect: Dialect, prefix: str = "") -> SchemaGrammar:
    """Schema grammar for *dialect*."""
    if isinstance(dialect, SQLiteDialect) or dialect.name == "sqlite":
        return SQLiteSchemaGrammar(dialect, prefix)
    if isinstance(dialect, PostgreSQLDialect) or dialect.name == "postgresql":
        return PostgreSQLSchemaGrammar(dialect, prefix)
    raise SchemaError(f"No schema grammar for dialect {dialect.name!r}")


__all__ = [
    "PostgreSQLSchemaGrammar",
    "SQLiteSchemaGrammar",
    "SchemaGrammar",
    "get_schema_grammar",
]
