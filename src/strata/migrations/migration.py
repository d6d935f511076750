"""Migration units and discovery.

A migration is a Python file whose stem is its identifier, prefixed with
a sortable timestamp::

    migrations/
        2024_01_15_120000_create_authors_table.py
        2024_01_15_120100_create_books_table.py

Each file defines one :class:`Migration` subclass (or a module-level
``migration`` instance)::

    from strata.migrations import Migration

    class CreateBooksTable(Migration):
        def up(self, schema):
            schema.create("books", lambda t: (t.id(), t.string("title")))

        def down(self, schema):
            schema.drop_if_exists("books")
"""

from __future__ import annotations

import importlib.util
import inspect
import re
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from strata.core.errors import MigrationError

if TYPE_CHECKING:
    from strata.schema.builder import SchemaBuilder

# 2024_01_15_120000_create_books_table
IDENTIFIER_RE = re.compile(r"^\d{4}_\d{2}_\d{2}_\d{6}_[A-Za-z0-9_]+$")


class Migration:
    """One reversible schema change.

    ``within_transaction`` runs ``up``/``down`` and the ledger write in a
    single transaction, so a failed unit leaves no trace.
    """

    within_transaction: bool = True

    def up(self, schema: SchemaBuilder) -> None:
        raise NotImplementedError(f"{type(self).__name__}.up() is not implemented")

    def down(self, schema: SchemaBuilder) -> None:
        raise NotImplementedError(f"{type(self).__name__}.down() is not implemented")

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class MigrationLoader:
    """Discover migration files in one or more directories."""

    def __init__(self, paths: str | Path | Iterable[str | Path] | None = None):
        if paths is None:
            paths = []
        elif isinstance(paths, (str, Path)):
            paths = [paths]
        self.paths = [Path(p) for p in paths]

    def files(self) -> dict[str, Path]:
        """Identifier → file path, for every ``*.py`` not starting with ``_``."""
        found: dict[str, Path] = {}
        for directory in self.paths:
            if not directory.is_dir():
                continue
            for path in sorted(directory.glob("*.py")):
                if path.name.startswith("_"):
                    continue
                if path.stem in found:
                    raise MigrationError(
                        f"Duplicate migration identifier {path.stem!r} in {found[path.stem]} and {path}"
                    )
                found[path.stem] = path
        return found

    def load(self) -> dict[str, Migration]:
        """Import every discovered file and return identifier → instance."""
        return {identifier: self.load_file(identifier, path) for identifier, path in self.files().items()}

    def load_file(self, identifier: str, path: Path) -> Migration:
        module_name = f"strata_migrations.{identifier}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise MigrationError(f"Cannot import migration file {path}").with_context(migration=identifier)

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as exc:
            sys.modules.pop(module_name, None)
            raise MigrationError(
                f"Failed to import migration {identifier}: {exc}", cause=exc
            ).with_context(migration=identifier) from exc

        instance = getattr(module, "migration", None)
        if isinstance(instance, Migration):
            return instance

        classes = [
            obj
            for obj in vars(module).values()
            if inspect.isclass(obj)
            and issubclass(obj, Migration)
            and obj is not Migration
            and obj.__module__ == module_name
        ]
        if len(classes) != 1:
            raise MigrationError(
                f"Migration {identifier} must define exactly one Migration subclass, found {len(classes)}"
            ).with_context(migration=identifier)
        return classes[0]()


__all__ = [
    "IDENTIFIER_RE",
    "Migration",
    "MigrationLoader",
]
