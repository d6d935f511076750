"""
CLI utility helpers — output formatting and database handles.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from strata.core.connection import create_database
from strata.core.database import Database
from strata.core.errors import StrataError
from strata.core.settings import get_settings
from strata.migrations import MigrationResult, MigrationStatus, Migrator

console = Console()
err_console = Console(stderr=True)


# ── Database helpers ─────────────────────────────────────────────────────


@contextmanager
def open_migrator(database: str | None = None, path: str | None = None) -> Iterator[Migrator]:
    """Yield a :class:`Migrator`; any :class:`StrataError` exits with code 1."""
    settings = get_settings()
    db: Database | None = None
    try:
        db = create_database(database, settings=settings)
        yield db.migrator(path or settings.migrations_path, table=settings.migrations_table)
    except StrataError as exc:
        fail(exc)
    finally:
        if db is not None:
            db.close()


def fail(exc: StrataError) -> None:
    err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}")
    raise typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def output_migration_result(result: MigrationResult, *, verb: str, as_json: bool = False) -> None:
    """Render a runner outcome: one line per migration touched."""
    if as_json:
        console.print_json(
            json.dumps(
                {
                    "applied": result.applied,
                    "rolled_back": result.rolled_back,
                    "pretended": result.pretended,
                    "batch": result.batch,
                }
            )
        )
        return

    if result.nothing_to_do:
        console.print(f"[dim]Nothing to {verb}.[/dim]")
        return

    for identifier in result.rolled_back:
        console.print(f"  [yellow]Rolled back[/yellow]  {identifier}")
    for identifier in result.applied:
        console.print(f"  [green]Migrated[/green]     {identifier}")
    for sql in result.pretended:
        console.print(f"  [cyan]SQL[/cyan]  {sql}")


def output_status(rows: list[MigrationStatus], *, as_json: bool = False) -> None:
    if as_json:
        console.print_json(json.dumps([row.to_dict() for row in rows], default=str))
        return
    if not rows:
        console.print("[dim]No migrations found.[/dim]")
        return

    table = Table(title="Migrations", show_lines=False, pad_edge=False)
    table.add_column("Migration", overflow="fold")
    table.add_column("Ran?")
    table.add_column("Batch", justify="right")
    table.add_column("Applied at")
    for row in rows:
        table.add_row(
            row.identifier,
            "[green]Yes[/green]" if row.applied else "[yellow]Pending[/yellow]",
            _cell(row.batch),
            _cell(row.applied_at),
        )
    console.print(table)


def _cell(value: Any) -> str:
    return "" if value is None else str(value)
