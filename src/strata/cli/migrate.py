"""
CLI: ``strata migrate`` — apply, revert and inspect migrations.
"""

from __future__ import annotations

import typer

from strata.cli.utils import err_console, open_migrator, output_migration_result, output_status

app = typer.Typer(no_args_is_help=True)

DatabaseOption = typer.Option(None, "--database", "-d", help="Database URL (defaults to STRATA_DATABASE_URL)")
PathOption = typer.Option(None, "--path", "-p", help="Migrations directory (defaults to STRATA_MIGRATIONS_PATH)")


@app.command()
def run(
    database: str | None = DatabaseOption,
    path: str | None = PathOption,
    pretend: bool = typer.Option(False, "--pretend", help="Print the SQL instead of executing it"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Apply every pending migration in a new batch."""
    with open_migrator(database, path) as migrator:
        result = migrator.run(pretend=pretend)
    output_migration_result(result, verb="migrate", as_json=json_out)


@app.command()
def rollback(
    step: int = typer.Option(0, "--step", "-s", min=0, help="Roll back N migrations (default: the last batch)"),
    database: str | None = DatabaseOption,
    path: str | None = PathOption,
    pretend: bool = typer.Option(False, "--pretend", help="Print the SQL instead of executing it"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Roll back the last batch, or the last N migrations with --step."""
    with open_migrator(database, path) as migrator:
        if step:
            result = migrator.rollback(step, pretend=pretend)
        else:
            result = migrator.rollback_batch(pretend=pretend)
    output_migration_result(result, verb="roll back", as_json=json_out)


@app.command()
def reset(
    database: str | None = DatabaseOption,
    path: str | None = PathOption,
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Roll back every applied migration."""
    with open_migrator(database, path) as migrator:
        result = migrator.reset()
    output_migration_result(result, verb="roll back", as_json=json_out)


@app.command()
def refresh(
    database: str | None = DatabaseOption,
    path: str | None = PathOption,
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Roll back every migration, then run them all again."""
    with open_migrator(database, path) as migrator:
        result = migrator.refresh()
    output_migration_result(result, verb="migrate", as_json=json_out)


@app.command()
def fresh(
    database: str | None = DatabaseOption,
    path: str | None = PathOption,
    force: bool = typer.Option(False, "--force", "-f", help="Skip the confirmation prompt"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Drop every table, then run all migrations."""
    if not force and not typer.confirm("Drop ALL tables and re-run every migration?"):
        err_console.print("[yellow]Aborted.[/yellow]")
        raise typer.Exit(code=1)
    with open_migrator(database, path) as migrator:
        result = migrator.fresh()
    output_migration_result(result, verb="migrate", as_json=json_out)


@app.command()
def status(
    database: str | None = DatabaseOption,
    path: str | None = PathOption,
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Show which migrations have run."""
    with open_migrator(database, path) as migrator:
        rows = migrator.status()
    output_status(rows, as_json=json_out)
