"""
Root Typer application for the strata CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from strata.cli.migrate import app as migrate_app

app = Typer(
    name="strata",
    help="strata — relational data layer: migrations and schema tooling.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from strata import __version__

        typer.echo(f"strata {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every statement."),
) -> None:
    """strata CLI — run, roll back and inspect migrations."""
    from strata.core.logging import configure_logging
    from strata.core.settings import get_settings

    settings = get_settings()
    configure_logging(
        level="DEBUG" if verbose else settings.log_level,
        json_format=settings.log_format == "json",
    )


app.add_typer(migrate_app, name="migrate", help="Database migrations.")
