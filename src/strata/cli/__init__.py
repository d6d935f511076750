"""
CLI layer for strata.

Provides a Typer application whose ``migrate`` sub-commands drive the
migration runner (``strata.migrations``).  All schema logic lives in the
runner; this package handles only terminal transport: argument parsing,
coloured output and table formatting.

Entry point::

    strata migrate --help
"""

from strata.cli.app import app

__all__ = ["app"]
