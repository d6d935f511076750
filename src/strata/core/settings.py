"""
Centralized settings for strata.

:class:`StrataSettings` is a single, validated, cached source of truth
for the data layer's configuration.  Every field can be set through a
``STRATA_*`` environment variable (e.g. ``STRATA_TABLE_PREFIX=wp_``) or
a ``.env`` file.

Examples:
    >>> from strata.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.migrations_table
    'migrations'

Tags:
    strata, configuration, settings, pydantic, caching, validation
"""

from __future__ import annotations

import re
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PREFIX_RE = re.compile(r"^[A-Za-z0-9_]*$")


class StrataSettings(BaseSettings):
    """strata configuration, read from ``STRATA_*`` env vars and ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="STRATA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str = Field(default="memory", description="memory, sqlite:///path, or postgresql:// URL")
    table_prefix: str = Field(default="", description="Prepended to every table name: {prefix}{table}")
    pool_size: int = Field(default=5, ge=1)
    pool_timeout: float = Field(default=30.0, gt=0)

    # ── Migrations ───────────────────────────────────────────────
    migrations_table: str = Field(default="migrations")
    migrations_path: str = Field(default="migrations")

    # ── Models ───────────────────────────────────────────────────
    strict_mass_assignment: bool = Field(
        default=False,
        description="Raise MassAssignmentError when attributes are mass-assigned to a fully guarded model",
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @field_validator("table_prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        if not _PREFIX_RE.match(value):
            raise ValueError(f"table_prefix must contain only letters, digits and underscores: {value!r}")
        return value

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("console", "json"):
            raise ValueError(f"log_format must be 'console' or 'json', got {value!r}")
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value!r}")
        return value


@lru_cache(maxsize=1)
def get_settings() -> StrataSettings:
    """Return the process-wide settings (cached)."""
    return StrataSettings()


def reset_settings() -> None:
    """Clear the settings cache (tests, reloads)."""
    get_settings.cache_clear()


__all__ = [
    "StrataSettings",
    "get_settings",
    "reset_settings",
]
