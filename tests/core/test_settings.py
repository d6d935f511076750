"""Tests for StrataSettings and the settings cache."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from strata.core.settings import StrataSettings, get_settings, reset_settings


class TestStrataSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("STRATA_DATABASE_URL", raising=False)
        settings = StrataSettings(_env_file=None)
        assert settings.database_url == "memory"
        assert settings.table_prefix == ""
        assert settings.pool_size == 5
        assert settings.migrations_table == "migrations"
        assert settings.strict_mass_assignment is False

    def test_env_vars_are_read(self, monkeypatch):
        monkeypatch.setenv("STRATA_TABLE_PREFIX", "wp_")
        monkeypatch.setenv("STRATA_STRICT_MASS_ASSIGNMENT", "true")
        monkeypatch.setenv("STRATA_LOG_LEVEL", "debug")
        settings = StrataSettings(_env_file=None)
        assert settings.table_prefix == "wp_"
        assert settings.strict_mass_assignment is True
        assert settings.log_level == "DEBUG"

    def test_invalid_prefix_is_rejected(self):
        with pytest.raises(ValidationError):
            StrataSettings(table_prefix="wp-; DROP", _env_file=None)

    def test_invalid_log_format_is_rejected(self):
        with pytest.raises(ValidationError):
            StrataSettings(log_format="xml", _env_file=None)

    def test_pool_size_must_be_positive(self):
        with pytest.raises(ValidationError):
            StrataSettings(pool_size=0, _env_file=None)


class TestSettingsCache:
    def test_cached_until_reset(self, monkeypatch):
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv("STRATA_MIGRATIONS_TABLE", "schema_versions")
        assert get_settings().migrations_table == first.migrations_table

        reset_settings()
        assert get_settings().migrations_table == "schema_versions"
