"""
Shared pytest fixtures and configuration for strata tests.

This module provides:
- Settings cache isolation (``STRATA_*`` env vars are read per test)
- An in-memory SQLite ``db`` fixture and a statement recorder
- The ``library`` schema (authors, books, tags, comments) used by ORM tests
- A PostgreSQL handle for integration tests, skipped unless
  ``STRATA_TEST_POSTGRES_URL`` is set

Usage:
    def test_count(db, library):
        db.table("authors").insert({"name": "Le Guin"})
        assert db.table("authors").count() == 1
"""

from __future__ import annotations

import os
import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Ensure strata package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from strata.core.connection import create_database
from strata.core.database import Database
from strata.core.logging import configure_logging
from strata.core.protocols import QueryEvent
from strata.core.settings import reset_settings
from strata.orm.registry import registry


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_logging() -> None:
    """Warnings and errors only, on stderr, for the whole session."""
    configure_logging(level="WARNING", json_format=False)


@pytest.fixture(autouse=True)
def fresh_settings() -> Generator[None, None, None]:
    """Re-read settings for every test so monkeypatched env vars apply."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(autouse=True)
def clean_morph_map() -> Generator[None, None, None]:
    yield
    registry.clear_morph_map()


# =============================================================================
# Databases
# =============================================================================


@pytest.fixture
def db() -> Generator[Database, None, None]:
    """Fresh in-memory SQLite database."""
    database = create_database(":memory:")
    yield database
    database.close()


@pytest.fixture
def statements(db: Database) -> list[QueryEvent]:
    """Every statement *db* executes from the moment the fixture is requested."""
    recorded: list[QueryEvent] = []
    db.listen(recorded.append)
    return recorded


@pytest.fixture
def pg_db() -> Generator[Database, None, None]:
    url = os.environ.get("STRATA_TEST_POSTGRES_URL")
    if not url:
        pytest.skip("STRATA_TEST_POSTGRES_URL not set")
    pytest.importorskip("psycopg2")
    database = create_database(url)
    schema = database.schema()
    schema.drop_all_tables()
    yield database
    schema.drop_all_tables()
    database.close()


# =============================================================================
# Library schema
# =============================================================================


def build_library(db: Database) -> None:
    schema = db.schema()
    schema.create("authors", lambda t: (t.id(), t.string("name"), t.string("email").nullable(), t.timestamps()))
    schema.create(
        "books",
        lambda t: (
            t.id(),
            t.foreign_id("author_id").nullable().constrained().cascade_on_delete(),
            t.string("title"),
            t.integer("year").nullable(),
            t.text("meta").nullable(),
            t.timestamps(),
            t.soft_deletes(),
        ),
    )
    schema.create("tags", lambda t: (t.id(), t.string("name").unique(), t.timestamps()))
    schema.create(
        "book_tag",
        lambda t: (
            t.id(),
            t.foreign_id("book_id"),
            t.foreign_id("tag_id"),
            t.string("note").nullable(),
            t.timestamps(),
        ),
    )
    schema.create(
        "comments",
        lambda t: (t.id(), t.text("body"), t.nullable_morphs("commentable"), t.timestamps()),
    )
    schema.create(
        "taggables",
        lambda t: (t.id(), t.foreign_id("tag_id"), t.morphs("taggable")),
    )
    schema.create("profiles", lambda t: (t.id(), t.foreign_id("author_id"), t.string("bio"), t.timestamps()))


@pytest.fixture
def library(db: Database) -> Database:
    """*db* with the library tables created."""
    build_library(db)
    return db


@pytest.fixture
def pg_library(pg_db: Database) -> Database:
    """*pg_db* with the library tables created."""
    build_library(pg_db)
    return pg_db
