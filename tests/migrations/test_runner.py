"""Migrator: batches, rollback order, failure recovery, cancellation."""

from __future__ import annotations

import pytest

from strata.core.cancellation import CancellationToken
from strata.core.errors import MigrationCancelledError, MigrationError, SchemaError
from strata.migrations import Migration, Migrator

AUTHORS = "2024_01_15_120000_create_authors_table"
BOOKS = "2024_01_15_120100_create_books_table"
TAGS = "2024_02_01_090000_create_tags_table"


class CreateAuthors(Migration):
    def up(self, schema):
        schema.create("authors", lambda t: (t.id(), t.string("name")))

    def down(self, schema):
        schema.drop("authors")


class CreateBooks(Migration):
    def up(self, schema):
        schema.create("books", lambda t: (t.id(), t.foreign_id("author_id").constrained(), t.string("title")))

    def down(self, schema):
        schema.drop("books")


class CreateTags(Migration):
    def up(self, schema):
        schema.create("tags", lambda t: (t.id(), t.string("name").unique()))

    def down(self, schema):
        schema.drop("tags")


class CreateThenFail(Migration):
    def up(self, schema):
        schema.create("tags", lambda t: t.id())
        raise RuntimeError("disk quota exceeded")

    def down(self, schema):
        schema.drop_if_exists("tags")


@pytest.fixture
def migrator(db):
    return Migrator(db, migrations={BOOKS: CreateBooks, AUTHORS: CreateAuthors})


def tables(db) -> list[str]:
    return db.schema().get_tables()


class TestRun:
    def test_applies_pending_in_identifier_order(self, db, migrator):
        result = migrator.run()
        assert result.applied == [AUTHORS, BOOKS]
        assert result.batch == 1
        assert tables(db) == ["authors", "books", "migrations"]
        assert migrator.repository.get_ran() == [AUTHORS, BOOKS]

    def test_second_run_is_a_no_op(self, migrator):
        migrator.run()
        result = migrator.run()
        assert result.nothing_to_do
        assert result.skipped == [AUTHORS, BOOKS]
        assert result.batch is None

    def test_each_run_is_a_new_batch(self, db, migrator):
        migrator.run()
        migrator.register(TAGS, CreateTags)
        assert migrator.pending() == [TAGS]
        result = migrator.run()
        assert result.applied == [TAGS]
        assert result.batch == 2
        assert [(r.migration, r.batch) for r in migrator.repository.get_records()] == [
            (AUTHORS, 1),
            (BOOKS, 1),
            (TAGS, 2),
        ]

    def test_invalid_identifier_is_rejected(self, migrator):
        with pytest.raises(MigrationError, match="Invalid migration identifier"):
            migrator.register("create_tags", CreateTags)

    def test_register_rejects_non_migrations(self, migrator):
        with pytest.raises(MigrationError):
            migrator.register(TAGS, object())

    def test_pretend_collects_sql_without_applying(self, db, migrator):
        result = migrator.run(pretend=True)
        assert result.applied == []
        assert result.pretended[0].startswith('CREATE TABLE "authors"')
        assert any(sql.startswith('CREATE TABLE "books"') for sql in result.pretended)
        assert tables(db) == ["migrations"]
        assert migrator.pending() == [AUTHORS, BOOKS]


class TestFailure:
    def test_failed_unit_leaves_no_trace_and_run_resumes(self, db, migrator):
        migrator.register(TAGS, CreateThenFail)
        with pytest.raises(SchemaError) as exc_info:
            migrator.run()
        assert exc_info.value.context.migration == TAGS
        assert "disk quota exceeded" in exc_info.value.message

        assert migrator.repository.get_ran() == [AUTHORS, BOOKS]
        assert not db.schema().has_table("tags")

        migrator.register(TAGS, CreateTags)
        result = migrator.run()
        assert result.applied == [TAGS]
        assert result.batch == 2

    def test_schema_errors_carry_the_migration(self, migrator):
        migrator.register(TAGS, CreateAuthors)
        with pytest.raises(SchemaError) as exc_info:
            migrator.run()
        assert exc_info.value.context.migration == TAGS

    def test_unit_outside_transaction_is_not_logged_on_failure(self, db):
        class Untransacted(CreateThenFail):
            within_transaction = False

        migrator = Migrator(db, migrations={TAGS: Untransacted})
        with pytest.raises(SchemaError):
            migrator.run()
        assert migrator.repository.get_ran() == []
        # Without a transaction the DDL before the failure stays applied.
        assert db.schema().has_table("tags")


class TestCancellation:
    def test_cancel_between_units(self, db):
        token = CancellationToken()

        class CancelAfter(CreateBooks):
            def up(self, schema):
                super().up(schema)
                token.cancel("SIGTERM")

        migrator = Migrator(db, migrations={AUTHORS: CreateAuthors, BOOKS: CancelAfter, TAGS: CreateTags})
        with pytest.raises(MigrationCancelledError) as exc_info:
            migrator.run(token=token)

        assert exc_info.value.applied == [AUTHORS, BOOKS]
        assert migrator.repository.get_ran() == [AUTHORS, BOOKS]
        assert migrator.pending() == [TAGS]

    def test_cancelled_before_start_applies_nothing(self, db, migrator):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(MigrationCancelledError) as exc_info:
            migrator.run(token=token)
        assert exc_info.value.applied == []


class TestRollback:
    @pytest.fixture
    def applied(self, db, migrator):
        migrator.run()
        migrator.register(TAGS, CreateTags)
        migrator.run()
        return migrator

    def test_rollback_one_step(self, db, applied):
        result = applied.rollback()
        assert result.rolled_back == [TAGS]
        assert not db.schema().has_table("tags")

    def test_rollback_steps_in_reverse_application_order(self, db, applied):
        result = applied.rollback(steps=2)
        assert result.rolled_back == [TAGS, BOOKS]
        assert applied.repository.get_ran() == [AUTHORS]

    def test_rollback_rejects_non_positive_steps(self, applied):
        with pytest.raises(MigrationError):
            applied.rollback(steps=0)

    def test_rollback_batch(self, db, applied):
        applied.rollback_batch()
        result = applied.rollback_batch()
        assert result.rolled_back == [BOOKS, AUTHORS]
        assert tables(db) == ["migrations"]

    def test_reset(self, db, applied):
        result = applied.reset()
        assert result.rolled_back == [TAGS, BOOKS, AUTHORS]
        assert applied.repository.get_ran() == []
        assert applied.reset().nothing_to_do

    def test_refresh(self, db, applied):
        db.table("authors").insert({"name": "Le Guin"})
        result = applied.refresh()
        assert result.rolled_back == [TAGS, BOOKS, AUTHORS]
        assert result.applied == [AUTHORS, BOOKS, TAGS]
        assert result.batch == 1
        assert db.table("authors").count() == 0

    def test_fresh_drops_unknown_tables(self, db, applied):
        db.schema().create("scratch", lambda t: t.id())
        result = applied.fresh()
        assert result.applied == [AUTHORS, BOOKS, TAGS]
        assert not db.schema().has_table("scratch")

    def test_rollback_of_unknown_migration_raises(self, db, applied):
        forgetful = Migrator(db, migrations={AUTHORS: CreateAuthors, BOOKS: CreateBooks})
        with pytest.raises(MigrationError, match="not found"):
            forgetful.rollback()

    def test_pretend_rollback(self, db, applied):
        result = applied.rollback(pretend=True)
        assert result.pretended == ['DROP TABLE "tags"']
        assert db.schema().has_table("tags")

    def test_nothing_to_roll_back_on_empty_database(self, db):
        assert Migrator(db).rollback().nothing_to_do


class TestStatus:
    def test_status_lists_known_and_applied(self, db, migrator):
        migrator.run()
        migrator.register(TAGS, CreateTags)
        rows = migrator.status()
        assert [(s.identifier, s.applied, s.batch) for s in rows] == [
            (AUTHORS, True, 1),
            (BOOKS, True, 1),
            (TAGS, False, None),
        ]
        payload = rows[0].to_dict()
        assert payload["migration"] == AUTHORS
        assert payload["applied_at"] is not None
        assert rows[2].to_dict()["applied_at"] is None

    def test_status_before_first_run(self, migrator):
        assert all(not s.applied for s in migrator.status())
