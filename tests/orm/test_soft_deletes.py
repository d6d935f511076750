"""Tests for soft-deleting models and the soft-delete global scope."""

from __future__ import annotations

import pytest

from strata.orm import Model
from strata.orm.events import EVENTS


class Manuscript(Model):
    table = "books"
    soft_deletes = True
    fillable = ["title", "year"]


@pytest.fixture
def manuscripts(library):
    repo = library.repository(Manuscript)
    for title, year in [("Dune", 1965), ("Kindred", 1979), ("Emma", 1815)]:
        repo.create({"title": title, "year": year})
    return repo


@pytest.fixture
def fired():
    names: list[str] = []
    events = Manuscript.descriptor().events
    for event in EVENTS:
        events.listen(event, lambda model, event=event: names.append(event))
    yield names
    events.forget()


class TestSoftDelete:
    def test_delete_stamps_instead_of_removing(self, manuscripts, library):
        dune = manuscripts.find(1)
        assert dune.delete()
        assert dune.trashed()
        assert dune.exists
        row = library.table("books").where("id", 1).first()
        assert row is not None
        assert row["deleted_at"] is not None

    def test_trashed_rows_are_hidden_from_reads(self, manuscripts):
        manuscripts.find(1).delete()
        assert manuscripts.count() == 2
        assert manuscripts.find(1) is None
        assert sorted(manuscripts.all().pluck("title")) == ["Emma", "Kindred"]

    def test_with_trashed_and_only_trashed(self, manuscripts):
        manuscripts.find(1).delete()
        assert manuscripts.with_trashed().count() == 3
        assert manuscripts.only_trashed().pluck("title") == ["Dune"]
        assert manuscripts.with_trashed().find(1).trashed()

    def test_scope_compiles_to_null_check(self, library):
        sql, _ = library.repository(Manuscript).query().to_sql()
        assert sql == 'SELECT "books".* FROM "books" WHERE "books"."deleted_at" IS NULL'

    def test_deleted_model_is_not_dirty(self, manuscripts):
        dune = manuscripts.find(1)
        dune.delete()
        assert dune.is_clean()

    def test_delete_fires_only_delete_events(self, manuscripts, fired):
        manuscripts.find(1).delete()
        assert fired == ["deleting", "deleted"]


class TestRestore:
    def test_restore_clears_deleted_at(self, manuscripts):
        dune = manuscripts.find(1)
        dune.delete()
        assert dune.restore()
        assert not dune.trashed()
        assert manuscripts.count() == 3

    def test_restore_event_order(self, manuscripts, fired):
        dune = manuscripts.find(1)
        dune.delete()
        fired.clear()
        dune.restore()
        assert fired == ["restoring", "saving", "updating", "updated", "saved", "restored"]

    def test_restoring_listener_cancels(self, manuscripts):
        dune = manuscripts.find(1)
        dune.delete()
        Manuscript.listen("restoring", lambda model: False)
        try:
            assert dune.restore() is False
        finally:
            Manuscript.descriptor().events.forget()
        assert manuscripts.count() == 2

    def test_cancelled_save_does_not_fire_restored(self, manuscripts, fired):
        dune = manuscripts.find(1)
        dune.delete()
        fired.clear()
        Manuscript.listen("saving", lambda model: False)
        assert dune.restore() is False
        assert fired == ["restoring", "saving"]
        assert manuscripts.count() == 2

    def test_query_restore(self, manuscripts):
        manuscripts.query().delete()
        assert manuscripts.count() == 0
        assert manuscripts.only_trashed().where("year", "<", 1970).restore() == 2
        assert sorted(manuscripts.all().pluck("title")) == ["Dune", "Emma"]


class TestForceDelete:
    def test_force_delete_removes_the_row(self, manuscripts, library):
        dune = manuscripts.find(1)
        assert dune.force_delete()
        assert not dune.exists
        assert library.table("books").where("id", 1).first() is None

    def test_force_delete_event_order(self, manuscripts, fired):
        manuscripts.find(1).force_delete()
        assert fired == ["force_deleting", "deleting", "deleted", "force_deleted"]

    def test_force_delete_of_trashed_model(self, manuscripts, library):
        dune = manuscripts.find(1)
        dune.delete()
        trashed = manuscripts.with_trashed().find(1)
        assert trashed.force_delete()
        assert library.table("books").count() == 2

    def test_query_force_delete(self, manuscripts, library):
        assert manuscripts.where("year", "<", 1900).force_delete() == 1
        assert library.table("books").count() == 2


class TestQueryDelete:
    def test_query_delete_stamps_matching_rows(self, manuscripts, library):
        assert manuscripts.where("year", ">", 1900).delete() == 2
        assert manuscripts.count() == 1
        assert library.table("books").count() == 3
        assert library.table("books").where_not_null("deleted_at").count() == 2

    def test_trashed_rows_are_excluded_from_aggregates_and_pages(self, manuscripts):
        manuscripts.find(2).delete()
        assert manuscripts.max("year") == 1965
        page = manuscripts.query().paginate(per_page=10)
        assert page.total == 2
        assert len(page.items) == 2
