"""End-to-end checks of the data layer's core guarantees.

Each class drives one behaviour through the public surface only:
predicate order, the soft-delete filter, eager-load query counts,
migration idempotence, rollback as an exact inverse, and mass-assignment
safety.
"""

from __future__ import annotations

import pytest

from strata.migrations import Migration
from strata.orm import Model, belongs_to_many, has_many


class ShelvedBook(Model):
    table = "shelved_books"
    soft_deletes = True
    timestamps = False
    fillable = ["title", "category_id"]


class Patron(Model):
    table = "authors"
    fillable = ["name"]
    loans = has_many("Loan", foreign_key="author_id")


class Loan(Model):
    table = "books"
    fillable = ["title", "author_id"]
    topics = belongs_to_many("Topic", table="book_tag", foreign_pivot_key="book_id", related_pivot_key="tag_id")


class Topic(Model):
    table = "tags"
    fillable = ["name"]


class Ticket(Model):
    table = "tickets"
    timestamps = False
    fillable = ["a", "b"]


class AddReviewsTable(Migration):
    def up(self, schema):
        schema.create("reviews", lambda t: (t.id(), t.string("body"), t.integer("stars").index()))
        schema.table("authors", lambda t: t.string("nickname").nullable())

    def down(self, schema):
        schema.table("authors", lambda t: t.drop_column("nickname"))
        schema.drop("reviews")


def snapshot(db) -> dict:
    schema = db.schema()
    return {
        table: (
            sorted((c.name, c.type.lower(), c.nullable) for c in schema.get_columns(table)),
            sorted((i.columns, i.unique) for i in schema.get_indexes(table)),
        )
        for table in schema.get_tables()
        if table != "migrations"
    }


class TestPredicateOrder:
    def test_bindings_follow_call_order(self, library):
        sql, bindings = (
            library.repository(Loan).where("title", "like", "%a%").where("author_id", 2).or_where("id", 9).to_sql()
        )
        assert sql.index('"title"') < sql.index('"author_id"') < sql.index('"id"')
        assert bindings == ["%a%", 2, 9]

    def test_reordering_does_not_change_matches(self, library):
        loans = library.repository(Loan)
        for author, title in [(None, "Dune"), (None, "Emma"), (None, "Dracula")]:
            loans.create({"title": title, "author_id": author})
        first = loans.where("title", "like", "D%").where("id", ">", 1).pluck("title")
        second = loans.where("id", ">", 1).where("title", "like", "D%").pluck("title")
        assert sorted(first) == sorted(second) == ["Dracula"]


class TestSoftDeleteFilter:
    @pytest.fixture
    def shelved(self, db):
        db.schema().create(
            "shelved_books",
            lambda t: (t.id(), t.string("title"), t.integer("category_id"), t.soft_deletes()),
        )
        repo = db.repository(ShelvedBook)
        for index in range(3):
            repo.create({"title": f"one-{index}", "category_id": 1})
        for index in range(2):
            repo.create({"title": f"two-{index}", "category_id": 2})
        repo.where("category_id", 1).first().delete()
        return repo

    def test_category_scenario(self, shelved):
        assert len(shelved.where("category_id", 1).get()) == 2
        assert len(shelved.where("category_id", 1).with_trashed().get()) == 3

    def test_only_trashed_is_the_complement(self, shelved):
        live = set(shelved.all().pluck("id"))
        trashed = set(shelved.only_trashed().pluck("id"))
        everything = set(shelved.with_trashed().pluck("id"))
        assert live.isdisjoint(trashed)
        assert live | trashed == everything
        assert len(trashed) == 1

    def test_all_never_returns_trashed_rows(self, shelved):
        assert all(book.deleted_at is None for book in shelved.all())


class TestEagerLoadQueryCount:
    @pytest.fixture
    def patrons(self, library):
        repo = library.repository(Patron)
        for index in range(10):
            patron = repo.create({"name": f"patron-{index}"})
            patron.relation("loans").create({"title": f"loan-{index}"})
        return repo

    def test_eager_loading_ten_owners_takes_two_statements(self, patrons, statements):
        loaded = patrons.with_("loans").get()
        assert len(loaded) == 10
        assert all(len(patron.loans) == 1 for patron in loaded)
        assert len(statements) == 2

    def test_lazy_loading_costs_one_statement_per_owner(self, patrons, statements):
        loaded = patrons.all()
        for patron in loaded:
            assert len(patron.loans) == 1
        assert len(statements) == 1 + 10


class TestSyncEndState:
    def test_sync_replaces_pivot_set_exactly(self, library):
        topics = library.repository(Topic)
        for name in ["one", "two", "three"]:
            topics.create({"name": name})
        loan = library.repository(Loan).create({"title": "Dune"})
        loan.relation("topics").attach([1, 2])

        changes = loan.relation("topics").sync([2, 3])

        assert changes["attached"] == [3]
        assert changes["detached"] == [1]
        pivot = library.table("book_tag").where("book_id", loan.id).pluck("tag_id")
        assert sorted(pivot) == [2, 3]


class TestMigrationGuarantees:
    def test_second_run_applies_nothing(self, library):
        migrator = library.migrator(migrations={"2024_05_01_000000_add_reviews_table": AddReviewsTable})
        assert migrator.run().applied == ["2024_05_01_000000_add_reviews_table"]
        assert migrator.run().applied == []

    def test_rollback_restores_the_previous_schema(self, library):
        before = snapshot(library)
        migrator = library.migrator(migrations={"2024_05_01_000000_add_reviews_table": AddReviewsTable})
        migrator.run()
        assert snapshot(library) != before
        migrator.rollback()
        assert snapshot(library) == before


class TestMassAssignmentSafety:
    def test_unlisted_key_is_never_persisted(self, db):
        db.schema().create("tickets", lambda t: (t.id(), t.string("a"), t.string("b"), t.string("c").nullable()))
        ticket = db.repository(Ticket).create({"a": "x", "b": "y", "c": "z"})
        row = db.table("tickets").where("id", ticket.id).first()
        assert row["a"] == "x"
        assert row["b"] == "y"
        assert row["c"] is None
        assert "c" not in ticket.attributes
