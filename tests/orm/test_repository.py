"""Tests for strata.orm.query — model queries, scopes and the repository."""

from __future__ import annotations

import pytest

from strata.core.errors import ModelNotFoundError, QueryBuildError
from strata.orm import Collection, Model


class Edition(Model):
    table = "books"
    fillable = ["title", "year", "author_id"]
    casts = {"year": "int"}

    def scope_published_after(self, query, year):
        return query.where("year", ">", year)

    def scope_titled(self, query, prefix):
        query.where("title", "like", f"{prefix}%")


class ModernEdition(Model):
    table = "books"
    fillable = ["title", "year"]


ModernEdition.add_global_scope("modern", lambda builder, model: builder.where("year", ">", 1970))


@pytest.fixture
def editions(library):
    repo = library.repository(Edition)
    for title, year in [
        ("The Left Hand of Darkness", 1969),
        ("The Dispossessed", 1974),
        ("Kindred", 1979),
        ("Parable of the Sower", 1993),
        ("Dune", 1965),
    ]:
        repo.create({"title": title, "year": year})
    return repo


class TestReads:
    def test_all_returns_a_collection(self, editions):
        books = editions.all()
        assert isinstance(books, Collection)
        assert len(books) == 5
        assert all(isinstance(book, Edition) and book.exists for book in books)

    def test_empty_result_is_an_empty_collection(self, editions):
        books = editions.where("year", ">", 3000).get()
        assert books == []
        assert isinstance(books, Collection)

    def test_find_and_find_many(self, editions):
        assert editions.find(3).title == "Kindred"
        assert editions.find(99) is None
        assert sorted(editions.find_many([1, 5]).model_keys()) == [1, 5]
        assert editions.find([2, 3]).pluck("title") == ["The Dispossessed", "Kindred"]

    def test_find_or_fail_reports_missing_ids(self, editions):
        with pytest.raises(ModelNotFoundError) as exc_info:
            editions.find_or_fail([1, 42, 43])
        assert exc_info.value.ids == [42, 43]
        assert "Edition" in str(exc_info.value)

    def test_first_or_fail(self, editions):
        assert editions.where("title", "Dune").first_or_fail().year == 1965
        with pytest.raises(ModelNotFoundError):
            editions.where("title", "Emma").first_or_fail()

    def test_pluck_and_value(self, editions):
        assert editions.order_by("year").pluck("title")[0] == "Dune"
        assert editions.where("id", 4).value("year") == 1993
        assert editions.query().pluck("year", "title")["Kindred"] == 1979

    def test_select_specific_columns(self, editions):
        book = editions.query().order_by("id").first("id", "title")
        assert book.attributes == {"id": 1, "title": "The Left Hand of Darkness"}

    def test_paginate_hydrates_models(self, editions):
        page = editions.order_by("year").paginate(per_page=2, page=2)
        assert page.total == 5
        assert page.last_page == 3
        assert [book.year for book in page.items] == [1974, 1979]
        assert page.to_dict()["from"] == 3

    def test_chunk_feeds_models_in_key_order(self, editions):
        seen: list[list[int]] = []
        assert editions.query().chunk(2, lambda books: seen.append(books.model_keys())) is True
        assert seen == [[1, 2], [3, 4], [5]]

    def test_chunk_stops_when_callback_returns_false(self, editions):
        calls: list[int] = []

        def stop(books):
            calls.append(len(books))
            return False

        assert editions.query().chunk(2, stop) is False
        assert calls == [2]

    def test_collection_helpers(self, editions):
        books = editions.order_by("id").get()
        assert books.first().title == "The Left Hand of Darkness"
        assert books.last().title == "Dune"
        assert books.find(3).title == "Kindred"
        assert books.key_by("title")["Dune"].id == 5
        assert len(books.filter(lambda book: book.year < 1970)) == 2
        assert books.to_list()[0]["title"] == "The Left Hand of Darkness"


class TestAggregates:
    def test_aggregates_never_hydrate(self, editions):
        assert editions.count() == 5
        assert editions.where("year", "<", 1970).count() == 2
        assert editions.max("year") == 1993
        assert editions.min("year") == 1965
        assert editions.query().exists()
        assert editions.where("year", 1800).doesnt_exist()


class TestScopes:
    def test_local_scope_is_callable_by_name(self, editions):
        assert editions.query().published_after(1975).count() == 2

    def test_scope_that_returns_nothing_still_chains(self, editions):
        assert editions.query().titled("The").published_after(1970).pluck("title") == ["The Dispossessed"]

    def test_unknown_scope_raises(self, editions):
        with pytest.raises(QueryBuildError, match="undefined scope"):
            editions.query().scope("bestsellers")

    def test_unknown_method_raises_attribute_error(self, editions):
        with pytest.raises(AttributeError):
            editions.query().bestsellers()

    def test_global_scope_applies_to_every_read(self, editions, library):
        modern = library.repository(ModernEdition)
        assert modern.count() == 3
        assert modern.find(1) is None
        assert sorted(modern.all().pluck("year")) == [1974, 1979, 1993]

    def test_global_scope_can_be_removed(self, editions, library):
        modern = library.repository(ModernEdition)
        assert modern.query().without_global_scope("modern").count() == 5
        assert modern.query().without_global_scopes().count() == 5

    def test_global_scope_groups_or_predicates(self, editions, library):
        modern = library.repository(ModernEdition)
        query = modern.where("title", "Dune").or_where("title", "Kindred")
        assert query.pluck("title") == ["Kindred"]

    def test_when_applies_conditionally(self, editions):
        assert editions.query().when(False, lambda q: q.where("year", 1)).count() == 5
        assert editions.query().when(True, lambda q: q.where("year", 1965)).count() == 1


class TestQueryWrites:
    def test_update_stamps_updated_at(self, editions, library):
        library.table("books").update({"updated_at": None})
        assert editions.where("year", "<", 1970).update({"title": "Classic"}) == 2
        rows = library.table("books").where("title", "Classic").get()
        assert len(rows) == 2
        assert all(row["updated_at"] is not None for row in rows)

    def test_increment_and_decrement(self, editions):
        assert editions.where("id", 1).increment("year", 10) == 1
        assert editions.find(1).year == 1979
        editions.where("id", 1).decrement("year", 10)
        assert editions.find(1).year == 1969

    def test_query_delete(self, editions):
        assert editions.where("year", ">", 1990).delete() == 1
        assert editions.count() == 4


class TestRepository:
    def test_first_or_create_finds_existing(self, editions):
        book = editions.first_or_create({"title": "Dune"}, {"year": 2000})
        assert book.id == 5
        assert book.year == 1965
        assert editions.count() == 5

    def test_first_or_create_inserts_when_missing(self, editions):
        book = editions.first_or_create({"title": "Emma"}, {"year": 1815})
        assert book.exists
        assert editions.find(book.id).year == 1815

    def test_first_or_new_does_not_save(self, editions):
        book = editions.first_or_new({"title": "Emma"})
        assert not book.exists
        assert editions.count() == 5

    def test_update_or_create(self, editions):
        editions.update_or_create({"title": "Dune"}, {"year": 1966})
        assert editions.where("title", "Dune").value("year") == 1966
        created = editions.update_or_create({"title": "Emma"}, {"year": 1815})
        assert created.was_recently_created

    def test_force_create_ignores_fillable(self, library):
        repo = library.repository(Edition)
        book = repo.force_create({"id": 10, "title": "Dune", "meta": "{}"})
        assert book.id == 10
        assert repo.find(10).meta == "{}"

    def test_destroy_deletes_through_models(self, editions):
        deleted: list[int] = []
        Edition.listen("deleted", lambda book: deleted.append(book.id))
        try:
            assert editions.destroy(1, [2, 3], 99) == 3
        finally:
            Edition.descriptor().events.forget()
        assert sorted(deleted) == [1, 2, 3]
        assert editions.count() == 2

    def test_destroy_without_ids_is_a_no_op(self, editions):
        assert editions.destroy() == 0

    def test_to_sql_selects_the_model_table(self, library):
        sql, bindings = library.repository(Edition).where("year", 1965).to_sql()
        assert sql == 'SELECT "books".* FROM "books" WHERE "year" = ?'
        assert bindings == [1965]
