"""Query builder terminal calls against a live SQLite database."""

from __future__ import annotations

import pytest

from strata.core.cancellation import CancellationToken
from strata.core.errors import NotFoundError, OperationCancelledError, QueryBuildError
from strata.query import Page

BOOKS = [
    {"title": "The Left Hand of Darkness", "author_id": 1, "year": 1969, "views": 10},
    {"title": "The Dispossessed", "author_id": 1, "year": 1974, "views": 5},
    {"title": "Kindred", "author_id": 2, "year": 1979, "views": 7},
    {"title": "Parable of the Sower", "author_id": 2, "year": 1993, "views": 3},
    {"title": "Dune", "author_id": 3, "year": 1965, "views": 12},
]


@pytest.fixture
def books(db):
    db.schema().create(
        "books",
        lambda t: (
            t.id(),
            t.integer("author_id"),
            t.string("title"),
            t.integer("year").nullable(),
            t.integer("views").default(0),
        ),
    )
    db.table("books").insert(BOOKS)
    return db


class TestReads:
    def test_get_returns_dict_rows(self, books):
        rows = books.table("books").where("author_id", 2).order_by("year").get()
        assert [r["title"] for r in rows] == ["Kindred", "Parable of the Sower"]

    def test_get_with_no_match_is_empty_list(self, books):
        assert books.table("books").where("year", ">", 3000).get() == []

    def test_first_and_find(self, books):
        assert books.table("books").order_by_desc("year").first()["title"] == "Parable of the Sower"
        assert books.table("books").find(5)["title"] == "Dune"
        assert books.table("books").find(99) is None

    def test_first_or_fail(self, books):
        with pytest.raises(NotFoundError):
            books.table("books").where("title", "Neuromancer").first_or_fail()

    def test_value_and_pluck(self, books):
        assert books.table("books").where("id", 3).value("title") == "Kindred"
        assert books.table("books").where("author_id", 1).order_by("id").pluck("year") == [1969, 1974]
        assert books.table("books").where("author_id", 3).pluck("title", "id") == {5: "Dune"}

    def test_or_where_and_like(self, books):
        rows = books.table("books").where("title", "like", "The%").or_where("year", 1965).order_by("id").get("id")
        assert [r["id"] for r in rows] == [1, 2, 5]

    def test_when_applies_conditionally(self, books):
        assert books.table("books").when(False, lambda q: q.where("id", 1)).count() == 5
        assert books.table("books").when(True, lambda q: q.where("id", 1)).count() == 1

    def test_join_with_subselect(self, books):
        books.schema().create("authors", lambda t: (t.id(), t.string("name")))
        books.table("authors").insert([{"name": "Le Guin"}, {"name": "Butler"}, {"name": "Herbert"}])
        rows = (
            books.table("authors")
            .select("authors.name")
            .select_sub(books.table("books").select_raw("COUNT(*)").where_column("books.author_id", "authors.id"), "total")
            .order_by("authors.id")
            .get()
        )
        assert rows == [
            {"name": "Le Guin", "total": 2},
            {"name": "Butler", "total": 2},
            {"name": "Herbert", "total": 1},
        ]

    def test_aliased_join_on_prefixed_tables(self):
        from strata.core.connection import create_database

        db = create_database(":memory:", table_prefix="wp_")
        try:
            db.schema().create("authors", lambda t: (t.id(), t.string("name")))
            db.schema().create("books", lambda t: (t.id(), t.integer("author_id"), t.string("title")))
            db.table("authors").insert([{"name": "Le Guin"}, {"name": "Herbert"}])
            db.table("books").insert([{"author_id": 2, "title": "Dune"}, {"author_id": 1, "title": "Kindred"}])
            titles = (
                db.table("books as b")
                .join("authors as a", "a.id", "=", "b.author_id")
                .where("a.name", "Herbert")
                .pluck("b.title")
            )
            assert titles == ["Dune"]
        finally:
            db.close()


class TestAggregates:
    def test_count_sum_avg_min_max(self, books):
        query = books.table("books")
        assert query.count() == 5
        assert query.sum("views") == 37
        assert query.min("year") == 1965
        assert query.max("year") == 1993
        assert books.table("books").where("author_id", 1).avg("views") == 7.5

    def test_sum_on_empty_set_is_zero(self, books):
        assert books.table("books").where("id", 0).sum("views") == 0

    def test_grouped_count_counts_groups(self, books):
        assert books.table("books").select("author_id").group_by("author_id").count() == 3

    def test_limited_count_respects_limit(self, books):
        assert books.table("books").limit(2).count() == 2

    def test_exists(self, books):
        assert books.table("books").where("year", 1965).exists()
        assert books.table("books").where("year", 1066).doesnt_exist()


class TestPagination:
    def test_paginate(self, books):
        page = books.table("books").order_by("id").paginate(per_page=2, page=2)
        assert isinstance(page, Page)
        assert [row["id"] for row in page.items] == [3, 4]
        assert page.total == 5
        assert page.last_page == 3
        assert page.from_item == 3
        assert page.to_item == 4
        assert page.has_more_pages

    def test_page_past_the_end_is_empty(self, books):
        page = books.table("books").paginate(per_page=2, page=9)
        assert page.items == []
        assert page.from_item is None
        assert not page.has_more_pages

    def test_to_dict(self, books):
        payload = books.table("books").order_by("id").paginate(per_page=4).to_dict()
        assert payload["total"] == 5
        assert payload["last_page"] == 2
        assert len(payload["data"]) == 4

    @pytest.mark.parametrize("page,per_page", [(0, 15), (1, 0), (-1, 10)])
    def test_rejects_pages_below_one(self, books, page, per_page):
        with pytest.raises(QueryBuildError):
            books.table("books").paginate(per_page=per_page, page=page)


class TestChunk:
    def test_chunk_visits_every_row_in_key_order(self, books):
        seen: list[list[int]] = []
        assert books.table("books").chunk(2, lambda rows: seen.append([r["id"] for r in rows])) is True
        assert seen == [[1, 2], [3, 4], [5]]

    def test_callback_can_stop(self, books):
        seen: list[int] = []

        def handle(rows):
            seen.extend(r["id"] for r in rows)
            return False

        assert books.table("books").chunk(2, handle) is False
        assert seen == [1, 2]

    def test_chunk_keeps_constraints(self, books):
        seen: list[int] = []
        books.table("books").where("author_id", "<>", 1).chunk(1, lambda rows: seen.extend(r["id"] for r in rows))
        assert seen == [3, 4, 5]

    def test_rejects_bad_size(self, books):
        with pytest.raises(QueryBuildError):
            books.table("books").chunk(0, print)


class TestWrites:
    def test_insert_get_id(self, books):
        assert books.table("books").insert_get_id({"title": "Neuromancer", "author_id": 4}) == 6

    def test_update_returns_affected_rows(self, books):
        assert books.table("books").where("author_id", 2).update({"views": 0}) == 2
        assert books.table("books").where("views", 0).count() == 2

    def test_increment_and_decrement(self, books):
        assert books.table("books").where("id", 1).increment("views", 5) == 1
        books.table("books").where("id", 2).decrement("views", extra={"year": 1975})
        assert books.table("books").find(1)["views"] == 15
        assert books.table("books").find(2) == {
            "id": 2,
            "author_id": 1,
            "title": "The Dispossessed",
            "year": 1975,
            "views": 4,
        }

    @pytest.mark.parametrize("amount", ["5", None, True])
    def test_increment_rejects_non_numeric(self, books, amount):
        with pytest.raises(QueryBuildError, match="Non-numeric"):
            books.table("books").increment("views", amount)

    def test_delete(self, books):
        assert books.table("books").where("author_id", 1).delete() == 2
        assert books.table("books").delete(5) == 1
        assert books.table("books").count() == 2

    def test_update_with_limit_is_rejected(self, books):
        with pytest.raises(QueryBuildError):
            books.table("books").limit(1).update({"views": 1})

    def test_truncate_resets_keys(self, books):
        books.table("books").truncate()
        assert books.table("books").count() == 0
        assert books.table("books").insert_get_id({"title": "Solaris", "author_id": 9}) == 1


class TestCancellation:
    def test_token_checked_before_the_query(self, books):
        token = CancellationToken()
        query = books.table("books").with_token(token)
        assert query.count() == 5
        token.cancel("request aborted")
        with pytest.raises(OperationCancelledError):
            query.get()
