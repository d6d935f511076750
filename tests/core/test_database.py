"""Tests for strata.core.database — execution, transactions, savepoints, pretend."""

from __future__ import annotations

import threading

import pytest

from strata.core.cancellation import CancellationToken
from strata.core.connection import create_database
from strata.core.errors import ConstraintViolationError, OperationCancelledError, QueryError

INSERT = "INSERT INTO books (title) VALUES (?)"


@pytest.fixture
def books(db):
    db.statement("CREATE TABLE books (id INTEGER PRIMARY KEY AUTOINCREMENT, title TEXT NOT NULL UNIQUE)")
    return db


def titles(db) -> list[str]:
    return [row["title"] for row in db.select("SELECT title FROM books ORDER BY id")]


class TestStatements:
    def test_insert_returns_new_key(self, books):
        assert books.insert(INSERT, ("Dune",)) == 1
        assert books.insert(INSERT, ("Emma",)) == 2

    def test_select_returns_dict_rows(self, books):
        books.insert(INSERT, ("Dune",))
        assert books.select("SELECT id, title FROM books") == [{"id": 1, "title": "Dune"}]

    def test_select_one_and_scalar_on_empty_table(self, books):
        assert books.select_one("SELECT * FROM books") is None
        assert books.scalar("SELECT COUNT(*) FROM books") == 0

    def test_affecting_statement_returns_rowcount(self, books):
        books.insert(INSERT, ("Dune",))
        books.insert(INSERT, ("Emma",))
        assert books.affecting_statement("UPDATE books SET title = title || '!'") == 2
        assert titles(books) == ["Dune!", "Emma!"]

    def test_unique_violation_is_translated(self, books):
        books.insert(INSERT, ("Dune",))
        with pytest.raises(ConstraintViolationError) as exc_info:
            books.insert(INSERT, ("Dune",))
        error = exc_info.value
        assert error.constraint_type == "unique"
        assert error.is_duplicate_key
        assert error.columns == ["title"]
        assert error.context.sql == INSERT

    def test_syntax_error_is_query_error(self, db):
        with pytest.raises(QueryError):
            db.select("SELEC 1")

    def test_cancelled_token_stops_before_execution(self, books, statements):
        token = CancellationToken()
        token.cancel("shutdown")
        with pytest.raises(OperationCancelledError, match="shutdown"):
            books.select("SELECT * FROM books", token=token)
        assert statements == []


class TestTransactions:
    def test_commit_on_success(self, books):
        with books.transaction():
            books.insert(INSERT, ("Dune",))
        assert titles(books) == ["Dune"]

    def test_rollback_on_exception(self, books):
        with pytest.raises(RuntimeError):
            with books.transaction():
                books.insert(INSERT, ("Dune",))
                raise RuntimeError("boom")
        assert titles(books) == []

    def test_callback_form_returns_result(self, books):
        assert books.transaction(lambda tx: tx.insert(INSERT, ("Dune",))) == 1

    def test_nested_failure_rolls_back_to_savepoint(self, books):
        with books.transaction():
            books.insert(INSERT, ("Dune",))
            with pytest.raises(ConstraintViolationError):
                with books.transaction():
                    books.insert(INSERT, ("Emma",))
                    books.insert(INSERT, ("Dune",))
            books.insert(INSERT, ("Kindred",))
        assert titles(books) == ["Dune", "Kindred"]

    def test_outer_failure_discards_committed_savepoints(self, books):
        with pytest.raises(RuntimeError):
            with books.transaction():
                with books.transaction():
                    books.insert(INSERT, ("Dune",))
                raise RuntimeError("boom")
        assert titles(books) == []

    def test_transaction_level_tracks_depth(self, books):
        assert books.transaction_level == 0
        with books.transaction():
            assert books.transaction_level == 1
            with books.transaction():
                assert books.transaction_level == 2
            assert books.transaction_level == 1
        assert books.transaction_level == 0

    def test_control_statements_stay_out_of_query_log(self, books):
        books.enable_query_log()
        with books.transaction():
            with books.transaction():
                books.insert(INSERT, ("Dune",))
        assert [event.sql for event in books.query_log] == [INSERT]

    def test_uncommitted_rows_are_private_to_the_transaction(self, tmp_path):
        db = create_database(str(tmp_path / "app.db"))
        db.statement("CREATE TABLE books (id INTEGER PRIMARY KEY AUTOINCREMENT, title TEXT)")
        seen: list[int] = []
        try:
            with db.transaction():
                db.insert(INSERT, ("Dune",))
                assert db.scalar("SELECT COUNT(*) FROM books") == 1
                reader = threading.Thread(target=lambda: seen.append(db.scalar("SELECT COUNT(*) FROM books")))
                reader.start()
                reader.join()
            assert seen == [0]
            assert db.scalar("SELECT COUNT(*) FROM books") == 1
        finally:
            db.close()


class TestSession:
    def test_session_pins_one_connection(self, tmp_path):
        db = create_database(str(tmp_path / "app.db"))
        try:
            with db.session():
                db.statement("CREATE TEMP TABLE scratch (n INTEGER)")
                db.statement("INSERT INTO scratch (n) VALUES (1)")
                assert db.scalar("SELECT COUNT(*) FROM scratch") == 1
        finally:
            db.close()


class TestPretend:
    def test_collects_statements_without_executing(self, books):
        with books.pretend() as collected:
            assert books.insert(INSERT, ("Dune",)) is None
            assert books.select("SELECT * FROM books") == []
        assert [event.sql for event in collected] == [INSERT, "SELECT * FROM books"]
        assert collected[0].bindings == ("Dune",)
        assert titles(books) == []


class TestInstrumentation:
    def test_listener_sees_every_statement(self, books, statements):
        books.insert(INSERT, ("Dune",))
        books.select("SELECT * FROM books")
        assert [event.sql for event in statements] == [INSERT, "SELECT * FROM books"]
        assert statements[0].elapsed_ms >= 0

    def test_query_log_toggle_and_flush(self, books):
        books.select("SELECT 1")
        assert books.query_log == []
        books.enable_query_log()
        books.select("SELECT 2")
        assert [event.sql for event in books.query_log] == ["SELECT 2"]
        books.flush_query_log()
        assert books.query_log == []
        books.disable_query_log()
        books.select("SELECT 3")
        assert books.query_log == []


class TestFactories:
    def test_table_prefix_applies_to_builders(self):
        db = create_database(":memory:", table_prefix="wp_")
        try:
            sql, _ = db.table("books").to_sql()
            assert sql == 'SELECT * FROM "wp_books"'
            assert db.prefix_table("books") == "wp_books"
        finally:
            db.close()
