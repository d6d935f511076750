"""SchemaBuilder against a live SQLite database."""

from __future__ import annotations

import pytest

from strata.core.connection import create_database
from strata.core.errors import ConstraintViolationError, SchemaError


@pytest.fixture
def schema(db):
    return db.schema()


def create_books(schema) -> None:
    schema.create(
        "books",
        lambda t: (
            t.id(),
            t.string("title").index(),
            t.string("isbn", 13).unique(),
            t.integer("year").nullable(),
            t.enum("format", ["hardcover", "paperback"]).default("paperback"),
        ),
    )


class TestCreateAndDrop:
    def test_create(self, schema):
        create_books(schema)
        assert schema.has_table("books")
        assert schema.get_tables() == ["books"]
        assert schema.get_column_listing("books") == ["id", "title", "isbn", "year", "format"]

    def test_create_existing_table_raises_schema_error(self, schema):
        create_books(schema)
        with pytest.raises(SchemaError):
            create_books(schema)

    def test_create_if_not_exists_is_idempotent(self, schema):
        for _ in range(2):
            schema.create_if_not_exists("books", lambda t: (t.id(), t.string("title").unique()))
        assert schema.has_index("books", "books_title_unique")

    def test_key_on_undeclared_column_is_rejected_before_any_statement(self, schema, statements):
        with pytest.raises(SchemaError, match="undeclared column"):
            schema.create("broken", lambda t: (t.string("a"), t.index("missing")))
        assert statements == []
        assert not schema.has_table("broken")

    def test_failed_create_leaves_nothing_behind(self, schema):
        schema.create("shelves", lambda t: (t.id(), t.string("label"), t.index("label", "shared_index")))
        with pytest.raises(SchemaError):
            # CREATE TABLE succeeds, then the index name collides
            schema.create("broken", lambda t: (t.id(), t.string("a"), t.index("a", "shared_index")))
        assert not schema.has_table("broken")

    def test_drop_and_drop_if_exists(self, schema):
        create_books(schema)
        schema.drop("books")
        assert not schema.has_table("books")
        schema.drop_if_exists("books")
        with pytest.raises(SchemaError):
            schema.drop("books")

    def test_rename(self, schema):
        create_books(schema)
        schema.rename("books", "titles")
        assert schema.has_table("titles")
        assert not schema.has_table("books")

    def test_drop_all_tables_ignores_foreign_keys(self, library):
        schema = library.schema()
        library.table("authors").insert({"name": "Le Guin"})
        library.table("books").insert({"author_id": 1, "title": "Lavinia"})
        schema.drop_all_tables()
        assert schema.get_tables() == []


class TestIntrospection:
    def test_columns(self, schema):
        create_books(schema)
        columns = {c.name: c for c in schema.get_columns("books")}
        assert columns["id"].primary
        assert not columns["id"].nullable
        assert columns["title"].type == "varchar(255)"
        assert not columns["title"].nullable
        assert columns["year"].nullable
        assert columns["format"].default == "'paperback'"

    def test_has_column(self, schema):
        create_books(schema)
        assert schema.has_column("books", "ISBN")
        assert schema.has_columns("books", ["title", "year"])
        assert not schema.has_columns("books", ["title", "pages"])

    def test_indexes(self, schema):
        create_books(schema)
        indexes = {i.name: i for i in schema.get_indexes("books")}
        assert indexes["books_title_index"].columns == ("title",)
        assert not indexes["books_title_index"].unique
        assert indexes["books_isbn_unique"].unique

    def test_prefixed_database(self):
        db = create_database(":memory:", table_prefix="wp_")
        try:
            schema = db.schema()
            schema.create("books", lambda t: (t.id(), t.string("title").index()))
            assert schema.get_tables() == ["wp_books"]
            assert schema.has_table("books")
            assert schema.has_index("books", "wp_books_title_index")
            db.table("books").insert({"title": "Dune"})
            assert db.scalar('SELECT COUNT(*) FROM "wp_books"') == 1
        finally:
            db.close()


class TestAlter:
    def test_add_columns(self, schema):
        create_books(schema)
        schema.table("books", lambda t: (t.string("subtitle").nullable(), t.integer("pages").default(0)))
        assert schema.has_columns("books", ["subtitle", "pages"])

    def test_rename_and_drop_column(self, schema):
        create_books(schema)
        schema.table("books", lambda t: t.rename_column("year", "published_year"))
        schema.table("books", lambda t: t.drop_column("published_year"))
        assert schema.get_column_listing("books") == ["id", "title", "isbn", "format"]

    def test_drop_index(self, schema):
        create_books(schema)
        schema.table("books", lambda t: t.drop_index(["title"]))
        assert not schema.has_index("books", "books_title_index")

    def test_not_null_column_without_default_is_rejected(self, db, schema, statements):
        create_books(schema)
        statements.clear()
        with pytest.raises(SchemaError):
            schema.table("books", lambda t: t.string("publisher"))
        assert statements == []


class TestConstraints:
    def test_enum_check_is_enforced(self, db, schema):
        create_books(schema)
        with pytest.raises(ConstraintViolationError) as exc_info:
            db.table("books").insert({"title": "Dune", "isbn": "1", "format": "scroll"})
        assert exc_info.value.constraint_type == "check"

    def test_foreign_keys_are_enforced(self, library):
        with pytest.raises(ConstraintViolationError) as exc_info:
            library.table("books").insert({"author_id": 99, "title": "Orphan"})
        assert exc_info.value.constraint_type == "foreign_key"

    def test_cascade_on_delete(self, library):
        library.table("authors").insert({"name": "Le Guin"})
        library.table("books").insert({"author_id": 1, "title": "Lavinia"})
        library.table("authors").delete(1)
        assert library.table("books").count() == 0
