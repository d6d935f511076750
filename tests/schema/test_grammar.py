"""DDL compiled from blueprints, per dialect."""

from __future__ import annotations

import pytest

from strata.core.dialect import get_dialect
from strata.core.errors import SchemaError
from strata.schema import Blueprint, PostgreSQLSchemaGrammar, SQLiteSchemaGrammar


def blueprint(table: str, callback, *, creating: bool = True, prefix: str = "") -> Blueprint:
    bp = Blueprint(table, creating=creating, prefix=prefix)
    callback(bp)
    return bp


@pytest.fixture
def sqlite():
    return SQLiteSchemaGrammar(get_dialect("sqlite"))


@pytest.fixture
def postgres():
    return PostgreSQLSchemaGrammar(get_dialect("postgresql"))


def books_table(t: Blueprint) -> None:
    t.id()
    t.string("title")
    t.string("isbn", 13).unique()
    t.foreign_id("author_id").constrained().cascade_on_delete()
    t.boolean("published").default(False)


class TestSQLiteCreate:
    def test_create_table(self, sqlite):
        statements = sqlite.compile(blueprint("books", books_table))
        assert statements == [
            'CREATE TABLE "books" ('
            '"id" INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL, '
            '"title" VARCHAR(255) NOT NULL, '
            '"isbn" VARCHAR(13) NOT NULL, '
            '"author_id" INTEGER NOT NULL, '
            '"published" TINYINT(1) NOT NULL DEFAULT 0, '
            'CONSTRAINT "books_author_id_foreign" FOREIGN KEY ("author_id") '
            'REFERENCES "authors" ("id") ON DELETE CASCADE)',
            'CREATE UNIQUE INDEX "books_isbn_unique" ON "books" ("isbn")',
        ]

    def test_prefix_applies_to_table_and_index_names(self):
        grammar = SQLiteSchemaGrammar(get_dialect("sqlite"), prefix="wp_")
        statements = grammar.compile(blueprint("posts", lambda t: t.string("slug").index(), prefix="wp_"))
        assert statements == [
            'CREATE TABLE "wp_posts" ("slug" VARCHAR(255) NOT NULL)',
            'CREATE INDEX "wp_posts_slug_index" ON "wp_posts" ("slug")',
        ]

    def test_morphs_add_composite_index(self, sqlite):
        statements = sqlite.compile(blueprint("comments", lambda t: t.morphs("commentable")))
        assert statements[1] == (
            'CREATE INDEX "comments_commentable_type_commentable_id_index" '
            'ON "comments" ("commentable_type", "commentable_id")'
        )

    def test_enum_adds_check_constraint(self, sqlite):
        statements = sqlite.compile(blueprint("books", lambda t: t.enum("format", ["hardcover", "e'book"])))
        assert statements == [
            'CREATE TABLE "books" ("format" VARCHAR(255) NOT NULL, '
            "CHECK (\"format\" IN ('hardcover', 'e''book')))"
        ]

    def test_enum_needs_values(self):
        with pytest.raises(SchemaError):
            blueprint("books", lambda t: t.enum("format", []))

    def test_composite_primary_key(self, sqlite):
        statements = sqlite.compile(
            blueprint("book_tag", lambda t: (t.integer("book_id"), t.integer("tag_id"), t.primary(["book_id", "tag_id"])))
        )
        assert statements[0].endswith('PRIMARY KEY ("book_id", "tag_id"))')

    def test_two_primary_keys_are_rejected(self, sqlite):
        bp = blueprint("t", lambda t: (t.integer("a").primary(), t.integer("b").primary()))
        with pytest.raises(SchemaError, match="Multiple primary keys"):
            sqlite.compile(bp)

    def test_use_current_and_nullable(self, sqlite):
        statements = sqlite.compile(
            blueprint("events", lambda t: (t.timestamp("seen_at").use_current(), t.text("note").nullable()))
        )
        assert statements == [
            'CREATE TABLE "events" ("seen_at" DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP, "note" TEXT)'
        ]

    def test_if_not_exists(self, sqlite):
        bp = blueprint("books", lambda t: t.string("title").unique())
        bp.if_not_exists = True
        assert sqlite.compile(bp) == [
            'CREATE TABLE IF NOT EXISTS "books" ("title" VARCHAR(255) NOT NULL)',
            'CREATE UNIQUE INDEX IF NOT EXISTS "books_title_unique" ON "books" ("title")',
        ]


class TestSQLiteAlter:
    def alter(self, sqlite, callback):
        return sqlite.compile(blueprint("books", callback, creating=False))

    def test_add_nullable_column_and_index(self, sqlite):
        assert self.alter(sqlite, lambda t: t.string("subtitle").nullable().index()) == [
            'ALTER TABLE "books" ADD COLUMN "subtitle" VARCHAR(255)',
            'CREATE INDEX "books_subtitle_index" ON "books" ("subtitle")',
        ]

    def test_drop_rename_and_drop_index(self, sqlite):
        statements = self.alter(
            sqlite,
            lambda t: (t.drop_column("meta"), t.rename_column("year", "published_year"), t.drop_index(["title"])),
        )
        assert statements == [
            'ALTER TABLE "books" DROP COLUMN "meta"',
            'ALTER TABLE "books" RENAME COLUMN "year" TO "published_year"',
            'DROP INDEX "books_title_index"',
        ]

    @pytest.mark.parametrize(
        "callback,message",
        [
            (lambda t: t.string("isbn"), "without a default"),
            (lambda t: t.string("title", 100).change(), "modifying"),
            (lambda t: t.foreign("author_id").on("authors"), "foreign keys"),
            (lambda t: t.primary("isbn"), "primary key"),
            (lambda t: t.drop_foreign(["author_id"]), "foreign keys"),
            (lambda t: t.drop_primary(), "primary key"),
            (lambda t: t.timestamp("seen_at").nullable().use_current(), "non-constant default"),
            (lambda t: t.increments("seq"), "primary key"),
        ],
    )
    def test_unsupported_changes_raise(self, sqlite, callback, message):
        with pytest.raises(SchemaError, match=message):
            self.alter(sqlite, callback)

    def test_empty_blueprint_is_rejected(self, sqlite):
        with pytest.raises(SchemaError, match="no changes"):
            self.alter(sqlite, lambda t: None)


class TestPostgres:
    def test_create_table(self, postgres):
        statements = postgres.compile(
            blueprint("books", lambda t: (t.id(), t.string("title").comment("Display title"), t.boolean("published").default(True)))
        )
        assert statements == [
            'CREATE TABLE "books" ("id" BIGSERIAL PRIMARY KEY, "title" VARCHAR(255) NOT NULL, '
            '"published" BOOLEAN NOT NULL DEFAULT TRUE)',
            "COMMENT ON COLUMN \"books\".\"title\" IS 'Display title'",
        ]

    def test_change_column(self, postgres):
        statements = postgres.compile(blueprint("books", lambda t: t.string("title", 100).nullable().change(), creating=False))
        assert statements == [
            'ALTER TABLE "books" ALTER COLUMN "title" TYPE VARCHAR(100) USING "title"::VARCHAR(100)',
            'ALTER TABLE "books" ALTER COLUMN "title" DROP NOT NULL',
            'ALTER TABLE "books" ALTER COLUMN "title" DROP DEFAULT',
        ]

    def test_add_and_drop_foreign_key(self, postgres):
        add = postgres.compile(
            blueprint("books", lambda t: t.foreign("author_id").on("authors").null_on_delete(), creating=False)
        )
        assert add == [
            'ALTER TABLE "books" ADD CONSTRAINT "books_author_id_foreign" FOREIGN KEY ("author_id") '
            'REFERENCES "authors" ("id") ON DELETE SET NULL'
        ]
        drop = postgres.compile(blueprint("books", lambda t: t.drop_foreign(["author_id"]), creating=False))
        assert drop == ['ALTER TABLE "books" DROP CONSTRAINT "books_author_id_foreign"']

    def test_drop_all_tables_cascades(self, postgres):
        assert postgres.compile_drop_all_tables(["a", "b"]) == ['DROP TABLE IF EXISTS "a", "b" CASCADE']

    def test_unknown_foreign_key_action(self):
        with pytest.raises(SchemaError):
            blueprint("books", lambda t: t.foreign("author_id").on("authors").on_delete("explode"))
