"""
Tests for the Schema facade against a live SQLite database.
"""

from __future__ import annotations

import logging
import sqlite3

import pytest

from quarry.faults import QueryFault, SchemaFault
from quarry.schema import Schema


def build_accounts(table):
    table.id()
    table.string("name")
    table.string("email").unique()
    table.timestamps()


class TestSchemaCreate:
    """Creating and dropping tables."""

    def test_create_and_inspect(self, db):
        schema = Schema(db)
        schema.create("accounts", build_accounts)
        assert schema.has_table("accounts")
        assert schema.has_column("accounts", "email")
        assert not schema.has_column("accounts", "nickname")
        assert "accounts" in schema.get_tables()

    def test_create_runs_index_statements(self, db):
        def build(table):
            table.id()
            table.string("slug").index()

        Schema(db).create("pages", build)
        rows = db.fetch_all(
            "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = 'pages'"
        )
        assert "pages_slug_index" in [r["name"] for r in rows]

    def test_defaults_to_process_database(self, db):
        assert Schema().db is db

    def test_create_existing_table_raises_schema_fault(self, db):
        schema = Schema(db)
        schema.create("accounts", build_accounts)
        with pytest.raises(SchemaFault) as exc_info:
            schema.create("accounts", build_accounts)
        assert exc_info.value.code == "SCHEMA_FAULT"
        assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)

    def test_drop(self, db):
        schema = Schema(db)
        schema.create("accounts", build_accounts)
        schema.drop("accounts")
        assert not schema.has_table("accounts")

    def test_drop_missing_table_raises(self, db):
        with pytest.raises(SchemaFault):
            Schema(db).drop("ghosts")

    def test_drop_if_exists_tolerates_missing(self, db):
        Schema(db).drop_if_exists("ghosts")

    def test_rename(self, db):
        schema = Schema(db)
        schema.create("accounts", build_accounts)
        schema.rename("accounts", "members")
        assert schema.has_table("members")
        assert not schema.has_table("accounts")


class TestSchemaAlter:
    """Altering tables."""

    def test_add_and_rename_column(self, db):
        schema = Schema(db)
        schema.create("accounts", build_accounts)

        def alter(table):
            table.rename_column("name", "full_name")
            table.text("bio").nullable()

        schema.table("accounts", alter)
        assert schema.has_column("accounts", "full_name")
        assert schema.has_column("accounts", "bio")
        assert not schema.has_column("accounts", "name")

    def test_unsupported_statements_are_skipped_with_warning(self, db, caplog):
        schema = Schema(db)
        schema.create("accounts", build_accounts)

        with caplog.at_level(logging.WARNING, logger="quarry.schema"):
            schema.table("accounts", lambda t: t.modify_column("name", "varchar", length=50))

        assert any("Skipping unsupported statement" in r.message for r in caplog.records)
        assert schema.has_column("accounts", "name")

    def test_added_unique_column_is_enforced(self, db):
        schema = Schema(db)
        schema.create("accounts", build_accounts)
        schema.table("accounts", lambda t: t.string("handle").nullable().unique())

        db.execute(
            'INSERT INTO "accounts" ("name", "email", "handle") VALUES (?, ?, ?)',
            ["Ana", "ana@example.com", "ana"],
        )
        with pytest.raises(QueryFault):
            db.execute(
                'INSERT INTO "accounts" ("name", "email", "handle") VALUES (?, ?, ?)',
                ["Bo", "bo@example.com", "ana"],
            )
