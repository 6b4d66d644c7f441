"""
Tests for Migration and MigrationManager.

Covers:
- File discovery and class resolution
- Batch ledger: migrate, rollback, reset, refresh, status
- Ledger idempotence and rollback reversibility
- Failed batches roll back and raise MigrationFault
- Explicit registry
- pre_migrate / post_migrate signals
"""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from quarry.faults import MigrationError, MigrationFault
from quarry.migrations import Migration, MigrationManager, migration_class_name
from quarry.models.signals import post_migrate, pre_migrate
from quarry.schema import Schema


CREATE_WIDGETS = """
from quarry.migrations import Migration


class CreateWidgetsTable(Migration):
    def up(self):
        def build(table):
            table.id()
            table.string("name")

        self.create_table("widgets", build)
        self.seed("widgets", [{"name": "bolt"}, {"name": "nut"}])

    def down(self):
        self.drop_table("widgets")
"""

CREATE_GADGETS = """
from quarry.migrations import Migration


class CreateGadgetsTable(Migration):
    def up(self):
        def build(table):
            table.id()
            table.foreign_id("widget_id").constrained().cascade_on_delete()

        self.create_table("gadgets", build)

    def down(self):
        self.drop_table_if_exists("gadgets")
"""

ADD_WIDGET_COLOR = """
from quarry.migrations import Migration


class AddColorToWidgets(Migration):
    def up(self):
        self.table("widgets", lambda t: t.string("color").nullable())
        self.statement('UPDATE "widgets" SET "color" = ?', ["grey"])

    def down(self):
        self.table("widgets", lambda t: t.drop_column("color"))
"""

BROKEN = """
from quarry.migrations import Migration


class CreateBrokenTable(Migration):
    def up(self):
        self.create_table("broken", lambda t: t.id())
        raise RuntimeError("boom")

    def down(self):
        self.drop_table_if_exists("broken")
"""

WRONG_CLASS = """
from quarry.migrations import Migration


class SomethingElse(Migration):
    def up(self):
        pass

    def down(self):
        pass
"""

WIDGETS = "2024_01_01_000000_create_widgets_table"
GADGETS = "2024_01_02_000000_create_gadgets_table"
COLOR = "2024_01_03_000000_add_color_to_widgets"


def write_migration(directory: Path, name: str, source: str) -> Path:
    path = directory / f"{name}.py"
    path.write_text(textwrap.dedent(source))
    return path


def ledger(db, table="migrations"):
    return db.fetch_all(f'SELECT * FROM "{table}" ORDER BY "id"')


@pytest.fixture
def migrations_dir(tmp_path):
    directory = tmp_path / "migrations"
    directory.mkdir()
    write_migration(directory, WIDGETS, CREATE_WIDGETS)
    write_migration(directory, GADGETS, CREATE_GADGETS)
    return directory


@pytest.fixture
def manager(db, migrations_dir):
    return MigrationManager(db, migrations_path=migrations_dir)


# ============================================================================
# Discovery
# ============================================================================


class TestDiscovery:
    """Finding and resolving migration files."""

    def test_class_name_from_file_name(self):
        assert migration_class_name(WIDGETS) == "CreateWidgetsTable"
        assert migration_class_name("2024_05_06_070809_add_color_to_widgets") == "AddColorToWidgets"

    def test_ledger_created_on_init(self, manager, db):
        assert Schema(db).has_table("migrations")

    def test_custom_ledger_table(self, db, migrations_dir):
        MigrationManager(db, migrations_path=migrations_dir, table="schema_history").migrate()
        assert len(ledger(db, "schema_history")) == 2

    def test_available_sorted_and_filtered(self, manager, migrations_dir):
        (migrations_dir / "helpers.py").write_text("X = 1\n")
        (migrations_dir / "__init__.py").write_text("")
        assert manager.available() == [WIDGETS, GADGETS]

    def test_missing_directory_has_no_migrations(self, db, tmp_path):
        manager = MigrationManager(db, migrations_path=tmp_path / "nope")
        assert manager.available() == []
        assert manager.migrate() == []

    def test_resolve_loads_class(self, manager):
        cls = manager.resolve(WIDGETS)
        assert issubclass(cls, Migration)
        assert cls.__name__ == "CreateWidgetsTable"

    def test_missing_class_raises(self, db, tmp_path):
        write_migration(tmp_path, "2024_01_01_000000_create_things_table", WRONG_CLASS)
        manager = MigrationManager(db, migrations_path=tmp_path)
        with pytest.raises(MigrationFault) as exc_info:
            manager.migrate()
        assert exc_info.value.migration == "2024_01_01_000000_create_things_table"
        assert ledger(db) == []

    def test_unknown_name_raises(self, manager):
        with pytest.raises(MigrationFault):
            manager.resolve("2030_01_01_000000_does_not_exist")


# ============================================================================
# Migrate / rollback
# ============================================================================


class TestMigrate:
    """Applying migrations."""

    def test_migrate_applies_in_order(self, manager, db):
        assert manager.migrate() == [WIDGETS, GADGETS]
        schema = Schema(db)
        assert schema.has_table("widgets")
        assert schema.has_table("gadgets")
        assert [r["migration"] for r in ledger(db)] == [WIDGETS, GADGETS]
        assert {r["batch"] for r in ledger(db)} == {1}

    def test_migration_helpers_ran(self, manager, db):
        manager.migrate()
        assert db.fetch_val('SELECT COUNT(*) FROM "widgets"') == 2

    def test_second_migrate_is_a_no_op(self, manager, db):
        manager.migrate()
        before = len(ledger(db))
        assert manager.migrate() == []
        assert len(ledger(db)) == before

    def test_steps_limits_batch(self, manager, db):
        assert manager.migrate(steps=1) == [WIDGETS]
        assert manager.pending() == [GADGETS]
        assert manager.migrate() == [GADGETS]
        assert [r["batch"] for r in ledger(db)] == [1, 2]

    def test_new_file_goes_into_next_batch(self, manager, db, migrations_dir):
        manager.migrate()
        write_migration(migrations_dir, COLOR, ADD_WIDGET_COLOR)
        assert manager.migrate() == [COLOR]
        assert ledger(db)[-1]["batch"] == 2
        assert db.fetch_val('SELECT "color" FROM "widgets" LIMIT 1') == "grey"

    def test_ran_and_pending(self, manager):
        assert manager.ran() == []
        assert manager.pending() == [WIDGETS, GADGETS]
        manager.migrate()
        assert manager.ran() == [WIDGETS, GADGETS]
        assert manager.pending() == []


class TestRollback:
    """Reverting batches."""

    def test_rollback_reverses_one_batch(self, db, tmp_path):
        write_migration(tmp_path, WIDGETS, CREATE_WIDGETS)
        manager = MigrationManager(db, migrations_path=tmp_path)
        manager.migrate()
        rows_before = len(ledger(db))

        assert manager.rollback(1) == [WIDGETS]
        assert not Schema(db).has_table("widgets")
        assert len(ledger(db)) == rows_before - 1

    def test_rollback_only_latest_batch(self, manager, db, migrations_dir):
        manager.migrate()
        write_migration(migrations_dir, COLOR, ADD_WIDGET_COLOR)
        manager.migrate()

        assert manager.rollback() == [COLOR]
        assert not Schema(db).has_column("widgets", "color")
        assert manager.ran() == [WIDGETS, GADGETS]

    def test_rollback_within_batch_is_newest_first(self, manager, db):
        manager.migrate()
        assert manager.rollback() == [GADGETS, WIDGETS]
        assert ledger(db) == []

    def test_rollback_several_batches(self, manager, db):
        manager.migrate(steps=1)
        manager.migrate(steps=1)
        assert manager.rollback(steps=2) == [GADGETS, WIDGETS]
        assert not Schema(db).has_table("widgets")

    def test_rollback_with_nothing_applied(self, manager):
        assert manager.rollback() == []

    def test_reset(self, manager, db):
        manager.migrate(steps=1)
        manager.migrate()
        assert manager.reset() == [GADGETS, WIDGETS]
        assert ledger(db) == []
        assert not Schema(db).has_table("gadgets")

    def test_refresh(self, manager, db):
        manager.migrate()
        result = manager.refresh()
        assert result == {"reset": [GADGETS, WIDGETS], "migrated": [WIDGETS, GADGETS]}
        assert {r["batch"] for r in ledger(db)} == {1}

    def test_status(self, manager):
        manager.migrate(steps=1)
        assert manager.status() == [
            {"migration": WIDGETS, "status": "Ran", "batch": 1},
            {"migration": GADGETS, "status": "Pending", "batch": None},
        ]


# ============================================================================
# Failures
# ============================================================================


class TestFailedBatch:
    """A failure anywhere in a batch rolls back the whole batch."""

    def test_failed_batch_rolls_back_ddl_and_ledger(self, db, migrations_dir):
        write_migration(migrations_dir, "2024_01_09_000000_create_broken_table", BROKEN)
        manager = MigrationManager(db, migrations_path=migrations_dir)

        with pytest.raises(MigrationFault) as exc_info:
            manager.migrate()

        fault = exc_info.value
        assert fault.code == "MIGRATION_FAILED"
        assert fault.migration == "2024_01_09_000000_create_broken_table"
        assert isinstance(fault.__cause__, RuntimeError)
        assert ledger(db) == []

        schema = Schema(db)
        assert not schema.has_table("widgets")
        assert not schema.has_table("broken")
        assert not db.in_transaction

    def test_migration_error_alias(self, db, tmp_path):
        write_migration(tmp_path, "2024_01_09_000000_create_broken_table", BROKEN)
        with pytest.raises(MigrationError):
            MigrationManager(db, migrations_path=tmp_path).migrate()

    def test_earlier_batches_survive(self, manager, db, migrations_dir):
        manager.migrate()
        write_migration(migrations_dir, "2024_01_09_000000_create_broken_table", BROKEN)
        with pytest.raises(MigrationFault):
            manager.migrate()
        assert manager.ran() == [WIDGETS, GADGETS]
        assert Schema(db).has_table("widgets")

    def test_multi_batch_rollback_is_all_or_nothing(self, db):
        stubborn = "2024_01_01_000000_create_stubborn_table"
        notes = "2024_01_02_000000_create_notes_table"
        manager = MigrationManager(db, registry={stubborn: CreateStubbornTable})
        manager.migrate()
        manager.registry[notes] = CreateNotesTable
        manager.migrate()

        with pytest.raises(MigrationFault) as exc_info:
            manager.rollback(2)

        assert exc_info.value.migration == stubborn
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert Schema(db).has_table("notes")
        assert Schema(db).has_table("stubborn")
        assert manager.ran() == [stubborn, notes]
        assert not db.in_transaction


# ============================================================================
# Registry and signals
# ============================================================================


class CreateNotesTable(Migration):
    def up(self):
        self.create_table("notes", lambda t: (t.id(), t.text("body")))

    def down(self):
        self.drop_table("notes")


class CreateStubbornTable(Migration):
    def up(self):
        self.create_table("stubborn", lambda t: t.id())

    def down(self):
        raise RuntimeError("cannot drop stubborn")


class TestRegistry:
    """Migrations supplied as classes instead of files."""

    def test_registry_only(self, db):
        name = "2024_02_01_000000_create_notes_table"
        manager = MigrationManager(db, registry={name: CreateNotesTable})
        assert manager.migrate() == [name]
        assert Schema(db).has_table("notes")
        assert manager.rollback() == [name]
        assert not Schema(db).has_table("notes")

    def test_registry_merges_with_files(self, db, migrations_dir):
        name = "2024_01_01_120000_create_notes_table"
        manager = MigrationManager(db, migrations_path=migrations_dir, registry={name: CreateNotesTable})
        assert manager.available() == [WIDGETS, name, GADGETS]

    def test_migration_defaults_to_process_database(self, db):
        migration = CreateNotesTable()
        assert migration.db is db
        assert migration.name == "CreateNotesTable"


class TestSignals:
    """pre_migrate / post_migrate fire around each batch."""

    def test_signals_fire_around_batch(self, manager):
        events = []

        @pre_migrate.connect
        def before(sender, **kwargs):
            events.append(("pre", kwargs["direction"], kwargs["batch"], kwargs["migrations"]))

        @post_migrate.connect
        def after(sender, **kwargs):
            events.append(("post", kwargs["direction"], kwargs["batch"], kwargs["migrations"]))

        manager.migrate()
        manager.rollback()

        assert events == [
            ("pre", "up", 1, [WIDGETS, GADGETS]),
            ("post", "up", 1, [WIDGETS, GADGETS]),
            ("pre", "down", 1, [GADGETS, WIDGETS]),
            ("post", "down", 1, [GADGETS, WIDGETS]),
        ]

    def test_post_migrate_not_sent_on_failure(self, db, tmp_path):
        write_migration(tmp_path, "2024_01_09_000000_create_broken_table", BROKEN)
        calls = []
        post_migrate.connect(lambda sender, **kwargs: calls.append(kwargs))
        with pytest.raises(MigrationFault):
            MigrationManager(db, migrations_path=tmp_path).migrate()
        assert calls == []
