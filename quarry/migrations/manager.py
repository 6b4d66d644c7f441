"""
Quarry Migrations - MigrationManager, the batch ledger.

Migration files live in one directory and are named
``YYYY_MM_DD_HHMMSS_snake_name.py``; each defines a ``Migration``
subclass named after the snake part in PascalCase:

    migrations/2024_01_01_000000_create_accounts_table.py
        -> class CreateAccountsTable(Migration)

Applied migrations are recorded in a ledger table (``migrations``) with
the batch number of the ``migrate()`` call that ran them. ``rollback()``
reverts whole batches, newest first.

Each migrate() or rollback() call runs inside one transaction: if any
migration fails, the DDL and ledger rows of every batch in the call are
rolled back and a ``MigrationFault`` chained to the original error is
raised. MySQL commits DDL implicitly, so there a failed call can leave
earlier statements applied.
"""

from __future__ import annotations

import importlib.util
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Type, Union

from ..faults.domains import MigrationFault
from ..models.casts import now_string
from ..models.naming import pascal_case, quote_identifier
from ..models.signals import post_migrate, pre_migrate
from ..schema.builder import Schema
from .base import Migration

if TYPE_CHECKING:
    from ..db.engine import Database

logger = logging.getLogger("quarry.migrations")

__all__ = ["MigrationManager", "MIGRATION_NAME_RE", "migration_class_name"]

MIGRATION_NAME_RE = re.compile(r"^(\d{4}_\d{2}_\d{2}_\d{6})_(\w+)$")


def migration_class_name(name: str) -> str:
    """``2024_01_01_000000_create_posts_table`` -> ``CreatePostsTable``."""
    match = MIGRATION_NAME_RE.match(name)
    return pascal_case(match.group(2) if match else name)


def _load_migration_module(path: Path, name: str) -> Any:
    """Load a migration Python module from file path."""
    spec = importlib.util.spec_from_file_location(f"quarry_migration_{name}", path)
    if not spec or not spec.loader:
        raise MigrationFault(
            migration=name,
            reason=f"Cannot load migration module: {path}",
        )
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        raise MigrationFault(
            migration=name,
            reason=f"Failed to load migration: {exc}",
        ) from exc
    return module


class MigrationManager:
    """
    Discover, apply and revert migrations, tracking them by batch.

    Args:
        db: Database to migrate (defaults to the process-wide one)
        migrations_path: Directory of migration files
        registry: Explicit ``{name: Migration subclass}`` mapping, merged
            with the files found in ``migrations_path``
        table: Ledger table name
    """

    def __init__(
        self,
        db: Optional["Database"] = None,
        migrations_path: Union[str, Path, None] = None,
        registry: Optional[Mapping[str, Type[Migration]]] = None,
        table: str = "migrations",
    ):
        if db is None:
            from ..db.engine import get_database
            db = get_database()
        self.db = db
        self.schema = Schema(db)
        self.migrations_path = Path(migrations_path) if migrations_path is not None else None
        self.registry: Dict[str, Type[Migration]] = dict(registry or {})
        self.table = table
        self.ensure_table()

    # ── Ledger ───────────────────────────────────────────────────────

    def ensure_table(self) -> None:
        """Create the ledger table if it doesn't exist."""
        if self.schema.has_table(self.table):
            return

        def build(table):
            table.increments("id")
            table.string("migration").unique()
            table.integer("batch")
            table.timestamp("executed_at")

        self.schema.create(self.table, build)

    def _ledger(self) -> List[Dict[str, Any]]:
        return self.db.fetch_all(
            f"SELECT {quote_identifier('migration')}, {quote_identifier('batch')} "
            f"FROM {quote_identifier(self.table)} "
            f"ORDER BY {quote_identifier('batch')}, {quote_identifier('id')}"
        )

    def _next_batch(self) -> int:
        current = self.db.fetch_val(
            f"SELECT MAX({quote_identifier('batch')}) FROM {quote_identifier(self.table)}"
        )
        return int(current or 0) + 1

    def _record(self, name: str, batch: int) -> None:
        self.db.execute(
            f"INSERT INTO {quote_identifier(self.table)} "
            f"({quote_identifier('migration')}, {quote_identifier('batch')}, {quote_identifier('executed_at')}) "
            f"VALUES (?, ?, ?)",
            [name, batch, now_string()],
        )

    def _forget(self, name: str) -> None:
        self.db.execute(
            f"DELETE FROM {quote_identifier(self.table)} WHERE {quote_identifier('migration')} = ?",
            [name],
        )

    # ── Discovery ────────────────────────────────────────────────────

    def _files(self) -> Dict[str, Path]:
        files: Dict[str, Path] = {}
        if self.migrations_path is None or not self.migrations_path.is_dir():
            return files
        for path in sorted(self.migrations_path.glob("*.py")):
            if MIGRATION_NAME_RE.match(path.stem):
                files[path.stem] = path
            elif not path.name.startswith("__"):
                logger.debug(f"Ignoring {path.name}: not a migration file name")
        return files

    def available(self) -> List[str]:
        """All known migration names, oldest first."""
        return sorted(set(self._files()) | set(self.registry))

    def ran(self) -> List[str]:
        """Applied migration names in the order they were applied."""
        return [row["migration"] for row in self._ledger()]

    def pending(self) -> List[str]:
        applied = set(self.ran())
        return [name for name in self.available() if name not in applied]

    def resolve(self, name: str) -> Type[Migration]:
        """The Migration subclass for ``name``, from the registry or its file."""
        if name in self.registry:
            return self.registry[name]

        path = self._files().get(name)
        if path is None:
            raise MigrationFault(
                migration=name,
                reason=f"Migration file not found in {self.migrations_path}",
            )

        module = _load_migration_module(path, name)
        class_name = migration_class_name(name)
        cls = getattr(module, class_name, None)
        if not isinstance(cls, type) or not issubclass(cls, Migration):
            raise MigrationFault(
                migration=name,
                reason=f"Migration class {class_name} not found in {path.name}",
            )
        return cls

    # ── Operations ───────────────────────────────────────────────────

    def migrate(self, steps: Optional[int] = None) -> List[str]:
        """
        Apply pending migrations as one new batch.

        Args:
            steps: Apply at most this many pending migrations

        Returns:
            Names of the applied migrations, in order
        """
        pending = self.pending()
        if steps is not None:
            pending = pending[: max(int(steps), 0)]
        if not pending:
            logger.info("No pending migrations.")
            return []

        batch = self._next_batch()
        self._run_batch(pending, "up", batch)
        return pending

    def rollback(self, steps: int = 1) -> List[str]:
        """
        Revert the most recent ``steps`` batches, newest first, in one
        transaction.

        Returns:
            Names of the reverted migrations, in the order they were reverted
        """
        ledger = self._ledger()
        batches = sorted({row["batch"] for row in ledger}, reverse=True)[: max(int(steps), 0)]
        if not batches:
            logger.info("No migrations to roll back.")
            return []

        rolled_back: List[str] = []
        # All batches of one call commit or roll back together.
        with self.db.transaction():
            for batch in batches:
                names = [row["migration"] for row in ledger if row["batch"] == batch]
                names.reverse()
                self._run_batch(names, "down", batch)
                rolled_back.extend(names)
        return rolled_back

    def reset(self) -> List[str]:
        """Revert every applied migration."""
        batches = {row["batch"] for row in self._ledger()}
        if not batches:
            logger.info("No migrations to reset.")
            return []
        return self.rollback(len(batches))

    def refresh(self) -> Dict[str, List[str]]:
        """Reset, then migrate everything again."""
        reset = self.reset()
        migrated = self.migrate()
        return {"reset": reset, "migrated": migrated}

    def status(self) -> List[Dict[str, Any]]:
        """One row per known migration: name, ``Ran`` / ``Pending`` and batch."""
        batches = {row["migration"]: row["batch"] for row in self._ledger()}
        names = sorted(set(self.available()) | set(batches))
        return [
            {
                "migration": name,
                "status": "Ran" if name in batches else "Pending",
                "batch": batches.get(name),
            }
            for name in names
        ]

    # ── Batch execution ──────────────────────────────────────────────

    def _run_batch(self, names: List[str], direction: str, batch: int) -> None:
        pre_migrate.send(type(self), db=self.db, direction=direction, batch=batch, migrations=list(names))

        current = None
        try:
            with self.db.transaction():
                for name in names:
                    current = name
                    migration = self.resolve(name)(self.db, self.schema)
                    if direction == "up":
                        migration.up()
                        self._record(name, batch)
                        logger.info(f"Migrated: {name}")
                    else:
                        migration.down()
                        self._forget(name)
                        logger.info(f"Rolled back: {name}")
        except MigrationFault as exc:
            logger.error(f"Migration batch {batch} ({direction}) failed: {exc.message}")
            raise
        except Exception as exc:
            logger.error(f"Migration batch {batch} ({direction}) failed at {current}: {exc}")
            raise MigrationFault(
                migration=current or "<batch>",
                reason=f"{'Migration' if direction == 'up' else 'Rollback'} failed: {exc}",
                metadata={"batch": batch, "direction": direction},
            ) from exc

        post_migrate.send(type(self), db=self.db, direction=direction, batch=batch, migrations=list(names))
