"""
Quarry Migrations - versioned schema changes and the batch ledger.

    from quarry.migrations import MigrationManager

    manager = MigrationManager(db, migrations_path="database/migrations")
    manager.migrate()
    manager.rollback()
"""

from .base import Migration
from .manager import MIGRATION_NAME_RE, MigrationManager, migration_class_name

__all__ = [
    "Migration",
    "MigrationManager",
    "MIGRATION_NAME_RE",
    "migration_class_name",
]
