"""
Quarry Migrations - the Migration base class.

A migration is a class with ``up()`` and ``down()``. The manager builds it
with the active database and a ``Schema`` bound to it:

    class CreateAccountsTable(Migration):
        def up(self):
            def build(table):
                table.id()
                table.string("email").unique()
                table.timestamps()
            self.create_table("accounts", build)

        def down(self):
            self.drop_table_if_exists("accounts")
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Union

from ..models.naming import quote_identifier
from ..schema.blueprint import Blueprint
from ..schema.builder import BlueprintCallback, Schema

if TYPE_CHECKING:
    from ..db.engine import Database

logger = logging.getLogger("quarry.migrations")

__all__ = ["Migration"]


class Migration(ABC):
    """Base class for versioned schema changes."""

    def __init__(self, db: Optional["Database"] = None, schema: Optional[Schema] = None):
        if db is None:
            from ..db.engine import get_database
            db = get_database()
        self.db = db
        self.schema = schema or Schema(db)

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def up(self) -> None:
        """Apply the change."""

    @abstractmethod
    def down(self) -> None:
        """Revert the change."""

    # ── Tables ───────────────────────────────────────────────────────

    def create_table(self, table: str, callback: BlueprintCallback) -> Blueprint:
        return self.schema.create(table, callback)

    def table(self, table: str, callback: BlueprintCallback) -> Blueprint:
        return self.schema.table(table, callback)

    def drop_table(self, table: str) -> None:
        self.schema.drop(table)

    def drop_table_if_exists(self, table: str) -> None:
        self.schema.drop_if_exists(table)

    def rename_table(self, old: str, new: str) -> None:
        self.schema.rename(old, new)

    def has_table(self, table: str) -> bool:
        return self.schema.has_table(table)

    def has_column(self, table: str, column: str) -> bool:
        return self.schema.has_column(table, column)

    # ── Indexes and keys ─────────────────────────────────────────────

    def create_index(
        self,
        table: str,
        columns: Union[str, Sequence[str]],
        name: Optional[str] = None,
        unique: bool = False,
    ) -> None:
        def build(bp: Blueprint) -> None:
            if unique:
                bp.unique(columns, name)
            else:
                bp.index(columns, name)

        self.schema.table(table, build)

    def drop_index(self, table: str, name: str) -> None:
        self.schema.table(table, lambda bp: bp.drop_index(name))

    def foreign(
        self,
        table: str,
        column: str,
        references_table: str,
        references_column: str = "id",
        on_delete: str = "cascade",
        on_update: str = "cascade",
    ) -> None:
        """Add a foreign-key constraint. SQLite cannot, so it is skipped there."""
        def build(bp: Blueprint) -> None:
            (
                bp.foreign(column)
                .references(references_column)
                .on(references_table)
                .on_delete(on_delete)
                .on_update(on_update)
            )

        self.schema.table(table, build)

    def drop_foreign(self, table: str, name: str) -> None:
        self.schema.table(table, lambda bp: bp.drop_foreign(name))

    # ── Raw SQL and data ─────────────────────────────────────────────

    def statement(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """Run a raw statement; returns the affected row count."""
        return self.db.execute(sql, params).rowcount

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        return self.db.fetch_all(sql, params)

    def seed(self, table: str, rows: Sequence[Mapping[str, Any]]) -> int:
        """
        Insert ``rows`` into ``table``. Columns are taken from the first row;
        every row must carry the same keys.
        """
        if not rows:
            return 0
        columns = list(rows[0])
        cols_sql = ", ".join(quote_identifier(c) for c in columns)
        marks = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {quote_identifier(table)} ({cols_sql}) VALUES ({marks})"
        self.db.execute_many(sql, [[row[c] for c in columns] for row in rows])
        logger.debug(f"Seeded {len(rows)} rows into {table}")
        return len(rows)

    def truncate(self, table: str) -> None:
        if self.db.dialect == "sqlite":
            self.db.execute(f"DELETE FROM {quote_identifier(table)}")
        else:
            self.db.execute(f"TRUNCATE TABLE {quote_identifier(table)}")

    def __repr__(self) -> str:
        return f"<Migration {self.name}>"
