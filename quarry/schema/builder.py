"""
Quarry Schema - the Schema facade.

Runs Blueprints against a Database:

    schema = Schema(db)
    schema.create("accounts", lambda t: (t.id(), t.string("email").unique()))

    def add_bio(table):
        table.text("bio").nullable()

    schema.table("accounts", add_bio)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, List, Optional

from ..faults.domains import QueryFault, SchemaFault
from ..models.naming import quote_identifier
from .blueprint import Blueprint

if TYPE_CHECKING:
    from ..db.engine import Database

logger = logging.getLogger("quarry.schema")

__all__ = ["Schema"]

BlueprintCallback = Callable[[Blueprint], object]


class Schema:
    """Create, alter, drop and inspect tables on one database."""

    def __init__(self, db: Optional["Database"] = None):
        if db is None:
            from ..db.engine import get_database
            db = get_database()
        self.db = db

    @property
    def dialect(self) -> str:
        return self.db.dialect

    def blueprint(self, table: str, action: str = "create") -> Blueprint:
        return Blueprint(table, action=action, dialect=self.dialect)

    # ── DDL ──────────────────────────────────────────────────────────

    def create(self, table: str, callback: BlueprintCallback) -> Blueprint:
        """Build a Blueprint with ``callback`` and create the table and its indexes."""
        bp = self.blueprint(table, "create")
        callback(bp)
        self._run(table, bp.create_statements())
        logger.info(f"Created table {table}")
        return bp

    def table(self, table: str, callback: BlueprintCallback) -> Blueprint:
        """Build an alter Blueprint with ``callback`` and apply it."""
        bp = self.blueprint(table, "alter")
        callback(bp)
        self._run(table, bp.to_alter_sql())
        logger.info(f"Altered table {table}")
        return bp

    def drop(self, table: str) -> None:
        self._run(table, [f"DROP TABLE {quote_identifier(table)}"])
        logger.info(f"Dropped table {table}")

    def drop_if_exists(self, table: str) -> None:
        self._run(table, [f"DROP TABLE IF EXISTS {quote_identifier(table)}"])
        logger.info(f"Dropped table {table} (if exists)")

    def rename(self, old: str, new: str) -> None:
        if self.dialect == "mysql":
            sql = f"RENAME TABLE {quote_identifier(old)} TO {quote_identifier(new)}"
        else:
            sql = f"ALTER TABLE {quote_identifier(old)} RENAME TO {quote_identifier(new)}"
        self._run(old, [sql])
        logger.info(f"Renamed table {old} -> {new}")

    # ── Introspection ────────────────────────────────────────────────

    def has_table(self, table: str) -> bool:
        return self.db.table_exists(table)

    def has_column(self, table: str, column: str) -> bool:
        return self.db.has_column(table, column)

    def get_tables(self) -> List[str]:
        return self.db.get_tables()

    # ── Internals ────────────────────────────────────────────────────

    def _run(self, table: str, statements: List[str]) -> None:
        for sql in statements:
            if sql.lstrip().startswith("--"):
                logger.warning(f"Skipping unsupported statement: {sql.lstrip()[2:].strip()}")
                continue
            try:
                self.db.execute(sql)
            except QueryFault as exc:
                raise SchemaFault(
                    table,
                    exc.reason,
                    metadata={"sql": sql},
                ) from (exc.__cause__ or exc)
