"""
Quarry DB Backend - SQLite adapter via the standard ``sqlite3`` module.

This is the default backend. The connection runs in autocommit mode
(``isolation_level=None``) so that transactions are always explicit
``BEGIN`` / ``COMMIT`` / ``ROLLBACK`` issued by the engine; this also
makes DDL inside a migration batch transactional.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional, Sequence

from .base import (
    DatabaseAdapter,
    AdapterCapabilities,
    ColumnInfo,
    ExecuteResult,
)

logger = logging.getLogger("quarry.db.backends.sqlite")

__all__ = ["SQLiteAdapter"]


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite adapter using ``sqlite3``.

    Features:
    - Foreign key enforcement
    - Transactional DDL
    - Introspection via ``sqlite_master`` and ``PRAGMA table_info``
    """

    capabilities = AdapterCapabilities(
        supports_returning=False,
        supports_json_type=False,
        supports_transactional_ddl=True,
        supports_unsigned=False,
        supports_inline_enum=False,
        param_style="qmark",
        name="sqlite",
    )

    def __init__(self):
        self._connection: Optional[sqlite3.Connection] = None
        self._connected = False

    def connect(self, url: str, **options: Any) -> None:
        if self._connected:
            return
        db_path = self._parse_url(url)
        options.setdefault("check_same_thread", False)
        self._connection = sqlite3.connect(db_path, isolation_level=None, **options)
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA foreign_keys=ON")
        self._connected = True
        logger.info(f"SQLite connected: {db_path}")

    def disconnect(self) -> None:
        if not self._connected:
            return
        if self._connection is not None:
            self._connection.close()
            self._connection = None
        self._connected = False
        logger.info("SQLite disconnected")

    def _conn(self) -> sqlite3.Connection:
        if not self._connected or self._connection is None:
            raise RuntimeError("Not connected")
        return self._connection

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecuteResult:
        cursor = self._conn().execute(sql, list(params or []))
        try:
            return ExecuteResult(rowcount=cursor.rowcount, lastrowid=cursor.lastrowid)
        finally:
            cursor.close()

    def execute_many(self, sql: str, params_list: Sequence[Sequence[Any]]) -> None:
        self._conn().executemany(sql, params_list)

    def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        cursor = self._conn().execute(sql, list(params or []))
        try:
            return [dict(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def fetch_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        cursor = self._conn().execute(sql, list(params or []))
        try:
            row = cursor.fetchone()
        finally:
            cursor.close()
        return dict(row) if row is not None else None

    # ── Transactions ─────────────────────────────────────────────────

    def begin(self) -> None:
        self._conn().execute("BEGIN")

    def commit(self) -> None:
        conn = self._conn()
        if conn.in_transaction:
            conn.execute("COMMIT")

    def rollback(self) -> None:
        conn = self._conn()
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    # ── Introspection ────────────────────────────────────────────────

    def table_exists(self, table_name: str) -> bool:
        row = self.fetch_one(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
            [table_name],
        )
        return row is not None

    def get_tables(self) -> List[str]:
        rows = self.fetch_all(
            "SELECT name FROM sqlite_master WHERE type='table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [r["name"] for r in rows]

    def get_columns(self, table_name: str) -> List[ColumnInfo]:
        rows = self.fetch_all("SELECT * FROM pragma_table_info(?)", [table_name])
        return [
            ColumnInfo(
                name=row["name"],
                data_type=row["type"],
                nullable=not row["notnull"],
                default=row["dflt_value"],
                primary_key=bool(row["pk"]),
            )
            for row in rows
        ]

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def dialect(self) -> str:
        return "sqlite"

    @staticmethod
    def _parse_url(url: str) -> str:
        """Extract file path from sqlite URL."""
        for prefix in ("sqlite:///", "sqlite://"):
            if url.startswith(prefix):
                path = url[len(prefix):]
                return path or ":memory:"
        return url.replace("sqlite:", "").lstrip("/") or ":memory:"
