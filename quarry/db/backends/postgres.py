"""
Quarry DB Backend - PostgreSQL adapter via psycopg (v3).

Requires psycopg:
    pip install "quarry[postgres]"
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from .base import (
    DatabaseAdapter,
    AdapterCapabilities,
    ColumnInfo,
    ExecuteResult,
    qmark_to_format,
)

logger = logging.getLogger("quarry.db.backends.postgres")

__all__ = ["PostgresAdapter"]

# Try importing the postgres driver
try:
    import psycopg
    from psycopg.rows import dict_row
    _HAS_PSYCOPG = True
except ImportError:
    psycopg = None  # type: ignore
    dict_row = None  # type: ignore
    _HAS_PSYCOPG = False


class PostgresAdapter(DatabaseAdapter):
    """
    PostgreSQL adapter using a single psycopg connection.

    Features:
    - Transactional DDL (migration batches are fully atomic)
    - ``RETURNING`` for generated primary keys
    - Introspection via information_schema
    - Automatic ``?`` → ``%s`` placeholder conversion (string-literal safe)
    """

    capabilities = AdapterCapabilities(
        supports_returning=True,
        supports_json_type=True,
        supports_transactional_ddl=True,
        supports_unsigned=False,
        supports_inline_enum=False,
        param_style="format",
        name="postgresql",
    )

    def __init__(self):
        self._connection: Any = None
        self._connected = False

    def connect(self, url: str, **options: Any) -> None:
        if self._connected:
            return

        if not _HAS_PSYCOPG:
            raise ImportError(
                "psycopg is required for PostgreSQL support.\n"
                "Install: pip install psycopg"
            )

        url = url.replace("postgres://", "postgresql://", 1)
        self._connection = psycopg.connect(
            url, autocommit=True, row_factory=dict_row, **options
        )
        self._connected = True
        logger.info(f"PostgreSQL connected via psycopg: {_mask_url(url)}")

    def disconnect(self) -> None:
        if not self._connected:
            return
        if self._connection is not None:
            self._connection.close()
            self._connection = None
        self._connected = False
        logger.info("PostgreSQL disconnected")

    def adapt_sql(self, sql: str) -> str:
        return qmark_to_format(sql)

    def _conn(self) -> Any:
        if not self._connected or self._connection is None:
            raise RuntimeError("Not connected to PostgreSQL")
        return self._connection

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecuteResult:
        with self._conn().cursor() as cur:
            cur.execute(self.adapt_sql(sql), list(params or []))
            return ExecuteResult(rowcount=cur.rowcount)

    def execute_many(self, sql: str, params_list: Sequence[Sequence[Any]]) -> None:
        with self._conn().cursor() as cur:
            cur.executemany(self.adapt_sql(sql), [list(p) for p in params_list])

    def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        with self._conn().cursor() as cur:
            cur.execute(self.adapt_sql(sql), list(params or []))
            return [dict(row) for row in cur.fetchall()]

    def fetch_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        with self._conn().cursor() as cur:
            cur.execute(self.adapt_sql(sql), list(params or []))
            row = cur.fetchone()
        return dict(row) if row is not None else None

    # ── Transactions ─────────────────────────────────────────────────

    def begin(self) -> None:
        self._conn().execute("BEGIN")

    def commit(self) -> None:
        self._conn().execute("COMMIT")

    def rollback(self) -> None:
        self._conn().execute("ROLLBACK")

    # ── Introspection ────────────────────────────────────────────────

    def table_exists(self, table_name: str) -> bool:
        row = self.fetch_one(
            "SELECT EXISTS(SELECT 1 FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_name = ?) AS present",
            [table_name],
        )
        return bool(row and row["present"])

    def get_tables(self) -> List[str]:
        rows = self.fetch_all(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = current_schema() ORDER BY table_name"
        )
        return [r["table_name"] for r in rows]

    def get_columns(self, table_name: str) -> List[ColumnInfo]:
        rows = self.fetch_all(
            "SELECT c.column_name, c.data_type, c.is_nullable, c.column_default, "
            "EXISTS(SELECT 1 FROM information_schema.key_column_usage k "
            "JOIN information_schema.table_constraints t "
            "ON t.constraint_name = k.constraint_name "
            "WHERE t.constraint_type = 'PRIMARY KEY' AND k.table_name = c.table_name "
            "AND k.column_name = c.column_name) AS is_pk "
            "FROM information_schema.columns c "
            "WHERE c.table_schema = current_schema() AND c.table_name = ? "
            "ORDER BY c.ordinal_position",
            [table_name],
        )
        return [
            ColumnInfo(
                name=row["column_name"],
                data_type=row["data_type"],
                nullable=row["is_nullable"] == "YES",
                default=row["column_default"],
                primary_key=bool(row["is_pk"]),
            )
            for row in rows
        ]

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def dialect(self) -> str:
        return "postgresql"


def _mask_url(url: str) -> str:
    """Mask password in a connection URL for logging."""
    if "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    creds, host = rest.rsplit("@", 1)
    if ":" in creds:
        user = creds.split(":", 1)[0]
        return f"{scheme}://{user}:***@{host}"
    return url
