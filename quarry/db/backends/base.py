"""
Quarry DB Backend - Base Adapter Interface.

All database backends must implement this interface. The ``Database``
engine delegates to the appropriate adapter based on the connection URL.

This interface abstracts differences between SQLite, PostgreSQL, and MySQL:
- Parameter placeholder style (?, %s)
- Transaction semantics
- Introspection queries
- RETURNING clause support
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger("quarry.db.backends")

__all__ = [
    "DatabaseAdapter",
    "AdapterCapabilities",
    "ColumnInfo",
    "ExecuteResult",
]


@dataclass
class AdapterCapabilities:
    """Describes what a specific backend supports."""

    supports_returning: bool = False
    supports_json_type: bool = False
    supports_transactional_ddl: bool = True
    supports_unsigned: bool = False
    supports_inline_enum: bool = False
    param_style: str = "qmark"  # qmark (?) | format (%s)
    name: str = "base"


@dataclass
class ColumnInfo:
    """Introspection result for a single column."""

    name: str
    data_type: str
    nullable: bool = True
    default: Optional[str] = None
    primary_key: bool = False


@dataclass
class ExecuteResult:
    """Outcome of a non-SELECT statement."""

    rowcount: int = 0
    lastrowid: Optional[int] = None


class DatabaseAdapter(ABC):
    """
    Abstract database adapter interface.

    All backends must implement these methods. The ``Database``
    engine uses this interface to execute queries, manage transactions,
    and introspect schemas. Every method blocks until the server answers.
    """

    capabilities: AdapterCapabilities = AdapterCapabilities()

    @abstractmethod
    def connect(self, url: str, **options: Any) -> None:
        """Open a connection to the database."""
        ...

    @abstractmethod
    def disconnect(self) -> None:
        """Close the database connection."""
        ...

    @abstractmethod
    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecuteResult:
        """Execute a SQL statement."""
        ...

    @abstractmethod
    def execute_many(self, sql: str, params_list: Sequence[Sequence[Any]]) -> None:
        """Execute a SQL statement with multiple parameter sets."""
        ...

    @abstractmethod
    def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """Execute and return all rows as dicts."""
        ...

    def fetch_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute and return one row as dict, or None."""
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_val(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        """Execute and return a scalar value."""
        row = self.fetch_one(sql, params)
        if row is None:
            return None
        return next(iter(row.values()), None)

    # ── Transaction management ───────────────────────────────────────

    @abstractmethod
    def begin(self) -> None:
        """Start a transaction."""
        ...

    @abstractmethod
    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    @abstractmethod
    def rollback(self) -> None:
        """Rollback the current transaction."""
        ...

    # ── Introspection ────────────────────────────────────────────────

    @abstractmethod
    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        ...

    @abstractmethod
    def get_tables(self) -> List[str]:
        """List all table names."""
        ...

    @abstractmethod
    def get_columns(self, table_name: str) -> List[ColumnInfo]:
        """Get column info for a table."""
        ...

    # ── SQL adaptation ───────────────────────────────────────────────

    def adapt_sql(self, sql: str) -> str:
        """
        Adapt SQL placeholders from qmark (?) to the backend's param style.

        Override this in backends that use a different param style.
        """
        return sql

    @property
    def is_connected(self) -> bool:
        """Check if the adapter is connected."""
        return False

    @property
    def dialect(self) -> str:
        """Return the SQL dialect name."""
        return self.capabilities.name


def qmark_to_format(sql: str) -> str:
    """
    Convert ``?`` placeholders to ``%s``, leaving quoted literals alone.

    Literal ``%`` characters are doubled so the driver does not read them
    as format directives.
    """
    out: List[str] = []
    quote: Optional[str] = None
    for ch in sql:
        if quote:
            if ch == quote:
                quote = None
            out.append("%%" if ch == "%" else ch)
            continue
        if ch in ("'", '"'):
            quote = ch
            out.append(ch)
        elif ch == "?":
            out.append("%s")
        elif ch == "%":
            out.append("%%")
        else:
            out.append(ch)
    return "".join(out)
