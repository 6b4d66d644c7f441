"""
Quarry DB Backends Package - database adapters.

Provides a common adapter interface and implementations for:
- SQLite (default, via sqlite3)
- PostgreSQL (via psycopg)
- MySQL (via pymysql)
"""

from .base import DatabaseAdapter, AdapterCapabilities, ColumnInfo, ExecuteResult
from .sqlite import SQLiteAdapter
from .postgres import PostgresAdapter
from .mysql import MySQLAdapter

__all__ = [
    "DatabaseAdapter",
    "AdapterCapabilities",
    "ColumnInfo",
    "ExecuteResult",
    "SQLiteAdapter",
    "PostgresAdapter",
    "MySQLAdapter",
]
