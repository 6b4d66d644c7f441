"""
Quarry Database - synchronous connection provider.

Provides:
- Database: Connection manager with transaction support
- SQLite driver (default), Postgres/MySQL adapters
- Module-level handle: configure_database / get_database / set_database / close_database
- Structured faults (DatabaseConnectionFault, QueryFault, SchemaFault)
"""

from .engine import (
    Database,
    Statement,
    get_database,
    configure_database,
    set_database,
    close_database,
)

# Backend adapters
from .backends import (
    DatabaseAdapter,
    AdapterCapabilities,
    ColumnInfo,
    ExecuteResult,
    SQLiteAdapter,
    PostgresAdapter,
    MySQLAdapter,
)

# Re-export fault types for convenience
from ..faults.domains import (
    DatabaseConnectionFault,
    QueryFault,
    SchemaFault,
)

__all__ = [
    "Database",
    "Statement",
    "DatabaseConnectionFault",
    "QueryFault",
    "SchemaFault",
    "get_database",
    "configure_database",
    "set_database",
    "close_database",
    # Backends
    "DatabaseAdapter",
    "AdapterCapabilities",
    "ColumnInfo",
    "ExecuteResult",
    "SQLiteAdapter",
    "PostgresAdapter",
    "MySQLAdapter",
]
