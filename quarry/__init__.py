"""
Quarry - Lightweight synchronous data-access layer

Complete integration of:
- Database: One shared connection per process (SQLite, PostgreSQL, MySQL)
- Entities: Row-bound classes with casts, accessors, mutators and hooks
- Query builder: Immutable, parameterized, fluent
- Relations: has-one, has-many, belongs-to, many-to-many
- Schema: Blueprint table DSL and the Schema facade
- Migrations: Versioned up/down classes tracked in a batch ledger
- Faults: Structured error handling with fault domains
"""

__version__ = "0.1.0"

# ============================================================================
# Database
# ============================================================================

from .db import (
    Database,
    close_database,
    configure_database,
    get_database,
    set_database,
)
from .config import ConfigLoader, DatabaseConfig, configure_from

# ============================================================================
# Entities & Queries
# ============================================================================

from .models import (
    BelongsTo,
    BelongsToMany,
    Entity,
    EntityRegistry,
    HasMany,
    HasOne,
    Page,
    QueryBuilder,
    SimplePage,
    Signal,
    accessor,
    mutator,
    relation,
    scope,
)

# ============================================================================
# Schema & Migrations
# ============================================================================

from .schema import Blueprint, ColumnDefinition, ForeignKeyDefinition, Schema
from .migrations import Migration, MigrationManager

# ============================================================================
# Faults
# ============================================================================

from .faults import (
    ConfigFault,
    DatabaseConnectionFault,
    Fault,
    MigrationError,
    MigrationFault,
    ModelFault,
    NotFoundError,
    NotFoundFault,
    PersistenceError,
    PersistenceFault,
    QueryError,
    QueryFault,
    SchemaFault,
    ValidationError,
    ValidationFault,
)

__all__ = [
    "__version__",
    # Database
    "Database",
    "configure_database",
    "get_database",
    "set_database",
    "close_database",
    "ConfigLoader",
    "DatabaseConfig",
    "configure_from",
    # Entities
    "Entity",
    "EntityRegistry",
    "QueryBuilder",
    "Page",
    "SimplePage",
    "HasOne",
    "HasMany",
    "BelongsTo",
    "BelongsToMany",
    "Signal",
    "accessor",
    "mutator",
    "relation",
    "scope",
    # Schema
    "Blueprint",
    "ColumnDefinition",
    "ForeignKeyDefinition",
    "Schema",
    "Migration",
    "MigrationManager",
    # Faults
    "Fault",
    "ConfigFault",
    "DatabaseConnectionFault",
    "ModelFault",
    "ValidationFault",
    "NotFoundFault",
    "QueryFault",
    "PersistenceFault",
    "MigrationFault",
    "SchemaFault",
    "ValidationError",
    "NotFoundError",
    "QueryError",
    "PersistenceError",
    "MigrationError",
]
