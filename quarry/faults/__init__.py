"""
Quarry Faults - typed errors raised by the data-access engine.

Every database-level failure is wrapped in one of these and re-raised;
nothing is swallowed.

Core exports:
- Fault: Base fault class
- FaultDomain: Domain enumeration
- Severity: Severity levels

The plain ``*Error`` names are aliases of the fault classes.
"""

from .core import (
    Fault,
    FaultDomain,
    Severity,
)

from .domains import (
    ConfigFault,
    DatabaseConnectionFault,
    MigrationFault,
    ModelFault,
    NotFoundFault,
    PersistenceFault,
    QueryFault,
    SchemaFault,
    ValidationFault,
)

# ── Aliases ─────────────────────────────────────────────────────────────────
ValidationError = ValidationFault
NotFoundError = NotFoundFault
QueryError = QueryFault
PersistenceError = PersistenceFault
MigrationError = MigrationFault

__all__ = [
    # Core types
    "Fault",
    "FaultDomain",
    "Severity",

    # Domain faults
    "ConfigFault",
    "DatabaseConnectionFault",
    "MigrationFault",
    "ModelFault",
    "NotFoundFault",
    "PersistenceFault",
    "QueryFault",
    "SchemaFault",
    "ValidationFault",

    # Aliases
    "ValidationError",
    "NotFoundError",
    "QueryError",
    "PersistenceError",
    "MigrationError",
]
