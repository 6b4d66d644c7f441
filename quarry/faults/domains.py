"""
Quarry Faults - Domain-specific fault types.

Provides concrete fault classes for each domain:
- CONFIG faults
- VALIDATION faults
- MODEL faults (lookup, query, persistence)
- MIGRATION faults (schema, migration batches)
- CONNECTION faults
"""

from typing import Any, Dict, List, Optional

from .core import Fault, FaultDomain, Severity


# ============================================================================
# CONFIG Faults
# ============================================================================

class ConfigFault(Fault):
    """Invalid or unreadable configuration."""

    def __init__(self, key: str, reason: str, **kwargs):
        super().__init__(
            code="CONFIG_INVALID",
            message=f"Invalid configuration for '{key}': {reason}",
            domain=FaultDomain.CONFIG,
            metadata={"key": key, "reason": reason, **kwargs.get("metadata", {})},
        )


# ============================================================================
# VALIDATION Faults
# ============================================================================

class ValidationFault(Fault):
    """One or more declared rules were violated. Never touches the database."""

    def __init__(self, entity: str, errors: Dict[str, List[str]], **kwargs):
        fields = ", ".join(sorted(errors))
        super().__init__(
            code="VALIDATION_FAILED",
            message=f"Validation failed for '{entity}' on: {fields}",
            domain=FaultDomain.VALIDATION,
            metadata={"entity": entity, **kwargs.get("metadata", {})},
        )
        self.errors = errors


# ============================================================================
# MODEL Faults (entities / queries / persistence)
# ============================================================================

class ModelFault(Fault):
    """Base class for entity and query faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.ERROR,
        retryable: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.MODEL,
            severity=severity,
            retryable=retryable,
            metadata=metadata,
        )


class NotFoundFault(ModelFault):
    """An expected single row was absent."""

    def __init__(self, entity: str, key: Any = None, **kwargs):
        detail = f" with key {key!r}" if key is not None else ""
        super().__init__(
            code="ENTITY_NOT_FOUND",
            message=f"No '{entity}' row found{detail}",
            severity=Severity.WARN,
            metadata={"entity": entity, "key": key, **kwargs.get("metadata", {})},
        )


class QueryFault(ModelFault):
    """Query compilation or execution failed."""

    def __init__(self, model: str, operation: str, reason: str, **kwargs):
        super().__init__(
            code="QUERY_FAILED",
            message=f"Query on '{model}' ({operation}) failed: {reason}",
            metadata={"model": model, "operation": operation, "reason": reason, **kwargs.get("metadata", {})},
        )
        self.reason = reason


class PersistenceFault(ModelFault):
    """Insert, update or delete failed (constraint violation, lost connection, ...)."""

    def __init__(
        self,
        entity: str,
        operation: str,
        reason: str,
        *,
        cause: Optional[BaseException] = None,
        **kwargs,
    ):
        super().__init__(
            code="PERSISTENCE_FAILED",
            message=f"Could not {operation} '{entity}': {reason}",
            metadata={"entity": entity, "operation": operation, "reason": reason, **kwargs.get("metadata", {})},
        )
        self.cause = cause


# ============================================================================
# MIGRATION Faults
# ============================================================================

class MigrationFault(Fault):
    """A migration failed inside a managed batch."""

    def __init__(self, migration: str, reason: str, **kwargs):
        super().__init__(
            code="MIGRATION_FAILED",
            message=f"Migration '{migration}' failed: {reason}",
            domain=FaultDomain.MIGRATION,
            metadata={"migration": migration, "reason": reason, **kwargs.get("metadata", {})},
        )
        self.migration = migration


class SchemaFault(Fault):
    """Schema creation or validation failed."""

    def __init__(self, table: str, reason: str, **kwargs):
        super().__init__(
            code="SCHEMA_FAULT",
            message=f"Schema error for table '{table}': {reason}",
            domain=FaultDomain.MIGRATION,
            metadata={"table": table, "reason": reason, **kwargs.get("metadata", {})},
        )


# ============================================================================
# CONNECTION Faults
# ============================================================================

class DatabaseConnectionFault(Fault):
    """Database connection failed."""

    def __init__(self, url: str, reason: str, **kwargs):
        super().__init__(
            code="DB_CONNECTION_FAILED",
            message=f"Database connection failed ({url}): {reason}",
            domain=FaultDomain.CONNECTION,
            metadata={"url": url, "reason": reason, **kwargs.get("metadata", {})},
        )
