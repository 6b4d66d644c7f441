"""
Quarry Schema - Blueprint DSL and the Schema facade.

    from quarry.schema import Schema

    Schema(db).create("accounts", lambda t: (t.id(), t.string("email").unique(), t.timestamps()))
"""

from .blueprint import Blueprint
from .builder import Schema
from .column import NO_DEFAULT, ColumnDefinition, ForeignKeyDefinition, format_default

__all__ = [
    "Blueprint",
    "Schema",
    "ColumnDefinition",
    "ForeignKeyDefinition",
    "format_default",
    "NO_DEFAULT",
]
