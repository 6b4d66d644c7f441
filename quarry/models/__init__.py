"""
Quarry Models - entities, query builder, relations and life-cycle signals.

Usage:
    from quarry.models import Entity, relation

    class Post(Entity):
        class Meta:
            fillable = ["title", "body", "account_id"]
            soft_deletes = True

        @relation
        def account(self):
            return self.belongs_to("Account")
"""

from .entity import (
    Entity,
    EntityMeta,
    EntityRegistry,
    Options,
    accessor,
    mutator,
    relation,
    scope,
)
from .query import OPERATORS, Page, QueryBuilder, SimplePage, WhereClause
from .relations import (
    BelongsTo,
    BelongsToMany,
    HasMany,
    HasOne,
    Relation,
    default_foreign_key,
    default_pivot_table,
)
from .signals import (
    Signal,
    created,
    creating,
    deleted,
    deleting,
    post_migrate,
    pre_migrate,
    updated,
    updating,
)

__all__ = [
    # Entities
    "Entity",
    "EntityMeta",
    "EntityRegistry",
    "Options",
    "accessor",
    "mutator",
    "relation",
    "scope",
    # Query
    "QueryBuilder",
    "WhereClause",
    "Page",
    "SimplePage",
    "OPERATORS",
    # Relations
    "Relation",
    "HasOne",
    "HasMany",
    "BelongsTo",
    "BelongsToMany",
    "default_foreign_key",
    "default_pivot_table",
    # Signals
    "Signal",
    "creating",
    "created",
    "updating",
    "updated",
    "deleting",
    "deleted",
    "pre_migrate",
    "post_migrate",
]
