"""
Quarry Entity Base - metaclass-driven active-record entities.

Usage:
    from quarry.models import Entity, accessor, mutator, relation, scope

    class Account(Entity):
        class Meta:
            fillable = ["name", "email"]
            hidden = ["password"]
            casts = {"settings": "json", "active": "bool"}
            rules = {"email": "required|email", "name": "required|min:2"}

        @mutator("email")
        def _lower_email(self, value):
            self.set_attribute("email", value.lower())

        @accessor("display_name")
        def _display_name(self):
            return f"{self.name} <{self.email}>"

        @scope("active")
        def _active(query):
            return query.where("active", True)

        @relation
        def posts(self):
            return self.has_many(Post)

    ana = Account.create({"name": "Ana", "email": "A@x.com"})
    Account.scope("active").order_by("name").get()
    ana.posts().count()
"""

from __future__ import annotations

import datetime
import json
import logging
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    TYPE_CHECKING,
    Union,
)

from ..faults.domains import (
    ModelFault,
    NotFoundFault,
    PersistenceFault,
    QueryFault,
    ValidationFault,
)
from . import validation as _validation
from .casts import TIMESTAMP_FORMAT, cast_value, now_string, storage_value
from .naming import quote_identifier, table_name_for
from .query import Page, QueryBuilder, SimplePage
from .relations import BelongsTo, BelongsToMany, HasMany, HasOne, Relation
from .signals import LIFECYCLE_SIGNALS

if TYPE_CHECKING:
    from ..db.engine import Database

logger = logging.getLogger("quarry.models")

__all__ = [
    "Entity",
    "EntityMeta",
    "EntityRegistry",
    "Options",
    "accessor",
    "mutator",
    "scope",
    "relation",
]


# ── Registration decorators ──────────────────────────────────────────────────


def accessor(name: str) -> Callable:
    """Register ``fn(self)`` as the reader for attribute ``name``."""
    def _decorator(fn: Callable) -> Callable:
        fn._quarry_accessor = name
        return fn
    return _decorator


def mutator(name: str) -> Callable:
    """Register ``fn(self, value)`` as the writer for attribute ``name``."""
    def _decorator(fn: Callable) -> Callable:
        fn._quarry_mutator = name
        return fn
    return _decorator


def scope(name: Union[str, Callable, None] = None) -> Callable:
    """
    Register ``fn(query, *args)`` as a named query scope.

    Usable bare (``@scope``, named after the function) or with a name.
    The function returns the narrowed builder.
    """
    def _decorator(fn: Callable, scope_name: Optional[str] = None) -> Callable:
        target = fn.__func__ if isinstance(fn, (staticmethod, classmethod)) else fn
        target._quarry_scope = scope_name or target.__name__
        return fn

    if callable(name):
        return _decorator(name)
    return lambda fn: _decorator(fn, name)


def relation(fn: Callable) -> Callable:
    """Mark an entity method returning a ``Relation`` so ``load()`` can resolve it."""
    fn._quarry_relation = fn.__name__
    return fn


# ── Entity Options (parsed from Meta class) ──────────────────────────────────


class Options:
    """
    Parsed entity options from inner Meta class.

    Attributes:
        table: Database table name
        primary_key: Primary key column (default "id")
        fillable: Allow-list for mass assignment (empty = everything)
        guarded: Deny-list for mass assignment
        hidden: Attributes left out of ``to_dict()``
        casts: attribute -> cast name
        timestamps: Maintain created_at / updated_at
        soft_deletes: Use deleted_at instead of physical deletes
        rules: attribute -> validation rule string
        messages: "<attribute>.<rule>" -> custom validation message
        abstract: Whether the entity is abstract (not registered)
    """

    __slots__ = (
        "table",
        "primary_key",
        "fillable",
        "guarded",
        "hidden",
        "casts",
        "timestamps",
        "soft_deletes",
        "rules",
        "messages",
        "abstract",
    )

    def __init__(
        self,
        entity_name: str,
        meta: Optional[type] = None,
        table_attr: Optional[str] = None,
        parent: Optional["Options"] = None,
    ):
        def opt(name: str, default: Any) -> Any:
            if meta is not None and hasattr(meta, name):
                return getattr(meta, name)
            if parent is not None:
                return getattr(parent, name)
            return default

        self.table: str = (
            table_attr
            or (getattr(meta, "table", None) if meta else None)
            or table_name_for(entity_name)
        )
        self.primary_key: str = opt("primary_key", "id")
        self.fillable: List[str] = list(opt("fillable", []))
        self.guarded: List[str] = list(opt("guarded", [self.primary_key]))
        self.hidden: List[str] = list(opt("hidden", []))
        self.casts: Dict[str, str] = dict(opt("casts", {}))
        self.timestamps: bool = bool(opt("timestamps", True))
        self.soft_deletes: bool = bool(opt("soft_deletes", False))
        self.rules: Dict[str, Any] = dict(opt("rules", {}))
        self.messages: Dict[str, str] = dict(opt("messages", {}))
        self.abstract: bool = bool(getattr(meta, "abstract", False)) if meta else False

    def __repr__(self) -> str:
        return f"<Options table={self.table!r} pk={self.primary_key!r}>"


# ── Entity Registry ──────────────────────────────────────────────────────────


class EntityRegistry:
    """
    Global registry for all Entity subclasses.

    Tracks concrete entities by class name (used to resolve relations
    declared with a string) and carries the database they are bound to.
    """

    _entities: Dict[str, Type["Entity"]] = {}
    _db: Optional["Database"] = None

    @classmethod
    def register(cls, entity_cls: Type["Entity"]) -> None:
        """Register an entity class."""
        cls._entities[entity_cls.__name__] = entity_cls
        if cls._db is not None and entity_cls._db is None:
            entity_cls._db = cls._db

    @classmethod
    def get(cls, name: str) -> Optional[Type["Entity"]]:
        """Get entity class by name."""
        return cls._entities.get(name)

    @classmethod
    def all_entities(cls) -> Dict[str, Type["Entity"]]:
        """Get all registered entities."""
        return dict(cls._entities)

    @classmethod
    def set_database(cls, db: Optional["Database"]) -> None:
        """Bind every registered entity (and those registered later) to ``db``."""
        cls._db = db
        for entity_cls in cls._entities.values():
            entity_cls._db = db

    @classmethod
    def get_database(cls) -> Optional["Database"]:
        return cls._db

    @classmethod
    def reset(cls) -> None:
        """Clear registry (for testing)."""
        cls._entities.clear()
        cls._db = None


# ── Entity Metaclass ─────────────────────────────────────────────────────────


class EntityMeta(type):
    """
    Metaclass for Quarry entities.

    Handles:
    - Meta class parsing into ``Options``
    - Accessor / mutator / scope / relation tables
    - Entity registration
    """

    def __new__(
        mcs,
        name: str,
        bases: Tuple[type, ...],
        namespace: Dict[str, Any],
        **kwargs,
    ) -> "EntityMeta":
        # Don't process the base Entity class itself
        parents = [b for b in bases if isinstance(b, EntityMeta)]
        if not parents:
            return super().__new__(mcs, name, bases, namespace)

        meta_class = namespace.pop("Meta", None)
        table_attr = namespace.pop("table", None)

        parent_opts = next(
            (getattr(p, "_meta", None) for p in parents if getattr(p, "_meta", None)),
            None,
        )
        opts = Options(name, meta_class, table_attr, parent_opts)

        accessors: Dict[str, Callable] = {}
        mutators: Dict[str, Callable] = {}
        scopes: Dict[str, Callable] = {}
        relations: List[str] = []
        for parent in reversed(parents):
            accessors.update(getattr(parent, "_accessors", {}))
            mutators.update(getattr(parent, "_mutators", {}))
            scopes.update(getattr(parent, "_scopes", {}))
            relations.extend(r for r in getattr(parent, "_relation_names", ()) if r not in relations)

        for value in namespace.values():
            fn = value.__func__ if isinstance(value, (staticmethod, classmethod)) else value
            if not callable(fn):
                continue
            if hasattr(fn, "_quarry_accessor"):
                accessors[fn._quarry_accessor] = fn
            if hasattr(fn, "_quarry_mutator"):
                mutators[fn._quarry_mutator] = fn
            if hasattr(fn, "_quarry_scope"):
                scopes[fn._quarry_scope] = fn
            if hasattr(fn, "_quarry_relation") and fn._quarry_relation not in relations:
                relations.append(fn._quarry_relation)

        cls = super().__new__(mcs, name, bases, namespace)

        cls._meta = opts
        cls._accessors = accessors
        cls._mutators = mutators
        cls._scopes = scopes
        cls._relation_names = tuple(relations)
        cls._db = None

        if not opts.abstract:
            EntityRegistry.register(cls)

        return cls


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or (value == 0 and not isinstance(value, bool))


# ── Entity Base Class ────────────────────────────────────────────────────────


class Entity(metaclass=EntityMeta):
    """
    Quarry Entity base class - one instance per table row.

    Attribute state lives in an ordered dict; reads go through declared
    casts and accessors, writes through mutators. Persistence is explicit:
    ``save()`` inserts or updates, ``delete()`` removes the row.

    API:
        acct = Account.create({"name": "Ana", "email": "a@x.com"})
        acct = Account.find(1)
        accts = Account.where("active", True).order_by("name").get()
        Account.where("id", 1).update({"name": "Bob"})
        acct.delete()
    """

    _meta: ClassVar[Options]
    _accessors: ClassVar[Dict[str, Callable]] = {}
    _mutators: ClassVar[Dict[str, Callable]] = {}
    _scopes: ClassVar[Dict[str, Callable]] = {}
    _relation_names: ClassVar[Tuple[str, ...]] = ()
    _db: ClassVar[Optional["Database"]] = None

    def __init__(self, values: Optional[Mapping[str, Any]] = None, **kwargs: Any):
        """Create an entity in memory (not persisted); values go through ``fill()``."""
        self._init_state()
        self.fill({**(values or {}), **kwargs})

    def _init_state(self) -> None:
        object.__setattr__(self, "_attributes", {})
        object.__setattr__(self, "_relations", {})
        object.__setattr__(self, "_exists", False)
        object.__setattr__(self, "_deleted", False)

    @classmethod
    def hydrate(cls, row: Mapping[str, Any]) -> "Entity":
        """Build an entity from a database row, bypassing fill rules."""
        instance = cls.__new__(cls)
        instance._init_state()
        instance._attributes.update(row)
        object.__setattr__(instance, "_exists", True)
        return instance

    # ── Attribute access ─────────────────────────────────────────────

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal lookup fails
        if name.startswith("_"):
            raise AttributeError(name)
        fn = type(self)._accessors.get(name)
        if fn is not None:
            return fn(self)
        return self.get_attribute(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or isinstance(getattr(type(self), name, None), property):
            object.__setattr__(self, name, value)
            return
        fn = type(self)._mutators.get(name)
        if fn is not None:
            fn(self, value)
            return
        self.set_attribute(name, value)

    def get_attribute(self, name: str) -> Any:
        """Stored value passed through its declared cast; else a loaded relation; else None."""
        if name in self._attributes:
            value = self._attributes[name]
            kind = self._meta.casts.get(name)
            return cast_value(kind, value) if kind else value
        if name in self._relations:
            return self._relations[name]
        return None

    def set_attribute(self, name: str, value: Any) -> None:
        """Raw write: no casts, no fill rules, no mutators."""
        self._attributes[name] = value

    @property
    def attributes(self) -> Dict[str, Any]:
        """A copy of the raw attribute state."""
        return dict(self._attributes)

    @property
    def persisted(self) -> bool:
        return self._exists

    def is_fillable(self, key: str) -> bool:
        """Allow-list wins, then the deny-list; an empty allow-list admits everything else."""
        meta = self._meta
        if key in meta.fillable:
            return True
        if key in meta.guarded:
            return False
        return not meta.fillable

    def fill(self, values: Mapping[str, Any]) -> "Entity":
        """Mass-assign ``values``; skips the primary key and keys that are not fillable."""
        pk = self._meta.primary_key
        for key, value in values.items():
            if key == pk or not self.is_fillable(key):
                continue
            fn = type(self)._mutators.get(key)
            if fn is not None:
                fn(self, value)
            else:
                self.set_attribute(key, value)
        return self

    def get_key(self) -> Any:
        return self._attributes.get(self._meta.primary_key)

    # ── Database binding ─────────────────────────────────────────────

    @classmethod
    def bind(cls, db: Optional["Database"]) -> None:
        """Bind this entity class to a specific database."""
        cls._db = db

    @classmethod
    def bound_database(cls) -> Optional["Database"]:
        """The database this entity would use, or None when nothing is configured."""
        if cls._db is not None:
            return cls._db
        if EntityRegistry.get_database() is not None:
            return EntityRegistry.get_database()
        from ..db import engine
        return engine._default_database

    @classmethod
    def get_database(cls) -> "Database":
        """
        Get the database connection.

        Raises:
            DatabaseConnectionFault: If nothing has been configured.
        """
        db = cls.bound_database()
        if db is None:
            from ..db.engine import get_database
            db = get_database()
        return db

    # ── Life-cycle hooks ─────────────────────────────────────────────

    @classmethod
    def on(cls, event: str, fn: Callable, *, priority: int = 100) -> Callable:
        """Connect ``fn(sender, instance, **kwargs)`` to a life-cycle event of this class."""
        signal = LIFECYCLE_SIGNALS.get(event)
        if signal is None:
            raise ModelFault(
                code="UNKNOWN_EVENT",
                message=f"Unknown life-cycle event {event!r} on {cls.__name__}",
                metadata={"entity": cls.__name__, "event": event},
            )
        signal.connect(fn, sender=cls, priority=priority)
        return fn

    @classmethod
    def creating(cls, fn: Callable) -> Callable:
        return cls.on("creating", fn)

    @classmethod
    def created(cls, fn: Callable) -> Callable:
        return cls.on("created", fn)

    @classmethod
    def updating(cls, fn: Callable) -> Callable:
        return cls.on("updating", fn)

    @classmethod
    def updated(cls, fn: Callable) -> Callable:
        return cls.on("updated", fn)

    @classmethod
    def deleting(cls, fn: Callable) -> Callable:
        return cls.on("deleting", fn)

    @classmethod
    def deleted(cls, fn: Callable) -> Callable:
        return cls.on("deleted", fn)

    def _fire(self, event: str) -> None:
        LIFECYCLE_SIGNALS[event].send(type(self), instance=self)

    # ── Persistence ──────────────────────────────────────────────────

    def update_timestamps(self) -> None:
        if not self._meta.timestamps:
            return
        now = now_string()
        if _is_blank(self.get_key()):
            self.set_attribute("created_at", now)
        self.set_attribute("updated_at", now)

    def _storage_row(self) -> Dict[str, Any]:
        casts = self._meta.casts
        return {
            k: storage_value(casts[k], v) if k in casts else v
            for k, v in self._attributes.items()
        }

    def _persistence_fault(self, operation: str, exc: QueryFault, sql: str) -> PersistenceFault:
        cause = exc.__cause__ or exc
        return PersistenceFault(
            type(self).__name__,
            operation,
            exc.reason,
            cause=cause,
            metadata={"sql": sql[:200], "table": self._meta.table},
        )

    def save(self) -> bool:
        """
        Insert or update this row.

        The update path is taken when the primary key is set and non-empty.

        Raises:
            PersistenceFault: On a driver failure, or after ``delete()``.
        """
        if self._deleted:
            raise PersistenceFault(
                type(self).__name__,
                "save",
                "entity was deleted and can no longer be saved",
            )
        self.update_timestamps()
        if _is_blank(self.get_key()):
            self._perform_insert()
        else:
            self._perform_update()
        return True

    def _perform_insert(self) -> None:
        self._fire("creating")

        pk = self._meta.primary_key
        row = self._storage_row()
        if _is_blank(row.get(pk)):
            row.pop(pk, None)

        db = self.get_database()
        table = quote_identifier(self._meta.table)
        if row:
            cols = ", ".join(quote_identifier(c) for c in row)
            marks = ", ".join("?" for _ in row)
            sql = f"INSERT INTO {table} ({cols}) VALUES ({marks})"
        elif db.dialect == "mysql":
            sql = f"INSERT INTO {table} () VALUES ()"
        else:
            sql = f"INSERT INTO {table} DEFAULT VALUES"

        try:
            new_id = db.insert(sql, list(row.values()), pk)
        except QueryFault as exc:
            raise self._persistence_fault("insert", exc, sql) from (exc.__cause__ or exc)

        if pk not in row:
            self._attributes[pk] = new_id
        object.__setattr__(self, "_exists", True)
        logger.debug(f"Inserted {type(self).__name__} {pk}={self._attributes.get(pk)!r}")

        self._fire("created")

    def _perform_update(self) -> None:
        self._fire("updating")

        pk = self._meta.primary_key
        row = self._storage_row()
        key = row.pop(pk)
        if row:
            set_sql = ", ".join(f"{quote_identifier(c)} = ?" for c in row)
            sql = (
                f"UPDATE {quote_identifier(self._meta.table)} SET {set_sql} "
                f"WHERE {quote_identifier(pk)} = ?"
            )
            try:
                self.get_database().execute(sql, [*row.values(), key])
            except QueryFault as exc:
                raise self._persistence_fault("update", exc, sql) from (exc.__cause__ or exc)

        self._fire("updated")

    def delete(self) -> bool:
        """
        Physically delete this row.

        Returns False (and touches nothing) when no primary key is set.
        The instance is inert afterwards.
        """
        key = self.get_key()
        if _is_blank(key):
            return False

        self._fire("deleting")

        pk = self._meta.primary_key
        sql = f"DELETE FROM {quote_identifier(self._meta.table)} WHERE {quote_identifier(pk)} = ?"
        try:
            self.get_database().execute(sql, [key])
        except QueryFault as exc:
            raise self._persistence_fault("delete", exc, sql) from (exc.__cause__ or exc)

        object.__setattr__(self, "_exists", False)
        object.__setattr__(self, "_deleted", True)

        self._fire("deleted")
        return True

    def soft_delete(self) -> bool:
        """Stamp ``deleted_at`` and save; a physical delete when soft deletes are off."""
        if not self._meta.soft_deletes:
            return self.delete()
        self.set_attribute("deleted_at", now_string())
        return self.save()

    def restore(self) -> bool:
        """Clear ``deleted_at`` and save. False when soft deletes are off."""
        if not self._meta.soft_deletes:
            return False
        self.set_attribute("deleted_at", None)
        return self.save()

    def trashed(self) -> bool:
        return self._meta.soft_deletes and self._attributes.get("deleted_at") is not None

    def refresh(self) -> "Entity":
        """Reload attributes from the row with this primary key."""
        key = self.get_key()
        found = type(self).query().with_trashed().find(key)
        if found is None:
            raise NotFoundFault(type(self).__name__, key)
        self._attributes.clear()
        self._attributes.update(found._attributes)
        self._relations.clear()
        return self

    # ── Mass-assignment helpers ──────────────────────────────────────

    @classmethod
    def create(cls, values: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> "Entity":
        """New entity, filled from ``values`` and saved."""
        instance = cls(values, **kwargs)
        instance.save()
        return instance

    @classmethod
    def update_or_create(
        cls,
        match: Mapping[str, Any],
        values: Optional[Mapping[str, Any]] = None,
    ) -> "Entity":
        """Fill and save the first row matching ``match``, or create one."""
        values = dict(values or {})
        instance = cls.query().where(dict(match)).first()
        if instance is not None:
            instance.fill(values)
            instance.save()
            return instance
        return cls.create({**match, **values})

    @classmethod
    def first_or_create(
        cls,
        match: Mapping[str, Any],
        values: Optional[Mapping[str, Any]] = None,
    ) -> "Entity":
        """The first row matching ``match``, or a newly created one."""
        instance = cls.query().where(dict(match)).first()
        if instance is not None:
            return instance
        return cls.create({**match, **(values or {})})

    @classmethod
    def destroy(cls, ids: Any) -> int:
        """Physically delete rows by primary key; returns the number deleted."""
        if not isinstance(ids, (list, tuple, set, frozenset)):
            ids = [ids]
        keys = list(ids)
        if not keys:
            return 0
        return cls.query().with_trashed().where_in(cls._meta.primary_key, keys).delete()

    # ── Query entry points ───────────────────────────────────────────

    @classmethod
    def query(cls) -> QueryBuilder:
        """Start a query chain."""
        return QueryBuilder(cls)

    @classmethod
    def where(cls, column: Any, *args: Any) -> QueryBuilder:
        return cls.query().where(column, *args)

    @classmethod
    def where_in(cls, column: str, values: Sequence[Any]) -> QueryBuilder:
        return cls.query().where_in(column, values)

    @classmethod
    def where_not_in(cls, column: str, values: Sequence[Any]) -> QueryBuilder:
        return cls.query().where_not_in(column, values)

    @classmethod
    def where_null(cls, column: str) -> QueryBuilder:
        return cls.query().where_null(column)

    @classmethod
    def where_not_null(cls, column: str) -> QueryBuilder:
        return cls.query().where_not_null(column)

    @classmethod
    def where_between(cls, column: str, bounds: Sequence[Any]) -> QueryBuilder:
        return cls.query().where_between(column, bounds)

    @classmethod
    def where_like(cls, column: str, pattern: str) -> QueryBuilder:
        return cls.query().where_like(column, pattern)

    @classmethod
    def where_date(cls, column: str, operator: Any, *args: Any) -> QueryBuilder:
        return cls.query().where_date(column, operator, *args)

    @classmethod
    def where_year(cls, column: str, operator: Any, *args: Any) -> QueryBuilder:
        return cls.query().where_year(column, operator, *args)

    @classmethod
    def where_month(cls, column: str, operator: Any, *args: Any) -> QueryBuilder:
        return cls.query().where_month(column, operator, *args)

    @classmethod
    def where_day(cls, column: str, operator: Any, *args: Any) -> QueryBuilder:
        return cls.query().where_day(column, operator, *args)

    @classmethod
    def order_by(cls, column: str, direction: str = "asc") -> QueryBuilder:
        return cls.query().order_by(column, direction)

    @classmethod
    def latest(cls, column: str = "created_at") -> QueryBuilder:
        return cls.query().latest(column)

    @classmethod
    def limit(cls, n: int) -> QueryBuilder:
        return cls.query().limit(n)

    @classmethod
    def offset(cls, n: int) -> QueryBuilder:
        return cls.query().offset(n)

    @classmethod
    def with_trashed(cls) -> QueryBuilder:
        return cls.query().with_trashed()

    @classmethod
    def only_trashed(cls) -> QueryBuilder:
        return cls.query().only_trashed()

    @classmethod
    def scope(cls, name: str, *args: Any, **kwargs: Any) -> QueryBuilder:
        return cls.query().scope(name, *args, **kwargs)

    @classmethod
    def all(cls) -> List["Entity"]:
        return cls.query().get()

    @classmethod
    def first(cls) -> Optional["Entity"]:
        return cls.query().first()

    @classmethod
    def first_or_fail(cls) -> "Entity":
        return cls.query().first_or_fail()

    @classmethod
    def find(cls, key: Any) -> Optional["Entity"]:
        return cls.query().find(key)

    @classmethod
    def find_or_fail(cls, key: Any) -> "Entity":
        """Row by primary key; raises ``NotFoundFault`` when absent."""
        return cls.query().find_or_fail(key)

    @classmethod
    def count(cls) -> int:
        return cls.query().count()

    @classmethod
    def max(cls, column: str) -> Any:
        return cls.query().max(column)

    @classmethod
    def min(cls, column: str) -> Any:
        return cls.query().min(column)

    @classmethod
    def sum(cls, column: str) -> Any:
        return cls.query().sum(column)

    @classmethod
    def avg(cls, column: str) -> Any:
        return cls.query().avg(column)

    @classmethod
    def paginate(cls, per_page: int = 15, page: int = 1) -> Page:
        return cls.query().paginate(per_page, page)

    @classmethod
    def simple_paginate(cls, per_page: int = 15, page: int = 1) -> SimplePage:
        return cls.query().simple_paginate(per_page, page)

    # ── Relations ────────────────────────────────────────────────────

    @staticmethod
    def _resolve_entity(related: Union[str, Type["Entity"]]) -> Type["Entity"]:
        if isinstance(related, str):
            target = EntityRegistry.get(related)
            if target is None:
                raise ModelFault(
                    code="UNKNOWN_ENTITY",
                    message=f"No entity registered under {related!r}",
                    metadata={"entity": related},
                )
            return target
        return related

    def has_one(
        self,
        related: Union[str, Type["Entity"]],
        foreign_key: Optional[str] = None,
        local_key: Optional[str] = None,
    ) -> HasOne:
        return HasOne(self, self._resolve_entity(related), foreign_key, local_key)

    def has_many(
        self,
        related: Union[str, Type["Entity"]],
        foreign_key: Optional[str] = None,
        local_key: Optional[str] = None,
    ) -> HasMany:
        return HasMany(self, self._resolve_entity(related), foreign_key, local_key)

    def belongs_to(
        self,
        related: Union[str, Type["Entity"]],
        foreign_key: Optional[str] = None,
        owner_key: Optional[str] = None,
    ) -> BelongsTo:
        return BelongsTo(self, self._resolve_entity(related), foreign_key, owner_key)

    def belongs_to_many(
        self,
        related: Union[str, Type["Entity"]],
        table: Optional[str] = None,
        foreign_pivot_key: Optional[str] = None,
        related_pivot_key: Optional[str] = None,
        parent_key: Optional[str] = None,
        related_key: Optional[str] = None,
    ) -> BelongsToMany:
        return BelongsToMany(
            self,
            self._resolve_entity(related),
            table,
            foreign_pivot_key,
            related_pivot_key,
            parent_key,
            related_key,
        )

    def load(self, *names: str) -> "Entity":
        """Resolve the named relations now and keep the results on the instance."""
        for name in names:
            if name not in self._relation_names:
                raise ModelFault(
                    code="UNKNOWN_RELATION",
                    message=f"{type(self).__name__} has no relation {name!r}",
                    metadata={"entity": type(self).__name__, "relation": name},
                )
            rel: Relation = getattr(self, name)()
            self._relations[name] = rel.get_results()
        return self

    def relation_loaded(self, name: str) -> bool:
        return name in self._relations

    def set_relation(self, name: str, value: Any) -> None:
        self._relations[name] = value

    # ── Validation ───────────────────────────────────────────────────

    def validate(self, data: Optional[Mapping[str, Any]] = None) -> Union[bool, Dict[str, List[str]]]:
        """
        Check declared rules against ``data`` (default: current attributes).

        Returns True, or a mapping of field -> messages. Never raises and
        never touches the database.
        """
        source = data if data is not None else self._attributes
        return _validation.validate(source, self._meta.rules, self._meta.messages)

    def validate_or_fail(self, data: Optional[Mapping[str, Any]] = None) -> bool:
        result = self.validate(data)
        if result is not True:
            raise ValidationFault(type(self).__name__, result)
        return True

    # ── Serialization ────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        """Casted attributes plus loaded relations, minus hidden fields."""
        hidden = set(self._meta.hidden)
        result: Dict[str, Any] = {}
        for name in self._attributes:
            if name in hidden:
                continue
            value = self.get_attribute(name)
            if isinstance(value, datetime.datetime):
                value = value.strftime(TIMESTAMP_FORMAT)
            elif isinstance(value, datetime.date):
                value = value.isoformat()
            result[name] = value
        for name, value in self._relations.items():
            if name in hidden:
                continue
            if isinstance(value, list):
                result[name] = [v.to_dict() for v in value]
            elif isinstance(value, Entity):
                result[name] = value.to_dict()
            else:
                result[name] = value
        return result

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_dict(), default=str, **kwargs)

    # ── Identity ─────────────────────────────────────────────────────

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._meta.primary_key}={self.get_key()!r}>"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Entity) or type(other) is not type(self):
            return NotImplemented
        key = self.get_key()
        if key is None:
            return self is other
        return key == other.get_key()

    def __hash__(self) -> int:
        key = self.get_key()
        if key is None:
            raise TypeError(f"Unsaved {type(self).__name__} instances are unhashable")
        return hash((type(self).__name__, key))
