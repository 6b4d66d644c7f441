"""
Quarry Relations - has-one, has-many, belongs-to and many-to-many.

A relation is built by an entity method and scopes a ``QueryBuilder`` to
the rows linked to one owner instance:

    class Post(Entity):
        @relation
        def comments(self):
            return self.has_many(Comment)

        @relation
        def tags(self):
            return self.belongs_to_many(Tag)

    post.comments().get()            # SELECT ... WHERE "post_id" = ?
    post.tags().attach([1, 2])

Resolution is lazy and uncached: every ``get()`` / ``get_results()`` is a
new round-trip. ``entity.load(name)`` stores a result on the instance.
"""

from __future__ import annotations

import logging
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Type,
    Union,
)

from ..faults.domains import PersistenceFault, QueryFault
from .naming import quote_identifier, snake_case

if TYPE_CHECKING:
    from .entity import Entity
    from .query import QueryBuilder

logger = logging.getLogger("quarry.models.relations")

__all__ = [
    "Relation",
    "HasOne",
    "HasMany",
    "BelongsTo",
    "BelongsToMany",
    "default_foreign_key",
    "default_pivot_table",
]


def default_foreign_key(entity_cls: Union[type, str]) -> str:
    """``Account`` -> ``account_id``."""
    name = entity_cls if isinstance(entity_cls, str) else entity_cls.__name__
    return f"{snake_case(name)}_id"


def default_pivot_table(first: Union[type, str], second: Union[type, str]) -> str:
    """Both class names snake_cased, sorted and joined: ``Post`` + ``Tag`` -> ``post_tag``."""
    names = sorted(
        snake_case(c if isinstance(c, str) else c.__name__) for c in (first, second)
    )
    return "_".join(names)


def _key_of(item: Any) -> Any:
    """Primary key of an entity, or the value itself."""
    meta = getattr(type(item), "_meta", None)
    if meta is not None and hasattr(item, "get_attribute"):
        return item.get_attribute(meta.primary_key)
    return item


def _keys_of(items: Any) -> List[Any]:
    if items is None:
        return []
    if isinstance(items, (list, tuple, set, frozenset)):
        return [_key_of(i) for i in items]
    return [_key_of(items)]


class Relation:
    """
    Base relation: an owner instance, a related entity class and the keys
    that link them.

    Proxies a fixed subset of the builder; chain methods return a scoped
    ``QueryBuilder``.
    """

    many = False

    def __init__(self, owner: "Entity", related: Type["Entity"]):
        self.owner = owner
        self.related = related

    def query(self) -> "QueryBuilder":
        """The related-table builder scoped to this owner."""
        raise NotImplementedError

    # ── Proxied builder surface ──────────────────────────────────────

    def where(self, *args: Any) -> "QueryBuilder":
        return self.query().where(*args)

    def where_in(self, column: str, values: Iterable[Any]) -> "QueryBuilder":
        return self.query().where_in(column, list(values))

    def order_by(self, column: str, direction: str = "asc") -> "QueryBuilder":
        return self.query().order_by(column, direction)

    def limit(self, n: int) -> "QueryBuilder":
        return self.query().limit(n)

    def get(self) -> List["Entity"]:
        return self.query().get()

    def first(self) -> Optional["Entity"]:
        return self.query().first()

    def count(self) -> int:
        return self.query().count()

    def get_results(self) -> Any:
        """Single entity (or None) for to-one relations, a list for to-many."""
        return self.get() if self.many else self.first()

    def _db(self):
        return self.related.get_database()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {type(self.owner).__name__} -> {self.related.__name__}>"


class HasOne(Relation):
    """The related table carries a foreign key pointing at the owner."""

    def __init__(
        self,
        owner: "Entity",
        related: Type["Entity"],
        foreign_key: Optional[str] = None,
        local_key: Optional[str] = None,
    ):
        super().__init__(owner, related)
        self.foreign_key = foreign_key or default_foreign_key(type(owner))
        self.local_key = local_key or type(owner)._meta.primary_key

    def _owner_key(self) -> Any:
        return self.owner.get_attribute(self.local_key)

    def query(self) -> "QueryBuilder":
        key = self._owner_key()
        if key is None:
            return self.related.query().where_in(self.foreign_key, [])
        return self.related.query().where(self.foreign_key, "=", key)

    def make(self, values: Optional[Mapping[str, Any]] = None) -> "Entity":
        """A new, unsaved related entity linked to the owner."""
        instance = self.related(values or {})
        instance.set_attribute(self.foreign_key, self._owner_key())
        return instance

    def create(self, values: Optional[Mapping[str, Any]] = None) -> "Entity":
        instance = self.make(values)
        instance.save()
        return instance

    def save(self, instance: "Entity") -> "Entity":
        """Point ``instance`` at the owner and persist it."""
        instance.set_attribute(self.foreign_key, self._owner_key())
        instance.save()
        return instance


class HasMany(HasOne):
    many = True

    def create_many(self, rows: Iterable[Mapping[str, Any]]) -> List["Entity"]:
        return [self.create(values) for values in rows]

    def save_many(self, instances: Iterable["Entity"]) -> List["Entity"]:
        return [self.save(instance) for instance in instances]


class BelongsTo(Relation):
    """The owner carries a foreign key pointing at the related row."""

    def __init__(
        self,
        owner: "Entity",
        related: Type["Entity"],
        foreign_key: Optional[str] = None,
        owner_key: Optional[str] = None,
    ):
        super().__init__(owner, related)
        self.foreign_key = foreign_key or default_foreign_key(related)
        self.owner_key = owner_key or related._meta.primary_key

    def query(self) -> "QueryBuilder":
        value = self.owner.get_attribute(self.foreign_key)
        if value is None:
            return self.related.query().where_in(self.owner_key, [])
        return self.related.query().where(self.owner_key, "=", value)

    def associate(self, instance: Optional["Entity"]) -> "Entity":
        """Set the owner's foreign key from ``instance``. Does not save."""
        value = None if instance is None else instance.get_attribute(self.owner_key)
        self.owner.set_attribute(self.foreign_key, value)
        return self.owner

    def dissociate(self) -> "Entity":
        self.owner.set_attribute(self.foreign_key, None)
        return self.owner


class BelongsToMany(Relation):
    """
    Many-to-many through a pivot table holding two foreign keys.

    Resolved with an IN-subquery against the pivot rather than a JOIN.
    """

    many = True

    def __init__(
        self,
        owner: "Entity",
        related: Type["Entity"],
        table: Optional[str] = None,
        foreign_pivot_key: Optional[str] = None,
        related_pivot_key: Optional[str] = None,
        parent_key: Optional[str] = None,
        related_key: Optional[str] = None,
    ):
        super().__init__(owner, related)
        self.table = table or default_pivot_table(type(owner), related)
        self.foreign_pivot_key = foreign_pivot_key or default_foreign_key(type(owner))
        self.related_pivot_key = related_pivot_key or default_foreign_key(related)
        self.parent_key = parent_key or type(owner)._meta.primary_key
        self.related_key = related_key or related._meta.primary_key

    def _owner_key(self) -> Any:
        return self.owner.get_attribute(self.parent_key)

    def _pivot_select(self) -> str:
        return (
            f"SELECT {quote_identifier(self.related_pivot_key)} "
            f"FROM {quote_identifier(self.table)} "
            f"WHERE {quote_identifier(self.foreign_pivot_key)} = ?"
        )

    def query(self) -> "QueryBuilder":
        return self.related.query().where_in_subquery(
            self.related_key, self._pivot_select(), [self._owner_key()]
        )

    def related_ids(self) -> List[Any]:
        """Keys currently linked to the owner, in pivot row order."""
        sql = self._pivot_select()
        try:
            rows = self._db().fetch_all(sql, [self._owner_key()])
        except QueryFault as exc:
            raise QueryFault(
                model=type(self.owner).__name__,
                operation="related_ids",
                reason=exc.reason,
                metadata={"sql": sql},
            ) from (exc.__cause__ or exc)
        return [row[self.related_pivot_key] for row in rows]

    def _require_owner_key(self, operation: str) -> Any:
        key = self._owner_key()
        if key is None:
            raise PersistenceFault(
                type(self.owner).__name__,
                operation,
                "owner has no primary key; save it first",
            )
        return key

    def _pivot_write(self, sql: str, params: List[Any], operation: str) -> int:
        try:
            return self._db().execute(sql, params).rowcount
        except QueryFault as exc:
            cause = exc.__cause__ or exc
            raise PersistenceFault(
                self.table,
                operation,
                exc.reason,
                cause=cause,
                metadata={"sql": sql},
            ) from cause

    def attach(self, ids: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        """
        Insert pivot rows linking the owner to ``ids``.

        ``ids`` may be a key, an entity, or a list of either; ``extra``
        columns are written on every inserted row.
        """
        owner_key = self._require_owner_key("attach")
        extra = dict(extra or {})
        columns = [self.foreign_pivot_key, self.related_pivot_key, *extra]
        cols_sql = ", ".join(quote_identifier(c) for c in columns)
        marks = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {quote_identifier(self.table)} ({cols_sql}) VALUES ({marks})"
        for key in _keys_of(ids):
            self._pivot_write(sql, [owner_key, key, *extra.values()], "attach")
        logger.debug(f"Attached {_keys_of(ids)} to {type(self.owner).__name__}#{owner_key} via {self.table}")

    def detach(self, ids: Any = None) -> int:
        """Remove pivot rows for ``ids`` (all of the owner's rows when None)."""
        owner_key = self._require_owner_key("detach")
        sql = (
            f"DELETE FROM {quote_identifier(self.table)} "
            f"WHERE {quote_identifier(self.foreign_pivot_key)} = ?"
        )
        params: List[Any] = [owner_key]
        if ids is not None:
            keys = _keys_of(ids)
            if not keys:
                return 0
            sql += f" AND {quote_identifier(self.related_pivot_key)} IN ({', '.join('?' for _ in keys)})"
            params.extend(keys)
        return self._pivot_write(sql, params, "detach")

    def sync(self, ids: Any) -> Dict[str, List[Any]]:
        """Make the pivot hold exactly ``ids`` for the owner."""
        wanted = _keys_of(ids)
        current = self.related_ids()
        detached = [k for k in current if k not in wanted]
        attached = [k for k in wanted if k not in current]
        if detached:
            self.detach(detached)
        if attached:
            self.attach(attached)
        return {"attached": attached, "detached": detached}

    def toggle(self, ids: Any) -> Dict[str, List[Any]]:
        """Attach the keys that are absent and detach the ones present."""
        current = self.related_ids()
        keys = _keys_of(ids)
        detached = [k for k in keys if k in current]
        attached = [k for k in keys if k not in current]
        if detached:
            self.detach(detached)
        if attached:
            self.attach(attached)
        return {"attached": attached, "detached": detached}
