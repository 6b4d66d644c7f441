"""
Quarry QueryBuilder - chainable, parameterized, blocking terminals.

Every chain method returns a new builder; the original is left untouched.
Values always travel as ``?`` placeholders bound at execute time; only
identifiers declared in code are ever written into the SQL text.

Usage:
    active = Account.where("active", True).order_by("name").limit(10).get()
    total = Account.where("age", ">", 18).count()
    page = Post.latest().paginate(per_page=20, page=2)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
)

from ..faults.domains import NotFoundFault, PersistenceFault, QueryFault
from .casts import cast_value, storage_value
from .naming import quote_identifier

if TYPE_CHECKING:
    from ..db.engine import Database
    from .entity import Entity

logger = logging.getLogger("quarry.models.query")

__all__ = ["QueryBuilder", "WhereClause", "Page", "SimplePage", "OPERATORS"]

OPERATORS = frozenset({"=", "!=", "<>", "<", "<=", ">", ">=", "LIKE", "NOT LIKE"})

_MISSING = object()

# Soft-delete visibility modes
DEFAULT = "default"
WITH_TRASHED = "with_trashed"
ONLY_TRASHED = "only_trashed"

# Largest LIMIT MySQL accepts; used when only OFFSET is given.
_MYSQL_NO_LIMIT = 18446744073709551615

# Date-part extraction per dialect, keyed by part name.
_DATE_PARTS = {
    "sqlite": {
        "year": "CAST(strftime('%Y', {col}) AS INTEGER)",
        "month": "CAST(strftime('%m', {col}) AS INTEGER)",
        "day": "CAST(strftime('%d', {col}) AS INTEGER)",
    },
    "postgresql": {
        "year": "EXTRACT(YEAR FROM {col})",
        "month": "EXTRACT(MONTH FROM {col})",
        "day": "EXTRACT(DAY FROM {col})",
    },
    "mysql": {
        "year": "YEAR({col})",
        "month": "MONTH({col})",
        "day": "DAY({col})",
    },
}


@dataclass(frozen=True)
class WhereClause:
    """One ANDed predicate."""

    kind: str  # basic | in | not_in | null | not_null | between | not_between | date | date_part | in_sub
    column: str
    operator: str = "="
    values: Tuple[Any, ...] = ()
    sql: str = ""  # sub-select for ``in_sub``, part name for ``date_part``

    def compile(self, dialect: str = "sqlite") -> Tuple[str, List[Any]]:
        col = quote_identifier(self.column)
        if self.kind == "basic":
            return f"{col} {self.operator} ?", [self.values[0]]
        if self.kind == "date":
            return f"DATE({col}) {self.operator} ?", [self.values[0]]
        if self.kind == "date_part":
            expr = _DATE_PARTS.get(dialect, _DATE_PARTS["sqlite"])[self.sql].format(col=col)
            return f"{expr} {self.operator} ?", [self.values[0]]
        if self.kind == "in":
            if not self.values:
                return "1 = 0", []
            marks = ", ".join("?" for _ in self.values)
            return f"{col} IN ({marks})", list(self.values)
        if self.kind == "not_in":
            if not self.values:
                return "", []
            marks = ", ".join("?" for _ in self.values)
            return f"{col} NOT IN ({marks})", list(self.values)
        if self.kind == "null":
            return f"{col} IS NULL", []
        if self.kind == "not_null":
            return f"{col} IS NOT NULL", []
        if self.kind == "between":
            return f"{col} BETWEEN ? AND ?", list(self.values)
        if self.kind == "not_between":
            return f"{col} NOT BETWEEN ? AND ?", list(self.values)
        if self.kind == "in_sub":
            return f"{col} IN ({self.sql})", list(self.values)
        raise QueryFault(model="<where>", operation="compile", reason=f"Unknown clause kind {self.kind!r}")


@dataclass
class Page:
    """One page of results from ``paginate()``."""

    items: List[Any]
    total: int
    per_page: int
    current_page: int
    last_page: int = field(init=False)

    def __post_init__(self) -> None:
        self.last_page = max(1, math.ceil(self.total / self.per_page)) if self.per_page else 1

    @property
    def has_more(self) -> bool:
        return self.current_page < self.last_page

    def __iter__(self) -> Iterator[Any]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class SimplePage:
    """One page from ``simple_paginate()``: no total, only whether more rows follow."""

    items: List[Any]
    per_page: int
    current_page: int
    has_more: bool

    def __iter__(self) -> Iterator[Any]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


class QueryBuilder:
    """
    Quarry Query builder - accumulates predicates against one entity's
    table and compiles them to a single parameterized statement per
    terminal call.

    Soft-deleting entities get ``"deleted_at" IS NULL`` appended to every
    statement unless ``with_trashed()`` or ``only_trashed()`` is used.
    """

    __slots__ = (
        "_entity_cls",
        "_db",
        "_wheres",
        "_orders",
        "_columns",
        "_limit_val",
        "_offset_val",
        "_trashed",
        "_distinct",
    )

    def __init__(self, entity_cls: Type["Entity"], db: Optional["Database"] = None):
        self._entity_cls = entity_cls
        self._db = db
        self._wheres: List[WhereClause] = []
        self._orders: List[str] = []
        self._columns: List[str] = []
        self._limit_val: Optional[int] = None
        self._offset_val: Optional[int] = None
        self._trashed = DEFAULT
        self._distinct = False

    # ── Internals ────────────────────────────────────────────────────

    def _clone(self) -> "QueryBuilder":
        c = QueryBuilder(self._entity_cls, self._db)
        c._wheres = self._wheres.copy()
        c._orders = self._orders.copy()
        c._columns = self._columns.copy()
        c._limit_val = self._limit_val
        c._offset_val = self._offset_val
        c._trashed = self._trashed
        c._distinct = self._distinct
        return c

    def _add(self, clause: WhereClause) -> "QueryBuilder":
        new = self._clone()
        new._wheres.append(clause)
        return new

    @property
    def entity_cls(self) -> Type["Entity"]:
        return self._entity_cls

    @property
    def table(self) -> str:
        return self._entity_cls._meta.table

    @property
    def db(self) -> "Database":
        if self._db is not None:
            return self._db
        return self._entity_cls.get_database()

    def _name(self) -> str:
        return self._entity_cls.__name__

    # ── Predicates ───────────────────────────────────────────────────

    def where(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> "QueryBuilder":
        """
        Add an equality or comparison predicate.

            where("name", "Ana")                 # name = ?
            where("age", ">=", 18)               # age >= ?
            where({"name": "Ana", "active": 1})  # each pair ANDed

        ``None`` with ``=`` / ``!=`` compiles to ``IS NULL`` / ``IS NOT NULL``.
        """
        if isinstance(column, Mapping):
            new = self
            for key, val in column.items():
                new = new.where(key, "=", val)
            return new

        if operator is _MISSING:
            raise QueryFault(
                model=self._name(),
                operation="where",
                reason=f"where({column!r}) needs a value",
            )
        if value is _MISSING:
            operator, value = "=", operator

        op = str(operator).strip().upper()
        if op not in OPERATORS:
            raise QueryFault(
                model=self._name(),
                operation="where",
                reason=f"Operator {operator!r} is not allowed",
            )

        if value is None and op in ("=", "!=", "<>"):
            return self._add(WhereClause("null" if op == "=" else "not_null", column))
        return self._add(WhereClause("basic", column, op, (value,)))

    def where_in(self, column: str, values: Sequence[Any]) -> "QueryBuilder":
        """``column IN (...)``; an empty list matches nothing."""
        return self._add(WhereClause("in", column, values=tuple(values)))

    def where_not_in(self, column: str, values: Sequence[Any]) -> "QueryBuilder":
        """``column NOT IN (...)``; an empty list filters nothing."""
        return self._add(WhereClause("not_in", column, values=tuple(values)))

    def where_null(self, column: str) -> "QueryBuilder":
        return self._add(WhereClause("null", column))

    def where_not_null(self, column: str) -> "QueryBuilder":
        return self._add(WhereClause("not_null", column))

    def where_between(self, column: str, bounds: Sequence[Any]) -> "QueryBuilder":
        lo, hi = self._bounds(bounds, "where_between")
        return self._add(WhereClause("between", column, values=(lo, hi)))

    def where_not_between(self, column: str, bounds: Sequence[Any]) -> "QueryBuilder":
        lo, hi = self._bounds(bounds, "where_not_between")
        return self._add(WhereClause("not_between", column, values=(lo, hi)))

    def _bounds(self, bounds: Sequence[Any], operation: str) -> Tuple[Any, Any]:
        if len(bounds) != 2:
            raise QueryFault(
                model=self._name(),
                operation=operation,
                reason=f"Expected [low, high], got {len(bounds)} values",
            )
        return bounds[0], bounds[1]

    def where_like(self, column: str, pattern: str) -> "QueryBuilder":
        return self._add(WhereClause("basic", column, "LIKE", (pattern,)))

    def where_not_like(self, column: str, pattern: str) -> "QueryBuilder":
        return self._add(WhereClause("basic", column, "NOT LIKE", (pattern,)))

    def where_date(self, column: str, operator: Any, value: Any = _MISSING) -> "QueryBuilder":
        """Compare the date part of a column: ``DATE(column) op ?``."""
        if value is _MISSING:
            operator, value = "=", operator
        op = str(operator).strip().upper()
        if op not in OPERATORS:
            raise QueryFault(
                model=self._name(),
                operation="where_date",
                reason=f"Operator {operator!r} is not allowed",
            )
        if hasattr(value, "strftime"):
            value = value.strftime("%Y-%m-%d")
        return self._add(WhereClause("date", column, op, (value,)))

    def _where_part(self, part: str, column: str, operator: Any, value: Any) -> "QueryBuilder":
        if value is _MISSING:
            operator, value = "=", operator
        op = str(operator).strip().upper()
        if op not in OPERATORS:
            raise QueryFault(
                model=self._name(),
                operation=f"where_{part}",
                reason=f"Operator {operator!r} is not allowed",
            )
        return self._add(WhereClause("date_part", column, op, (int(value),), sql=part))

    def where_year(self, column: str, operator: Any, value: Any = _MISSING) -> "QueryBuilder":
        return self._where_part("year", column, operator, value)

    def where_month(self, column: str, operator: Any, value: Any = _MISSING) -> "QueryBuilder":
        return self._where_part("month", column, operator, value)

    def where_day(self, column: str, operator: Any, value: Any = _MISSING) -> "QueryBuilder":
        return self._where_part("day", column, operator, value)

    def where_in_subquery(self, column: str, sql: str, bindings: Sequence[Any]) -> "QueryBuilder":
        """``column IN (<sql>)`` for a code-built sub-select."""
        return self._add(WhereClause("in_sub", column, values=tuple(bindings), sql=sql))

    def scope(self, name: str, *args: Any, **kwargs: Any) -> "QueryBuilder":
        """Apply a scope registered on the entity with ``@scope(name)``."""
        fn = self._entity_cls._scopes.get(name)
        if fn is None:
            raise QueryFault(
                model=self._name(),
                operation="scope",
                reason=f"Unknown scope {name!r}",
            )
        result = fn(self, *args, **kwargs)
        return self if result is None else result

    # ── Ordering, paging, projection ─────────────────────────────────

    def order_by(self, column: str, direction: str = "asc") -> "QueryBuilder":
        d = str(direction).strip().upper()
        if d not in ("ASC", "DESC"):
            raise QueryFault(
                model=self._name(),
                operation="order_by",
                reason=f"Direction must be asc or desc, got {direction!r}",
            )
        new = self._clone()
        new._orders.append(f"{quote_identifier(column)} {d}")
        return new

    def latest(self, column: str = "created_at") -> "QueryBuilder":
        return self.order_by(column, "desc")

    def oldest(self, column: str = "created_at") -> "QueryBuilder":
        return self.order_by(column, "asc")

    def limit(self, n: int) -> "QueryBuilder":
        new = self._clone()
        new._limit_val = int(n)
        return new

    def offset(self, n: int) -> "QueryBuilder":
        new = self._clone()
        new._offset_val = int(n)
        return new

    def select(self, *columns: str) -> "QueryBuilder":
        new = self._clone()
        new._columns = list(columns)
        return new

    def distinct(self) -> "QueryBuilder":
        new = self._clone()
        new._distinct = True
        return new

    def with_trashed(self) -> "QueryBuilder":
        new = self._clone()
        new._trashed = WITH_TRASHED
        return new

    def only_trashed(self) -> "QueryBuilder":
        new = self._clone()
        new._trashed = ONLY_TRASHED
        return new

    # ── Compilation ──────────────────────────────────────────────────

    def _compile_where(self) -> Tuple[str, List[Any]]:
        parts: List[str] = []
        params: List[Any] = []
        dialect = self._dialect()
        for clause in self._wheres:
            sql, values = clause.compile(dialect)
            if sql:
                parts.append(sql)
                params.extend(values)

        if self._entity_cls._meta.soft_deletes:
            if self._trashed == DEFAULT:
                parts.append('"deleted_at" IS NULL')
            elif self._trashed == ONLY_TRASHED:
                parts.append('"deleted_at" IS NOT NULL')

        if not parts:
            return "", params
        return " WHERE " + " AND ".join(parts), params

    def _compile_paging(self) -> str:
        sql = ""
        limit = self._limit_val
        if limit is None and self._offset_val is not None:
            dialect = self._dialect()
            if dialect == "sqlite":
                limit = -1
            elif dialect == "mysql":
                limit = _MYSQL_NO_LIMIT
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        if self._offset_val is not None:
            sql += f" OFFSET {int(self._offset_val)}"
        return sql

    def _dialect(self) -> str:
        db = self._db if self._db is not None else self._entity_cls.bound_database()
        return db.dialect if db is not None else "sqlite"

    def _build_select(self, aggregate: Optional[str] = None) -> Tuple[str, List[Any]]:
        if aggregate is not None:
            cols = aggregate
        elif self._columns:
            cols = ", ".join(quote_identifier(c) for c in self._columns)
        else:
            cols = "*"

        where_sql, params = self._compile_where()
        keyword = "SELECT DISTINCT" if self._distinct and aggregate is None else "SELECT"
        sql = f"{keyword} {cols} FROM {quote_identifier(self.table)}{where_sql}"
        if aggregate is None:
            if self._orders:
                sql += " ORDER BY " + ", ".join(self._orders)
            sql += self._compile_paging()
        return sql, params

    def to_sql(self) -> str:
        """The SELECT this builder would run."""
        return self._build_select()[0]

    @property
    def bindings(self) -> List[Any]:
        """Values bound to the placeholders of ``to_sql()``, in order."""
        return self._build_select()[1]

    # ── Execution helpers ────────────────────────────────────────────

    def _fetch_all(self, sql: str, params: List[Any], operation: str) -> List[Dict[str, Any]]:
        try:
            return self.db.fetch_all(sql, params)
        except QueryFault as exc:
            raise QueryFault(
                model=self._name(),
                operation=operation,
                reason=exc.reason,
                metadata={"sql": sql[:200]},
            ) from (exc.__cause__ or exc)

    def _fetch_val(self, sql: str, params: List[Any], operation: str) -> Any:
        try:
            return self.db.fetch_val(sql, params)
        except QueryFault as exc:
            raise QueryFault(
                model=self._name(),
                operation=operation,
                reason=exc.reason,
                metadata={"sql": sql[:200]},
            ) from (exc.__cause__ or exc)

    def _write(self, sql: str, params: List[Any], operation: str) -> int:
        try:
            return self.db.execute(sql, params).rowcount
        except QueryFault as exc:
            cause = exc.__cause__ or exc
            raise PersistenceFault(
                self._name(),
                operation,
                exc.reason,
                cause=cause,
                metadata={"sql": sql[:200]},
            ) from cause

    # ── Terminals ────────────────────────────────────────────────────

    def get(self) -> List["Entity"]:
        """Execute and return all matching rows as entities."""
        sql, params = self._build_select()
        rows = self._fetch_all(sql, params, "get")
        return [self._entity_cls.hydrate(row) for row in rows]

    all = get

    def first(self) -> Optional["Entity"]:
        """Return the first matching row or None."""
        rows = self.limit(1).get()
        return rows[0] if rows else None

    def first_or_fail(self) -> "Entity":
        """Return the first matching row; raise ``NotFoundFault`` when absent."""
        found = self.first()
        if found is None:
            raise NotFoundFault(self._name())
        return found

    def find(self, key: Any) -> Optional["Entity"]:
        """Row whose primary key equals ``key``, or None."""
        return self.where(self._entity_cls._meta.primary_key, "=", key).first()

    def find_or_fail(self, key: Any) -> "Entity":
        found = self.find(key)
        if found is None:
            raise NotFoundFault(self._name(), key)
        return found

    def count(self, column: str = "*") -> int:
        if self._distinct and column == "*" and len(self._columns) == 1:
            expr = f"COUNT(DISTINCT {quote_identifier(self._columns[0])})"
        else:
            expr = "COUNT(*)" if column == "*" else f"COUNT({quote_identifier(column)})"
        sql, params = self._build_select(aggregate=expr)
        val = self._fetch_val(sql, params, "count")
        return int(val) if val else 0

    def exists(self) -> bool:
        """Check if any matching rows exist."""
        return self.count() > 0

    def _aggregate(self, fn: str, column: str) -> Any:
        sql, params = self._build_select(aggregate=f"{fn}({quote_identifier(column)})")
        return self._fetch_val(sql, params, fn.lower())

    def max(self, column: str) -> Any:
        return self._aggregate("MAX", column)

    def min(self, column: str) -> Any:
        return self._aggregate("MIN", column)

    def sum(self, column: str) -> Any:
        return self._aggregate("SUM", column) or 0

    def avg(self, column: str) -> Any:
        return self._aggregate("AVG", column)

    def pluck(self, column: str) -> List[Any]:
        """Values of one column across matching rows, cast if declared."""
        sql, params = self.select(column)._build_select()
        rows = self._fetch_all(sql, params, "pluck")
        key = column.split(".")[-1]
        kind = self._entity_cls._meta.casts.get(key)
        values = [next(iter(row.values())) for row in rows]
        if kind:
            return [cast_value(kind, v) for v in values]
        return values

    def paginate(self, per_page: int = 15, page: int = 1) -> Page:
        per_page = max(1, int(per_page))
        page = max(1, int(page))
        total = self.count()
        items = self.limit(per_page).offset((page - 1) * per_page).get()
        return Page(items=items, total=total, per_page=per_page, current_page=page)

    def simple_paginate(self, per_page: int = 15, page: int = 1) -> SimplePage:
        """Like ``paginate()`` without the COUNT: fetches one extra row to detect more."""
        per_page = max(1, int(per_page))
        page = max(1, int(page))
        items = self.limit(per_page + 1).offset((page - 1) * per_page).get()
        has_more = len(items) > per_page
        return SimplePage(items=items[:per_page], per_page=per_page, current_page=page, has_more=has_more)

    def chunk(self, size: int) -> Iterator[List["Entity"]]:
        """
        Yield matching rows in lists of at most ``size``.

        Without an explicit order the primary key is used so pages are stable.
        """
        size = int(size)
        if size < 1:
            raise QueryFault(model=self._name(), operation="chunk", reason="Chunk size must be >= 1")
        base = self if self._orders else self.order_by(self._entity_cls._meta.primary_key)
        page = 0
        while True:
            rows = base.limit(size).offset(page * size).get()
            if not rows:
                return
            yield rows
            if len(rows) < size:
                return
            page += 1

    def update(self, values: Mapping[str, Any]) -> int:
        """Bulk UPDATE of every matching row; returns the affected row count."""
        if not values:
            return 0
        casts = self._entity_cls._meta.casts
        set_parts = [f"{quote_identifier(k)} = ?" for k in values]
        set_params = [
            storage_value(casts[k], v) if k in casts else v
            for k, v in values.items()
        ]
        where_sql, params = self._compile_where()
        sql = f"UPDATE {quote_identifier(self.table)} SET {', '.join(set_parts)}{where_sql}"
        return self._write(sql, set_params + params, "update")

    def delete(self) -> int:
        """Bulk DELETE of every matching row; returns the affected row count."""
        where_sql, params = self._compile_where()
        sql = f"DELETE FROM {quote_identifier(self.table)}{where_sql}"
        return self._write(sql, params, "delete")

    def __iter__(self) -> Iterator["Entity"]:
        return iter(self.get())

    def __repr__(self) -> str:
        return f"<QueryBuilder {self._name()}: {self.to_sql()}>"
