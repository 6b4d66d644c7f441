"""
Quarry Schema - Blueprint, the table DSL.

A Blueprint collects column definitions, table-level constraints and alter
commands for one table, then compiles them for a dialect:

    bp = Blueprint("posts")
    bp.id()
    bp.string("title")
    bp.foreign_id("account_id").constrained().cascade_on_delete()
    bp.timestamps()

    bp.to_sql()               # CREATE TABLE "posts" (...)
    bp.create_statements()    # CREATE TABLE + CREATE INDEX statements

Alter blueprints (``action="alter"``) compile with ``to_alter_sql()`` into
a list of statements. Alterations SQLite cannot express become ``-- ``
comment lines, which ``Schema`` skips with a warning.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from ..faults.domains import SchemaFault
from ..models.naming import quote_identifier, snake_case
from .column import ColumnDefinition, ForeignKeyDefinition

logger = logging.getLogger("quarry.schema.blueprint")

__all__ = ["Blueprint"]

Columns = Union[str, Sequence[str]]

DIALECTS = ("sqlite", "postgresql", "mysql")


def _as_list(columns: Columns) -> List[str]:
    return [columns] if isinstance(columns, str) else list(columns)


def _quote_all(columns: Sequence[str]) -> str:
    return ", ".join(quote_identifier(c) for c in columns)


class Blueprint:
    """Column and constraint definitions for one table."""

    def __init__(self, table: str, action: str = "create", dialect: str = "sqlite"):
        if dialect not in DIALECTS:
            raise SchemaFault(table, f"Unsupported dialect {dialect!r}")
        if action not in ("create", "alter"):
            raise SchemaFault(table, f"Unknown blueprint action {action!r}")
        self.table = table
        self.action = action
        self.dialect = dialect
        self.columns: List[ColumnDefinition] = []
        self.primary_keys: List[str] = []
        self.indexes: List[Dict[str, Any]] = []
        self.foreign_keys: List[ForeignKeyDefinition] = []
        self.checks: List[Dict[str, Any]] = []
        self.commands: List[Dict[str, Any]] = []

    def add_column(self, name: str, type: str, **options: Any) -> ColumnDefinition:
        column = ColumnDefinition(name, type, **options)
        self.columns.append(column)
        return column

    # ── Keys ─────────────────────────────────────────────────────────

    def id(self, column: str = "id") -> ColumnDefinition:
        return self.big_increments(column)

    def increments(self, column: str) -> ColumnDefinition:
        return self.add_column(column, "int", unsigned=True, auto_increment=True, primary=True)

    def big_increments(self, column: str) -> ColumnDefinition:
        return self.add_column(column, "bigint", unsigned=True, auto_increment=True, primary=True)

    # ── Strings ──────────────────────────────────────────────────────

    def string(self, column: str, length: int = 255) -> ColumnDefinition:
        return self.add_column(column, "varchar", length=length)

    def char(self, column: str, length: int = 255) -> ColumnDefinition:
        return self.add_column(column, "char", length=length)

    def text(self, column: str) -> ColumnDefinition:
        return self.add_column(column, "text")

    def medium_text(self, column: str) -> ColumnDefinition:
        return self.add_column(column, "mediumtext")

    def long_text(self, column: str) -> ColumnDefinition:
        return self.add_column(column, "longtext")

    def json(self, column: str) -> ColumnDefinition:
        return self.add_column(column, "json")

    def uuid(self, column: str = "uuid") -> ColumnDefinition:
        return self.add_column(column, "char", length=36)

    def enum(self, column: str, values: Sequence[Any]) -> ColumnDefinition:
        if not values:
            raise SchemaFault(self.table, f"enum column {column!r} needs at least one value")
        return self.add_column(column, "enum", values=values)

    def remember_token(self) -> ColumnDefinition:
        return self.string("remember_token", 100).nullable()

    # ── Numbers ──────────────────────────────────────────────────────

    def integer(self, column: str, **options: Any) -> ColumnDefinition:
        return self.add_column(column, "int", **options)

    def big_integer(self, column: str, **options: Any) -> ColumnDefinition:
        return self.add_column(column, "bigint", **options)

    def small_integer(self, column: str, **options: Any) -> ColumnDefinition:
        return self.add_column(column, "smallint", **options)

    def tiny_integer(self, column: str, **options: Any) -> ColumnDefinition:
        return self.add_column(column, "tinyint", **options)

    def unsigned_integer(self, column: str) -> ColumnDefinition:
        return self.add_column(column, "int", unsigned=True)

    def unsigned_big_integer(self, column: str) -> ColumnDefinition:
        return self.add_column(column, "bigint", unsigned=True)

    def decimal(self, column: str, precision: int = 8, scale: int = 2) -> ColumnDefinition:
        return self.add_column(column, "decimal", precision=precision, scale=scale)

    def float(self, column: str, precision: Optional[int] = None, scale: Optional[int] = None) -> ColumnDefinition:
        return self.add_column(column, "float", precision=precision, scale=scale)

    def double(self, column: str) -> ColumnDefinition:
        return self.add_column(column, "double")

    def boolean(self, column: str) -> ColumnDefinition:
        return self.add_column(column, "boolean")

    # ── Dates ────────────────────────────────────────────────────────

    def date(self, column: str) -> ColumnDefinition:
        return self.add_column(column, "date")

    def datetime(self, column: str) -> ColumnDefinition:
        return self.add_column(column, "datetime")

    def time(self, column: str) -> ColumnDefinition:
        return self.add_column(column, "time")

    def timestamp(self, column: str) -> ColumnDefinition:
        return self.add_column(column, "timestamp")

    def timestamps(self) -> None:
        """Nullable ``created_at`` / ``updated_at``; entities fill them on save."""
        self.timestamp("created_at").nullable().default(None)
        self.timestamp("updated_at").nullable().default(None)

    def soft_deletes(self, column: str = "deleted_at") -> ColumnDefinition:
        return self.timestamp(column).nullable().default(None)

    # ── Binary ───────────────────────────────────────────────────────

    def binary(self, column: str) -> ColumnDefinition:
        return self.add_column(column, "blob")

    # ── Foreign keys ─────────────────────────────────────────────────

    def foreign_id(self, column: str) -> ColumnDefinition:
        return self.unsigned_big_integer(column)

    def foreign_id_for(self, entity: Union[type, str], column: Optional[str] = None) -> ColumnDefinition:
        """``foreign_id_for(Account)`` -> ``account_id``."""
        if column is None:
            name = entity if isinstance(entity, str) else entity.__name__
            column = f"{snake_case(name.rsplit('.', 1)[-1])}_id"
        return self.foreign_id(column)

    def foreign(self, columns: Columns, name: Optional[str] = None) -> ForeignKeyDefinition:
        fk = ForeignKeyDefinition(columns, name)
        self.foreign_keys.append(fk)
        return fk

    # ── Table-level constraints ──────────────────────────────────────

    def primary(self, columns: Columns) -> "Blueprint":
        for column in _as_list(columns):
            if column not in self.primary_keys:
                self.primary_keys.append(column)
        return self

    def unique(self, columns: Columns, name: Optional[str] = None) -> "Blueprint":
        self.indexes.append({"type": "unique", "columns": _as_list(columns), "name": name})
        return self

    def index(self, columns: Columns, name: Optional[str] = None) -> "Blueprint":
        self.indexes.append({"type": "index", "columns": _as_list(columns), "name": name})
        return self

    def check(self, expression: str, name: Optional[str] = None) -> "Blueprint":
        self.checks.append({"expression": expression, "name": name})
        return self

    # ── Alter commands ───────────────────────────────────────────────

    def drop_column(self, columns: Columns) -> "Blueprint":
        for column in _as_list(columns):
            self.commands.append({"type": "drop", "column": column})
        return self

    def rename_column(self, old: str, new: str) -> "Blueprint":
        self.commands.append({"type": "rename", "from": old, "to": new})
        return self

    def modify_column(self, column: str, type: str, **options: Any) -> ColumnDefinition:
        definition = ColumnDefinition(column, type, **options)
        self.commands.append({"type": "modify", "column": definition})
        return definition

    def drop_index(self, name: str) -> "Blueprint":
        self.commands.append({"type": "drop_index", "name": name})
        return self

    def drop_foreign(self, name: str) -> "Blueprint":
        self.commands.append({"type": "drop_foreign", "name": name})
        return self

    # ── Compilation ──────────────────────────────────────────────────

    def index_name(self, kind: str, columns: Sequence[str]) -> str:
        return f"{self.table}_{'_'.join(columns)}_{kind}"

    def _primary_columns(self) -> List[str]:
        inline = [c.name for c in self.columns if c.inline_primary(self.dialect)]
        declared: List[str] = []
        for column in self.columns:
            if column.is_primary and column.name not in inline and column.name not in declared:
                declared.append(column.name)
        for name in self.primary_keys:
            if name not in inline and name not in declared:
                declared.append(name)
        if inline and (declared or len(inline) > 1):
            raise SchemaFault(
                self.table,
                f"SQLite auto-increment key {inline[0]!r} cannot be combined "
                f"with other primary key columns {declared or inline[1:]}",
            )
        return declared

    def _check_sql(self, check: Dict[str, Any]) -> str:
        sql = f"CHECK ({check['expression']})"
        if check["name"]:
            sql = f"CONSTRAINT {quote_identifier(check['name'])} {sql}"
        return sql

    def to_sql(self) -> str:
        """The CREATE TABLE statement."""
        if not self.columns:
            raise SchemaFault(self.table, "Cannot create a table without columns")

        parts = [column.to_sql(self.dialect) for column in self.columns]

        primary = self._primary_columns()
        if primary:
            parts.append(f"PRIMARY KEY ({_quote_all(primary)})")

        for column in self.columns:
            if column.foreign_key is not None:
                parts.append(column.foreign_key.to_sql(self.table))
        for fk in self.foreign_keys:
            parts.append(fk.to_sql(self.table))

        for check in self.checks:
            parts.append(self._check_sql(check))

        body = ",\n    ".join(parts)
        return f"CREATE TABLE {quote_identifier(self.table)} (\n    {body}\n)"

    def _index_sql(self, kind: str, columns: Sequence[str], name: Optional[str] = None) -> str:
        keyword = "UNIQUE INDEX" if kind == "unique" else "INDEX"
        index_name = name or self.index_name(kind, columns)
        return (
            f"CREATE {keyword} {quote_identifier(index_name)} "
            f"ON {quote_identifier(self.table)} ({_quote_all(columns)})"
        )

    def index_statements(self) -> List[str]:
        """CREATE INDEX statements for indexed columns and table-level indexes."""
        statements = []
        for column in self.columns:
            if column.is_indexed:
                statements.append(self._index_sql("index", [column.name]))
        for index in self.indexes:
            statements.append(self._index_sql(index["type"], index["columns"], index["name"]))
        return statements

    def create_statements(self) -> List[str]:
        return [self.to_sql(), *self.index_statements()]

    def _unsupported(self, what: str) -> str:
        return f"-- SQLite cannot {what} on {self.table}; skipped"

    def _command_sql(self, command: Dict[str, Any]) -> str:
        table = quote_identifier(self.table)
        kind = command["type"]

        if kind == "drop":
            return f"ALTER TABLE {table} DROP COLUMN {quote_identifier(command['column'])}"

        if kind == "rename":
            return (
                f"ALTER TABLE {table} RENAME COLUMN "
                f"{quote_identifier(command['from'])} TO {quote_identifier(command['to'])}"
            )

        if kind == "modify":
            column: ColumnDefinition = command["column"]
            if self.dialect == "sqlite":
                return self._unsupported(f"modify column {column.name}")
            if self.dialect == "postgresql":
                return (
                    f"ALTER TABLE {table} ALTER COLUMN {quote_identifier(column.name)} "
                    f"TYPE {column.type_sql(self.dialect)}"
                )
            return f"ALTER TABLE {table} MODIFY COLUMN {column.to_sql(self.dialect, positional=True)}"

        if kind == "drop_index":
            name = quote_identifier(command["name"])
            if self.dialect == "mysql":
                return f"DROP INDEX {name} ON {table}"
            return f"DROP INDEX {name}"

        if kind == "drop_foreign":
            name = quote_identifier(command["name"])
            if self.dialect == "sqlite":
                return self._unsupported(f"drop foreign key {command['name']}")
            if self.dialect == "mysql":
                return f"ALTER TABLE {table} DROP FOREIGN KEY {name}"
            return f"ALTER TABLE {table} DROP CONSTRAINT {name}"

        raise SchemaFault(self.table, f"Unknown alter command {kind!r}")

    def to_alter_sql(self) -> List[str]:
        """
        ALTER statements, in order: queued commands, added columns and
        constraints, then index statements.
        """
        table = quote_identifier(self.table)
        sqlite = self.dialect == "sqlite"
        statements = [self._command_sql(command) for command in self.commands]
        extra_indexes: List[str] = []

        for column in self.columns:
            if sqlite and column.is_primary:
                statements.append(self._unsupported(f"add primary key column {column.name}"))
                continue
            if sqlite:
                statements.append(
                    f"ALTER TABLE {table} ADD COLUMN "
                    f"{column.to_sql(self.dialect, inline_references=True, inline_unique=False)}"
                )
                if column.is_unique:
                    extra_indexes.append(self._index_sql("unique", [column.name]))
                continue
            statements.append(f"ALTER TABLE {table} ADD COLUMN {column.to_sql(self.dialect, positional=True)}")
            if column.foreign_key is not None:
                statements.append(f"ALTER TABLE {table} ADD {column.foreign_key.to_sql(self.table)}")

        if self.primary_keys:
            if sqlite:
                statements.append(self._unsupported("add a primary key"))
            else:
                statements.append(f"ALTER TABLE {table} ADD PRIMARY KEY ({_quote_all(self.primary_keys)})")

        for fk in self.foreign_keys:
            if sqlite:
                statements.append(self._unsupported(f"add foreign key on {', '.join(fk.columns)}"))
            else:
                statements.append(f"ALTER TABLE {table} ADD {fk.to_sql(self.table)}")

        for check in self.checks:
            if sqlite:
                statements.append(self._unsupported("add a check constraint"))
            else:
                statements.append(f"ALTER TABLE {table} ADD {self._check_sql(check)}")

        statements.extend(extra_indexes)
        statements.extend(self.index_statements())
        return statements

    def __repr__(self) -> str:
        return f"<Blueprint {self.action} {self.table!r} ({len(self.columns)} columns)>"
