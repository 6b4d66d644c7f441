"""
Quarry Schema - column and foreign-key definitions.

A ``ColumnDefinition`` is a logical column (``varchar``, ``bigint``,
``enum``, ...) plus modifiers. It compiles itself to a column clause for
a given dialect (``sqlite``, ``postgresql`` or ``mysql``):

    col = ColumnDefinition("email", "varchar", length=255).unique()
    col.to_sql("sqlite")   # "email" VARCHAR(255) NOT NULL UNIQUE
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Union

from ..faults.domains import SchemaFault
from ..models.naming import pluralize, quote_identifier

__all__ = ["ColumnDefinition", "ForeignKeyDefinition", "format_default", "NO_DEFAULT"]


# ── Sentinel for distinguishing 'no default' from None ──────────────────────


class _NoDefault:
    """Sentinel to distinguish 'no default' from None."""

    def __repr__(self):
        return "<NO_DEFAULT>"

    def __bool__(self):
        return False


NO_DEFAULT = _NoDefault()

_RAW_DEFAULTS = ("CURRENT_TIMESTAMP", "NOW()", "NULL")

_REFERENTIAL_ACTIONS = ("CASCADE", "RESTRICT", "SET NULL", "SET DEFAULT", "NO ACTION")


def format_default(value: Any, dialect: str = "sqlite") -> str:
    """Format a Python value as a SQL DEFAULT literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        if dialect == "postgresql":
            return "TRUE" if value else "FALSE"
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value)
    if text.upper() in _RAW_DEFAULTS:
        return text.upper()
    escaped = text.replace("'", "''")
    return f"'{escaped}'"


def _quote_literal(value: Any) -> str:
    return "'" + str(value).replace("'", "''") + "'"


# ── Foreign keys ─────────────────────────────────────────────────────────────


class ForeignKeyDefinition:
    """
    A table-level FOREIGN KEY constraint.

        table.foreign("account_id").references("id").on("accounts").cascade_on_delete()
    """

    def __init__(self, columns: Union[str, Sequence[str]], name: Optional[str] = None):
        self.columns: List[str] = [columns] if isinstance(columns, str) else list(columns)
        self.name = name
        self.referenced_columns: List[str] = ["id"]
        self.referenced_table: Optional[str] = None
        self.on_delete_action: Optional[str] = None
        self.on_update_action: Optional[str] = None

    def references(self, columns: Union[str, Sequence[str]]) -> "ForeignKeyDefinition":
        self.referenced_columns = [columns] if isinstance(columns, str) else list(columns)
        return self

    def on(self, table: str) -> "ForeignKeyDefinition":
        self.referenced_table = table
        return self

    def on_delete(self, action: str) -> "ForeignKeyDefinition":
        self.on_delete_action = _action(action)
        return self

    def on_update(self, action: str) -> "ForeignKeyDefinition":
        self.on_update_action = _action(action)
        return self

    def cascade_on_delete(self) -> "ForeignKeyDefinition":
        return self.on_delete("cascade")

    def restrict_on_delete(self) -> "ForeignKeyDefinition":
        return self.on_delete("restrict")

    def null_on_delete(self) -> "ForeignKeyDefinition":
        return self.on_delete("set null")

    def cascade_on_update(self) -> "ForeignKeyDefinition":
        return self.on_update("cascade")

    def constraint_name(self, table: str) -> str:
        return self.name or f"{table}_{'_'.join(self.columns)}_foreign"

    def reference_sql(self) -> str:
        """``REFERENCES "t" ("id") ON DELETE ...``, usable inline or in a constraint."""
        if not self.referenced_table:
            raise SchemaFault(
                "<foreign>",
                f"Foreign key on {self.columns} has no referenced table; call .on(table)",
            )
        cols = ", ".join(quote_identifier(c) for c in self.referenced_columns)
        sql = f"REFERENCES {quote_identifier(self.referenced_table)} ({cols})"
        if self.on_delete_action:
            sql += f" ON DELETE {self.on_delete_action}"
        if self.on_update_action:
            sql += f" ON UPDATE {self.on_update_action}"
        return sql

    def to_sql(self, table: str) -> str:
        cols = ", ".join(quote_identifier(c) for c in self.columns)
        return (
            f"CONSTRAINT {quote_identifier(self.constraint_name(table))} "
            f"FOREIGN KEY ({cols}) {self.reference_sql()}"
        )

    def __repr__(self) -> str:
        return f"<ForeignKeyDefinition {self.columns} -> {self.referenced_table}>"


def _action(action: str) -> str:
    normalized = " ".join(str(action).upper().split())
    if normalized not in _REFERENTIAL_ACTIONS:
        raise SchemaFault("<foreign>", f"Unknown referential action {action!r}")
    return normalized


# ── Columns ──────────────────────────────────────────────────────────────────


class ColumnDefinition:
    """
    One column of a Blueprint: a logical type plus modifiers.

    Modifiers return the column so they chain:

        table.string("email").nullable().unique()
        table.foreign_id("account_id").constrained().cascade_on_delete()
    """

    def __init__(self, name: str, type: str, **options: Any):
        self.name = name
        self.type = type.lower()
        self.length: Optional[int] = options.pop("length", None)
        self.precision: Optional[int] = options.pop("precision", None)
        self.scale: Optional[int] = options.pop("scale", None)
        self.values: List[Any] = list(options.pop("values", []))
        self.is_nullable: bool = options.pop("nullable", False)
        self.default_value: Any = options.pop("default", NO_DEFAULT)
        self.is_unsigned: bool = options.pop("unsigned", False)
        self.is_unique: bool = options.pop("unique", False)
        self.is_indexed: bool = options.pop("index", False)
        self.is_primary: bool = options.pop("primary", False)
        self.is_auto_increment: bool = options.pop("auto_increment", False)
        self.comment_text: Optional[str] = options.pop("comment", None)
        self.after_column: Optional[str] = options.pop("after", None)
        self.is_first: bool = options.pop("first", False)
        self.foreign_key: Optional[ForeignKeyDefinition] = None
        self.options: Dict[str, Any] = options

    # ── Modifiers ────────────────────────────────────────────────────

    def nullable(self, value: bool = True) -> "ColumnDefinition":
        self.is_nullable = value
        return self

    def default(self, value: Any) -> "ColumnDefinition":
        self.default_value = value
        return self

    def unsigned(self) -> "ColumnDefinition":
        self.is_unsigned = True
        return self

    def unique(self) -> "ColumnDefinition":
        self.is_unique = True
        return self

    def index(self) -> "ColumnDefinition":
        self.is_indexed = True
        return self

    def primary(self) -> "ColumnDefinition":
        self.is_primary = True
        return self

    def auto_increment(self) -> "ColumnDefinition":
        self.is_auto_increment = True
        return self

    def comment(self, text: str) -> "ColumnDefinition":
        self.comment_text = text
        return self

    def after(self, column: str) -> "ColumnDefinition":
        """MySQL only: place the column after ``column`` when altering."""
        self.after_column = column
        return self

    def first(self) -> "ColumnDefinition":
        """MySQL only: place the column first when altering."""
        self.is_first = True
        return self

    def constrained(self, table: Optional[str] = None, column: str = "id") -> "ColumnDefinition":
        """
        Reference ``table.column``. Without a table, ``account_id`` points
        at ``accounts``.
        """
        if table is None:
            base = self.name[:-3] if self.name.endswith("_id") else self.name
            table = pluralize(base)
        self.foreign_key = ForeignKeyDefinition(self.name).references(column).on(table)
        return self

    def cascade_on_delete(self) -> "ColumnDefinition":
        self._require_fk("cascade_on_delete").cascade_on_delete()
        return self

    def null_on_delete(self) -> "ColumnDefinition":
        self._require_fk("null_on_delete").null_on_delete()
        return self

    def restrict_on_delete(self) -> "ColumnDefinition":
        self._require_fk("restrict_on_delete").restrict_on_delete()
        return self

    def cascade_on_update(self) -> "ColumnDefinition":
        self._require_fk("cascade_on_update").cascade_on_update()
        return self

    def _require_fk(self, modifier: str) -> ForeignKeyDefinition:
        if self.foreign_key is None:
            raise SchemaFault("<column>", f"{modifier}() on {self.name!r} needs constrained() first")
        return self.foreign_key

    # ── Compilation ──────────────────────────────────────────────────

    def inline_primary(self, dialect: str) -> bool:
        """SQLite auto-increment keys are declared inline and nowhere else."""
        return dialect == "sqlite" and self.is_primary and self.is_auto_increment

    def type_sql(self, dialect: str = "sqlite") -> str:
        """The column type for ``dialect``."""
        t = self.type
        big = t == "bigint"

        if self.is_auto_increment and self.is_primary:
            if dialect == "sqlite":
                return "INTEGER PRIMARY KEY AUTOINCREMENT"
            if dialect == "postgresql":
                return "BIGSERIAL" if big else "SERIAL"

        if t in ("varchar", "char"):
            return f"{t.upper()}({self.length or 255})"
        if t == "text":
            return "TEXT"
        if t in ("mediumtext", "longtext"):
            return t.upper() if dialect == "mysql" else "TEXT"
        if t == "json":
            if dialect == "mysql":
                return "JSON"
            if dialect == "postgresql":
                return "JSONB"
            return "TEXT"
        if t == "int":
            return "INT" if dialect == "mysql" else "INTEGER"
        if t == "bigint":
            return "BIGINT"
        if t == "smallint":
            return "SMALLINT"
        if t == "tinyint":
            return "SMALLINT" if dialect == "postgresql" else "TINYINT"
        if t == "decimal":
            p, s = self.precision or 8, self.scale if self.scale is not None else 2
            return f"NUMERIC({p}, {s})" if dialect == "postgresql" else f"DECIMAL({p}, {s})"
        if t == "float":
            if dialect == "postgresql":
                return "REAL"
            if self.precision is not None and dialect == "mysql":
                return f"FLOAT({self.precision}, {self.scale if self.scale is not None else 2})"
            return "FLOAT"
        if t == "double":
            return "DOUBLE PRECISION" if dialect == "postgresql" else "DOUBLE"
        if t == "boolean":
            return "TINYINT(1)" if dialect == "mysql" else "BOOLEAN"
        if t == "datetime":
            return "TIMESTAMP" if dialect == "postgresql" else "DATETIME"
        if t in ("date", "time", "timestamp"):
            return t.upper()
        if t == "blob":
            return "BYTEA" if dialect == "postgresql" else "BLOB"
        if t == "enum":
            if dialect == "mysql":
                return "ENUM(" + ", ".join(_quote_literal(v) for v in self.values) + ")"
            return f"VARCHAR({max([len(str(v)) for v in self.values] + [1])})"
        return t.upper()

    def _default_sql(self, dialect: str) -> str:
        if self.type == "timestamp" and self.default_value is NO_DEFAULT:
            if self.is_nullable:
                return " DEFAULT NULL"
            sql = " DEFAULT CURRENT_TIMESTAMP"
            if self.name == "updated_at" and dialect == "mysql":
                sql += " ON UPDATE CURRENT_TIMESTAMP"
            return sql
        if self.default_value is NO_DEFAULT:
            return ""
        return f" DEFAULT {format_default(self.default_value, dialect)}"

    def to_sql(
        self,
        dialect: str = "sqlite",
        *,
        inline_references: bool = False,
        inline_unique: bool = True,
        positional: bool = False,
    ) -> str:
        """
        Compile to a column clause.

        Args:
            dialect: sqlite | postgresql | mysql
            inline_references: Append the foreign key's REFERENCES clause
                (used for SQLite ``ADD COLUMN``, which cannot add constraints).
            inline_unique: Emit UNIQUE on the column itself. SQLite cannot
                ``ADD COLUMN`` a UNIQUE column, so alters index it instead.
            positional: Emit MySQL FIRST / AFTER. Only valid in ALTER TABLE.
        """
        type_sql = self.type_sql(dialect)
        sql = f"{quote_identifier(self.name)} {type_sql}"

        if self.inline_primary(dialect):
            return sql

        if self.is_unsigned and dialect == "mysql":
            sql += " UNSIGNED"

        if self.is_auto_increment:
            if dialect == "mysql":
                sql += " NOT NULL AUTO_INCREMENT"
        elif self.is_nullable:
            sql += " NULL"
        else:
            sql += " NOT NULL"

        sql += self._default_sql(dialect)

        if self.is_unique and inline_unique and not self.is_primary:
            sql += " UNIQUE"

        if self.type == "enum" and dialect != "mysql" and self.values:
            allowed = ", ".join(_quote_literal(v) for v in self.values)
            sql += f" CHECK ({quote_identifier(self.name)} IN ({allowed}))"

        if self.comment_text is not None and dialect == "mysql":
            sql += f" COMMENT {_quote_literal(self.comment_text)}"

        if positional and dialect == "mysql":
            if self.is_first:
                sql += " FIRST"
            elif self.after_column:
                sql += f" AFTER {quote_identifier(self.after_column)}"

        if inline_references and self.foreign_key is not None:
            sql += " " + self.foreign_key.reference_sql()

        return sql

    def __repr__(self) -> str:
        return f"<ColumnDefinition {self.name!r} {self.type}>"
