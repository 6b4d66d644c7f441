"""
Attribute casts.

A cast name declared in ``Meta.casts`` controls two conversions:

- ``cast_value`` - raw stored value -> Python value, applied on read
- ``storage_value`` - Python value -> column value, applied before writes

Unknown cast names pass values through unchanged.
"""

from __future__ import annotations

import datetime as _dt
import json
from typing import Any

__all__ = ["CAST_TYPES", "TIMESTAMP_FORMAT", "cast_value", "storage_value", "now_string"]

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"

CAST_TYPES = frozenset({
    "int", "integer",
    "real", "float", "double",
    "string", "str",
    "bool", "boolean",
    "array", "json", "dict", "list",
    "date", "datetime", "timestamp",
})


def now_string() -> str:
    """Current local time, to the second, in the column timestamp format."""
    return _dt.datetime.now().strftime(TIMESTAMP_FORMAT)


def _parse_datetime(value: Any) -> _dt.datetime:
    if isinstance(value, _dt.datetime):
        return value
    if isinstance(value, _dt.date):
        return _dt.datetime(value.year, value.month, value.day)
    text = str(value).strip().replace("T", " ")
    for fmt in (TIMESTAMP_FORMAT, "%Y-%m-%d %H:%M:%S.%f", DATE_FORMAT):
        try:
            return _dt.datetime.strptime(text, fmt)
        except ValueError:
            continue
    return _dt.datetime.fromisoformat(text)


def cast_value(kind: str, value: Any) -> Any:
    """Convert a stored value to its declared Python type. ``None`` stays ``None``."""
    if value is None:
        return None
    kind = kind.lower()
    if kind in ("int", "integer"):
        return int(value)
    if kind in ("real", "float", "double"):
        return float(value)
    if kind in ("string", "str"):
        return str(value)
    if kind in ("bool", "boolean"):
        if isinstance(value, str):
            return value.strip().lower() not in ("", "0", "false", "no", "off")
        return bool(value)
    if kind in ("array", "json", "dict", "list"):
        if isinstance(value, (bytes, bytearray)):
            value = value.decode("utf-8")
        if isinstance(value, str):
            return json.loads(value)
        return value
    if kind in ("datetime", "timestamp"):
        return _parse_datetime(value)
    if kind == "date":
        return _parse_datetime(value).date()
    return value


def storage_value(kind: str, value: Any) -> Any:
    """Convert a Python value to what the column stores."""
    if value is None:
        return None
    kind = kind.lower()
    if kind in ("array", "json", "dict", "list"):
        if isinstance(value, (str, bytes, bytearray)):
            return value
        return json.dumps(value)
    if kind in ("bool", "boolean"):
        return 1 if cast_value(kind, value) else 0
    if kind in ("datetime", "timestamp"):
        if isinstance(value, (_dt.datetime, _dt.date)):
            return _parse_datetime(value).strftime(TIMESTAMP_FORMAT)
        return value
    if kind == "date":
        if isinstance(value, (_dt.datetime, _dt.date)):
            return value.strftime(DATE_FORMAT)
        return value
    return value
