"""
Rule-string validation for entity attributes.

Rules are declared per field as ``"required|email|min:3|max:50|numeric"``
(or a list of the same tokens). Validation is advisory: nothing here
touches the database and ``save()`` never calls it implicitly.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Sequence, Union

logger = logging.getLogger("quarry.models.validation")

__all__ = ["validate", "check_rule", "parse_rules", "default_message"]

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")

RuleSpec = Union[str, Sequence[str]]


def parse_rules(spec: RuleSpec) -> List[str]:
    """Split a rule declaration into its tokens."""
    if isinstance(spec, str):
        return [r.strip() for r in spec.split("|") if r.strip()]
    return [str(r).strip() for r in spec if str(r).strip()]


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        try:
            float(value.strip())
        except ValueError:
            return False
        return True
    return False


def _length(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (list, tuple, dict, set)):
        return len(value)
    return len(str(value))


def check_rule(value: Any, rule: str) -> bool:
    """Return True when ``value`` satisfies a single rule token."""
    name, _, arg = rule.partition(":")
    name = name.lower()

    if name == "required":
        return not _is_empty(value)
    if name == "email":
        return isinstance(value, str) and bool(_EMAIL_RE.match(value))
    if name == "numeric":
        return _is_numeric(value)
    if name in ("min", "max"):
        try:
            bound = int(arg)
        except ValueError:
            logger.warning(f"Ignoring malformed rule '{rule}'")
            return True
        length = _length(value)
        return length >= bound if name == "min" else length <= bound

    logger.debug(f"Unknown validation rule '{rule}' treated as passing")
    return True


def default_message(field: str, rule: str) -> str:
    return f"The {field} field is invalid for rule {rule}."


def validate(
    data: Mapping[str, Any],
    rules: Mapping[str, RuleSpec],
    messages: Mapping[str, str] = None,
) -> Union[bool, Dict[str, List[str]]]:
    """
    Check ``data`` against ``rules``.

    Returns ``True`` when every rule passes, otherwise a mapping of
    field -> list of messages for the rules it violated. A custom message
    is looked up under ``"<field>.<rule>"`` in ``messages``.
    """
    messages = messages or {}
    errors: Dict[str, List[str]] = {}

    for field, spec in rules.items():
        value = data.get(field)
        for rule in parse_rules(spec):
            if not check_rule(value, rule):
                errors.setdefault(field, []).append(
                    messages.get(f"{field}.{rule}", default_message(field, rule))
                )

    return True if not errors else errors
