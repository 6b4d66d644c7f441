"""
Naming conventions shared by entities, relations and migrations.
"""

from __future__ import annotations

import re

__all__ = ["snake_case", "pascal_case", "pluralize", "table_name_for", "quote_identifier"]

_CAMEL_BOUNDARY_1 = re.compile(r"(.)([A-Z][a-z]+)")
_CAMEL_BOUNDARY_2 = re.compile(r"([a-z0-9])([A-Z])")


def snake_case(name: str) -> str:
    """``BlogPost`` -> ``blog_post``; ``HTTPRequest`` -> ``http_request``."""
    name = _CAMEL_BOUNDARY_1.sub(r"\1_\2", name)
    name = _CAMEL_BOUNDARY_2.sub(r"\1_\2", name)
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")


def pascal_case(name: str) -> str:
    """``create_posts_table`` -> ``CreatePostsTable``."""
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[_\-\s]+", name) if part)


def pluralize(word: str) -> str:
    """Naive English plural, good enough for table names."""
    if not word:
        return word
    lower = word.lower()
    if lower.endswith("y") and len(word) > 1 and lower[-2] not in "aeiou":
        return word[:-1] + "ies"
    if lower.endswith(("s", "x", "z", "ch", "sh")):
        return word + "es"
    return word + "s"


def table_name_for(class_name: str) -> str:
    """Default table for an entity class: snake_cased and pluralized."""
    return pluralize(snake_case(class_name))


def quote_identifier(name: str) -> str:
    """
    Double-quote a (possibly dotted) identifier.

    ``posts.id`` -> ``"posts"."id"``; ``*`` is left bare.
    """
    parts = []
    for part in str(name).split("."):
        if part == "*":
            parts.append(part)
        else:
            parts.append('"' + part.replace('"', '""') + '"')
    return ".".join(parts)
