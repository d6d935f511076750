"""Naming conventions: snake_case, plural and singular forms.

Table names, foreign keys and pivot tables are all derived from class
names with these helpers::

    >>> table_name_for("BookCategory")
    'book_categories'
    >>> foreign_key_for("Author")
    'author_id'
    >>> pivot_table_for("Book", "Author")
    'author_book'

The pluraliser covers regular English rules plus a short irregular
table; declare ``table = "..."`` on a model for anything else.
"""

from __future__ import annotations

import re

_IRREGULAR = {
    "person": "people",
    "man": "men",
    "woman": "women",
    "child": "children",
    "tooth": "teeth",
    "foot": "feet",
    "mouse": "mice",
    "goose": "geese",
    "ox": "oxen",
    "criterion": "criteria",
    "datum": "data",
    "medium": "media",
    "analysis": "analyses",
    "index": "indices",
    "matrix": "matrices",
    "vertex": "vertices",
    "cactus": "cacti",
    "leaf": "leaves",
    "life": "lives",
    "knife": "knives",
    "wife": "wives",
}
_IRREGULAR_SINGULAR = {v: k for k, v in _IRREGULAR.items()}

_UNCOUNTABLE = frozenset(
    {"equipment", "information", "rice", "money", "species", "series", "fish", "sheep", "news", "metadata", "audio"}
)

_CAMEL_1 = re.compile(r"(.)([A-Z][a-z]+)")
_CAMEL_2 = re.compile(r"([a-z0-9])([A-Z])")


def snake(name: str) -> str:
    """``BookCategory`` → ``book_category``."""
    return _CAMEL_2.sub(r"\1_\2", _CAMEL_1.sub(r"\1_\2", name)).lower()


def studly(name: str) -> str:
    """``book_category`` → ``BookCategory``."""
    return "".join(part.capitalize() for part in re.split(r"[_\-\s]+", name) if part)


def _pluralize_word(word: str) -> str:
    lower = word.lower()
    if lower in _UNCOUNTABLE:
        return word
    if lower in _IRREGULAR:
        return _IRREGULAR[lower]
    if re.search(r"[^aeiou]y$", lower):
        return word[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", lower):
        return word + "es"
    return word + "s"


def _singularize_word(word: str) -> str:
    lower = word.lower()
    if lower in _UNCOUNTABLE:
        return word
    if lower in _IRREGULAR_SINGULAR:
        return _IRREGULAR_SINGULAR[lower]
    if lower.endswith("ies") and len(lower) > 3:
        return word[:-3] + "y"
    if re.search(r"(ss|x|z|ch|sh)es$", lower):
        return word[:-2]
    if lower.endswith("s") and not lower.endswith("ss"):
        return word[:-1]
    return word


def plural(name: str) -> str:
    """Pluralise the last segment of a snake_case name: ``book_category`` → ``book_categories``."""
    head, _, last = name.rpartition("_")
    return f"{head}_{_pluralize_word(last)}" if head else _pluralize_word(last)


def singular(name: str) -> str:
    head, _, last = name.rpartition("_")
    return f"{head}_{_singularize_word(last)}" if head else _singularize_word(last)


def table_name_for(class_name: str) -> str:
    return plural(snake(class_name))


def foreign_key_for(class_name: str, key: str = "id") -> str:
    return f"{snake(class_name)}_{key}"


def pivot_table_for(first: str, second: str) -> str:
    """Two singular snake names in alphabetical order, joined with ``_``."""
    return "_".join(sorted([snake(first), snake(second)]))


__all__ = [
    "foreign_key_for",
    "pivot_table_for",
    "plural",
    "singular",
    "snake",
    "studly",
    "table_name_for",
]
