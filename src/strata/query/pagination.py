"""Offset pagination result."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from strata.core.errors import QueryBuildError

T = TypeVar("T")


def validate_page(page: Any, per_page: Any) -> None:
    """Reject page numbers or page sizes below 1."""
    for name, value in (("page", page), ("per_page", per_page)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise QueryBuildError(f"{name} must be a positive integer, got {value!r}")


@dataclass
class Page(Generic[T]):
    """One page of results plus the totals needed to render pagination."""

    items: list[T] = field(default_factory=list)
    total: int = 0
    per_page: int = 15
    current_page: int = 1

    def __post_init__(self) -> None:
        validate_page(self.current_page, self.per_page)

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))

    @property
    def from_item(self) -> int | None:
        """1-based index of the first item on this page."""
        if not self.items:
            return None
        return (self.current_page - 1) * self.per_page + 1

    @property
    def to_item(self) -> int | None:
        if not self.items:
            return None
        return (self.current_page - 1) * self.per_page + len(self.items)

    @property
    def has_more_pages(self) -> bool:
        return self.current_page < self.last_page

    @property
    def on_first_page(self) -> bool:
        return self.current_page <= 1

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": [item.to_dict() if hasattr(item, "to_dict") else item for item in self.items],
            "total": self.total,
            "per_page": self.per_page,
            "current_page": self.current_page,
            "last_page": self.last_page,
            "from": self.from_item,
            "to": self.to_item,
        }


__all__ = ["Page", "validate_page"]
