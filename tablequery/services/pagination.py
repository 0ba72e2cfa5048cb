from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, List


@dataclass
class LengthAwarePaginator:
    """One page of records plus the totals a grid needs to render its pager."""

    items: List[Any]
    total: int
    per_page: int
    current_page: int
    columns: List[str] = field(default_factory=lambda: ["*"])

    @property
    def last_page(self) -> int:
        return max(int(math.ceil(self.total / self.per_page)), 1)

    @property
    def from_(self) -> int | None:
        if not self.items:
            return None
        return (self.current_page - 1) * self.per_page + 1

    @property
    def to(self) -> int | None:
        if not self.items:
            return None
        return (self.current_page - 1) * self.per_page + len(self.items)

    @property
    def has_more_pages(self) -> bool:
        return self.current_page < self.last_page

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def to_dict(self, serializer: Callable[[Any], Any] | None = None) -> dict[str, Any]:
        rows = [serializer(item) for item in self.items] if serializer else list(self.items)
        return {
            "data": rows,
            "total": self.total,
            "per_page": self.per_page,
            "current_page": self.current_page,
            "last_page": self.last_page,
            "from": self.from_,
            "to": self.to,
        }
