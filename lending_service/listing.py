"""
Search, sort and pagination over plain lists of records.

Records can be ORM objects or mappings; fields are read the same way for
both so the helpers work on query results and serialized payloads alike.
"""

import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Sequence

ASC = "asc"
DESC = "desc"


def get_nested_value(item: Any, path: str) -> Any:
    """Follow a dotted path such as ``"book.title"``; None when any hop is missing."""
    current = item
    for key in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(key)
        else:
            current = getattr(current, key, None)
    return current


def search(items: Sequence[Any], query: Optional[str],
           fields: Callable[[Any], Iterable[Any]]) -> List[Any]:
    """
    Keep the items where any string returned by ``fields(item)`` contains
    ``query``, ignoring case. A blank query keeps everything.
    """
    if query is None or not query.strip():
        return list(items)
    needle = query.strip().lower()
    matched = []
    for item in items:
        for value in fields(item):
            if value is not None and needle in str(value).lower():
                matched.append(item)
                break
    return matched


def _sort_key(field: str):
    def key(item):
        value = get_nested_value(item, field)
        return "" if value is None else str(value).lower()
    return key


def sort_items(items: Sequence[Any], field: Optional[str],
               direction: str = ASC) -> List[Any]:
    if not field:
        return list(items)
    if direction not in (ASC, DESC):
        raise ValueError(f"Unknown sort direction: {direction!r}")
    # sorted() is stable in both directions when reverse= is used
    return sorted(items, key=_sort_key(field), reverse=direction == DESC)


@dataclass
class SortState:
    """Column-header sorting: same field flips, new field starts ascending."""
    field: Optional[str] = None
    direction: str = ASC

    def toggle(self, field: str) -> "SortState":
        if field == self.field:
            self.direction = DESC if self.direction == ASC else ASC
        else:
            self.field = field
            self.direction = ASC
        return self

    def apply(self, items: Sequence[Any]) -> List[Any]:
        return sort_items(items, self.field, self.direction)


@dataclass
class Page:
    items: List[Any]
    page: int
    page_size: int
    total_pages: int
    total_items: int

    def to_dict(self, serialize: Callable[[Any], Any] = lambda x: x) -> dict:
        return {
            "items": [serialize(i) for i in self.items],
            "page": self.page,
            "per_page": self.page_size,
            "total_pages": self.total_pages,
            "total_items": self.total_items,
        }


def paginate(items: Sequence[Any], page_size: int, page: int = 1) -> Page:
    """
    Slice out 1-based page ``page``. Pages outside ``1..total_pages`` come
    back empty rather than raising.
    """
    if page_size < 1:
        raise ValueError("page_size must be at least 1")
    items = list(items)
    total_pages = math.ceil(len(items) / page_size)
    if page < 1 or page > total_pages:
        chunk = []
    else:
        start = (page - 1) * page_size
        chunk = items[start:start + page_size]
    return Page(
        items=chunk,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
        total_items=len(items),
    )
