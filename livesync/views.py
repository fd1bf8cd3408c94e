"""
Client-side derived view over an already-reconciled collection:
free-text search, single-field sort and pagination. Nothing here touches
the remote service.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Generic, Sequence, TypeVar

import pandas as pd
from pydantic import BaseModel

from livesync.models import matches_search

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class Page(Generic[T]):
    total:       int
    page:        int
    page_size:   int
    total_pages: int
    data:        list[T]


def search_items(items: Sequence[T], term: str | None, fields: tuple[str, ...]) -> list[T]:
    if not term or not term.strip():
        return list(items)
    return [item for item in items if matches_search(item, term.strip(), fields)]


def sort_items(items: Sequence[T], field: str | None, descending: bool = False) -> list[T]:
    """
    Stable sort by one field using the natural ordering of its values.
    Missing values go last in either direction.
    """
    if not field or not items:
        return list(items)

    keys = pd.Series([getattr(item, field, None) for item in items], dtype=object)
    keys = keys.map(lambda v: getattr(v, "value", v))
    order = keys.sort_values(ascending=not descending, na_position="last", kind="mergesort")
    return [items[i] for i in order.index]


def paginate(items: Sequence[T], page: int = 1, page_size: int = 10) -> Page[T]:
    if page < 1:
        raise ValueError("page must be >= 1")
    if page_size < 1:
        raise ValueError("page_size must be >= 1")

    total = len(items)
    start = (page - 1) * page_size
    return Page(
        total       = total,
        page        = page,
        page_size   = page_size,
        total_pages = math.ceil(total / page_size) if total else 0,
        data        = list(items[start : start + page_size]),
    )


def build_view(
    items:         Sequence[T],
    *,
    search:        str | None = None,
    search_fields: tuple[str, ...] = (),
    sort_by:       str | None = None,
    descending:    bool = False,
    page:          int = 1,
    page_size:     int = 10,
) -> Page[T]:
    """Search, then sort, then paginate."""
    result = search_items(items, search, search_fields)
    result = sort_items(result, sort_by, descending)
    return paginate(result, page, page_size)
