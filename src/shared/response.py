from __future__ import annotations

from math import ceil
from typing import Generic, Optional, Sequence, TypeVar

from src.shared.base import BaseSchema


T = TypeVar("T")


class Pagination(BaseSchema):
    current_page: int
    total_pages: int
    total_items: int
    has_next: bool
    has_prev: bool


class Meta(BaseSchema):
    as_of_date: str
    source: str
    time_window: str
    calculation_version: str
    generated_at: Optional[str] = None
    from_cache: Optional[bool] = None
    cache_age_seconds: Optional[int] = None
    degraded: Optional[bool] = None


class ResponseEnvelope(BaseSchema, Generic[T]):
    data: T
    pagination: Optional[Pagination] = None
    meta: Optional[Meta] = None


def build_pagination(page: int, limit: int, total_items: int) -> Pagination:
    total_pages = ceil(total_items / limit) if limit else 0
    return Pagination(
        current_page=page,
        total_pages=total_pages,
        total_items=total_items,
        has_next=page * limit < total_items,
        has_prev=page > 1,
    )


def paginate_list(items: Sequence[T], page: int, limit: int) -> tuple[list[T], Pagination]:
    total_items = len(items)
    pagination = build_pagination(page, limit, total_items)
    start_index = (page - 1) * limit
    end_index = start_index + limit
    return list(items[start_index:end_index]), pagination
