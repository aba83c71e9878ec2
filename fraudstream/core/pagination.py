"""Pagination helpers for list endpoints."""

from __future__ import annotations

from typing import Callable, Iterable, List, TypeVar

from fastapi import Query

from fraudstream.core.schemas import Page, PaginationParams

T = TypeVar("T")
U = TypeVar("U")


def pagination_params(
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=200),
) -> PaginationParams:
    return PaginationParams(page=page, page_size=page_size)


def paginate_list(items: Iterable[T], params: PaginationParams, convert: Callable[[T], U]) -> Page[U]:
    items_list: List[T] = list(items)
    start = (params.page - 1) * params.page_size
    end = start + params.page_size
    return Page(
        page=params.page,
        page_size=params.page_size,
        total=len(items_list),
        items=[convert(item) for item in items_list[start:end]],
    )
