import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from fastapi import Query

T = TypeVar("T")

DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 100


@dataclass(frozen=True)
class PageParams:
    page: int
    limit: int

    @property
    def skip(self) -> int:
        # page is 1-indexed
        return self.page * self.limit - self.limit


def page_params(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
) -> PageParams:
    return PageParams(page=page, limit=limit)


def no_of_pages(total: int, limit: int) -> int:
    if limit <= 0:
        return 0
    return math.ceil(total / limit)


def build_paged_response(
    *,
    key: str,
    items: list[T],
    total: int,
    params: PageParams,
    serializer: Callable[[T], dict] | None = None,
) -> dict:
    serialized = items if serializer is None else [serializer(item) for item in items]
    return {
        key: serialized,
        "total": total,
        "page": params.page,
        "limit": params.limit,
        "no_of_pages": no_of_pages(total, params.limit),
    }
