"""Pagination and sorting helpers shared by list operations."""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from workflow_hub.errors import from_pydantic

T = TypeVar("T")
ItemT = TypeVar("ItemT")

MAX_PAGE_SIZE = 100


class PageRequest(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=MAX_PAGE_SIZE)

    @classmethod
    def of(cls, page: int = 1, limit: int = 20) -> PageRequest:
        try:
            return cls(page=page, limit=limit)
        except PydanticValidationError as e:
            raise from_pydantic(e, prefix="Invalid pagination: ") from e

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class Page(BaseModel, Generic[ItemT]):
    items: list[ItemT]
    pagination: Pagination


def paginate(items: Sequence[T], request: PageRequest, *, total: int) -> tuple[list[T], Pagination]:
    window = list(items[request.offset : request.offset + request.limit])
    return window, Pagination(
        page=request.page,
        limit=request.limit,
        total=total,
        pages=math.ceil(total / request.limit),
    )


def sort_items(items: Sequence[T], key: Callable[[T], Any], *, descending: bool) -> list[T]:
    """Stable sort on ``key``; items whose key is ``None`` always go last."""

    present = [i for i in items if key(i) is not None]
    missing = [i for i in items if key(i) is None]
    present.sort(key=key, reverse=descending)
    return present + missing
