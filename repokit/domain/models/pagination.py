"""Pagination value objects.

PageRequest: which page a caller wants (bounded, or the unbounded variant)
PageResult : the page envelope returned by every list query

Both are immutable after construction.  PageResult.model_dump() yields the
field-stable envelope:

    {items, page_size, page_index, total_count, total_pages, has_previous, has_next}
"""

from __future__ import annotations

import math
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

T = TypeVar("T")


class PageRequest(BaseModel):
    """A zero-based page index and a page size.

    size=None is the unbounded variant: every matching row in a single page.
    Negative values are rejected at construction, never clamped.
    """

    model_config = ConfigDict(frozen=True)

    index: int = Field(default=0, ge=0)
    size: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _unbounded_has_single_page(self) -> PageRequest:
        if self.size is None and self.index != 0:
            raise ValueError("an unbounded page request has no index other than 0")
        return self

    @classmethod
    def of(cls, index: int, size: int) -> PageRequest:
        """Build from the numeric pair used by Repository.list().

        size == 0 means "no pagination" and maps to the unbounded variant;
        the skip it implies (index * 0) is always 0, so the index is dropped.
        """
        if size == 0 and index >= 0:
            return cls.unbounded()
        return cls(index=index, size=size)

    @classmethod
    def unbounded(cls) -> PageRequest:
        return cls()

    @property
    def is_unbounded(self) -> bool:
        return self.size is None

    @property
    def offset(self) -> int:
        return 0 if self.size is None else self.index * self.size


def total_pages(total_count: int, page_size: int | None) -> int:
    """ceil(total_count / page_size); an unbounded page counts as one page when non-empty."""
    if page_size is None or page_size == 0:
        return 1 if total_count > 0 else 0
    return math.ceil(total_count / page_size)


class PageResult(BaseModel, Generic[T]):
    """One page of query results plus navigation metadata.

    page_size is 0 for an unbounded page.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    items: list[T] = Field(default_factory=list)
    page_size: int = Field(ge=0)
    page_index: int = Field(ge=0)
    total_count: int = Field(ge=0)
    total_pages: int = Field(ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_previous(self) -> bool:
        return self.page_index > 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_next(self) -> bool:
        return self.page_index + 1 < self.total_pages

    @classmethod
    def build(cls, items: list[T], page: PageRequest, total_count: int) -> PageResult[T]:
        return cls(
            items=items,
            page_size=page.size or 0,
            page_index=page.index,
            total_count=total_count,
            total_pages=total_pages(total_count, page.size),
        )
