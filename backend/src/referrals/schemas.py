"""Shared request/response models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, Field, model_validator

T = TypeVar("T")


class PaginationFilter(BaseModel):
    """Optional paging; both values or neither."""
    page_number: int | None = Field(default=None, ge=1)
    page_size: int | None = Field(default=None, ge=1, le=1000)

    @model_validator(mode="after")
    def check_paging(self) -> "PaginationFilter":
        if (self.page_number is None) != (self.page_size is None):
            raise ValueError("Page number and page size must be specified together")
        return self

    @property
    def pagination_enabled(self) -> bool:
        return self.page_number is not None and self.page_size is not None

    @property
    def offset(self) -> int:
        return (self.page_number - 1) * self.page_size if self.pagination_enabled else 0


class DateRangeFilter(PaginationFilter):
    """Paging plus an optional creation date range."""
    date_start: datetime | None = None
    date_end: datetime | None = None


@dataclass
class SearchResults(Generic[T]):
    """A page of search results."""
    items: list[T] = field(default_factory=list)
    total_count: int | None = None
