"""
Query and Pagination Models

A filter renders to a query document (Mongo-style operators). The document
backend runs it natively; the file backend evaluates the same document in
process, so both backends answer the same question.
"""

import math
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union

from pydantic import BaseModel, Field, model_validator

from finedge.models.base import local_naive
from finedge.models.transaction import TransactionKind


T = TypeVar("T")

DateBound = Union[datetime, date]


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"
    
    @property
    def sign(self) -> int:
        return 1 if self is SortDirection.ASC else -1


def start_of(bound: DateBound) -> datetime:
    """Lower date bound; a bare date means midnight."""
    if isinstance(bound, datetime):
        return local_naive(bound)
    return datetime.combine(bound, time.min)


def end_of(bound: DateBound) -> datetime:
    """Upper date bound; a bare date covers the whole day."""
    if isinstance(bound, datetime):
        return local_naive(bound)
    return datetime.combine(bound, time.max)


class TransactionFilter(BaseModel):
    """
    Conjunctive transaction filter.
    
    Every supplied field must match. The date range is inclusive on
    both ends.
    """
    
    user_id: Optional[str] = None
    kind: Optional[TransactionKind] = None
    category: Optional[str] = None
    tags: list[str] = Field(
        default_factory=list,
        description="Matches records carrying any of these tags"
    )
    start_date: Optional[DateBound] = None
    end_date: Optional[DateBound] = None
    
    @model_validator(mode="after")
    def check_range(self) -> "TransactionFilter":
        if self.start_date and self.end_date:
            if start_of(self.start_date) > end_of(self.end_date):
                raise ValueError("start_date cannot be after end_date")
        return self
    
    def to_query(self) -> dict:
        """Render as a query document both backends understand."""
        query: dict[str, Any] = {}
        if self.user_id:
            query["user_id"] = self.user_id
        if self.kind:
            query["kind"] = self.kind.value
        if self.category:
            query["category"] = self.category.strip()
        if self.tags:
            query["tags"] = {"$in": list(self.tags)}
        if self.start_date or self.end_date:
            window = {}
            if self.start_date:
                window["$gte"] = start_of(self.start_date)
            if self.end_date:
                window["$lte"] = end_of(self.end_date)
            query["date"] = window
        return query


class PageRequest(BaseModel):
    """Offset pagination request."""
    
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    sort_by: str = Field(
        default="date",
        pattern=r"^[a-z_][a-z0-9_.]*$",
        description="Field to order by"
    )
    direction: SortDirection = SortDirection.DESC
    
    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit
    
    def capped(self, max_page_size: int) -> "PageRequest":
        """Same request with the limit held to the configured maximum."""
        if self.limit <= max_page_size:
            return self
        return self.model_copy(update={"limit": max_page_size})
    
    def sort_spec(self) -> list[tuple[str, int]]:
        """Sort keys with id appended so ties resolve the same everywhere."""
        spec = [(self.sort_by, self.direction.sign)]
        if self.sort_by != "id":
            spec.append(("id", self.direction.sign))
        return spec


def page_count(total: int, limit: int) -> int:
    """Number of pages needed for total items; zero when there are none."""
    if total <= 0:
        return 0
    return math.ceil(total / limit)


class Page(BaseModel, Generic[T]):
    """One slice of a result set, with counts independent of the slice."""
    
    data: list[T] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)
    skip: int = Field(default=0, ge=0)
    limit: int = Field(default=10, ge=1)
    pages: int = Field(default=0, ge=0)
