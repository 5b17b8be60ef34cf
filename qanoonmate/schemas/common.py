"""Shared schemas: pagination and simple responses"""
from pydantic import BaseModel, Field
from typing import Generic, List, Optional, TypeVar, Union

T = TypeVar("T")


class PaginationParams(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PaginationMeta(BaseModel):
    """Pagination block attached to every list response"""
    current_page: int
    limit: int
    total_count: int
    total_pages: int
    has_next: bool = False
    has_prev: bool = False
    pages: List[Union[int, str]] = Field(
        default_factory=list,
        description="Page numbers to render with '...' gaps; empty when there is a single page",
    )


class Page(BaseModel, Generic[T]):
    items: List[T]
    meta: PaginationMeta


class MessageResponse(BaseModel):
    status: str = "ok"
    message: Optional[str] = None
