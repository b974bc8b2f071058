"""Common schemas for scopeguard."""

from typing import Generic, TypeVar, Optional, List
from pydantic import BaseModel, Field

T = TypeVar("T")


class PageParams(BaseModel):
    """Cursor pagination parameters."""
    limit: Optional[int] = Field(None, ge=1, le=100, description="Items per page")
    cursor: Optional[str] = Field(None, description="Opaque cursor from a previous page")


class Page(BaseModel, Generic[T]):
    """One page of a cursor-paginated listing."""
    items: List[T]
    has_more: bool = False
    next_cursor: Optional[str] = None
