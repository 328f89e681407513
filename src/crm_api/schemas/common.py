"""Common Pydantic v2 schemas shared across the API.

Provides pagination, error response, and other shared schemas.
"""

import math

from pydantic import BaseModel, Field


class PaginationParams(BaseModel):
    """Query parameters for paginated endpoints."""

    page: int = Field(default=1, ge=1, description="Page number (1-based)")
    page_size: int = Field(default=20, ge=1, le=100, description="Items per page")


class PaginationMeta(BaseModel):
    """Pagination metadata included in paginated responses."""

    total: int = Field(description="Total number of items")
    page: int = Field(description="Current page number")
    page_size: int = Field(description="Items per page")
    total_pages: int = Field(description="Total number of pages")

    @classmethod
    def build(cls, *, total: int, page: int, page_size: int) -> "PaginationMeta":
        return cls(total=total, page=page, page_size=page_size, total_pages=max(1, math.ceil(total / page_size)))


class ErrorResponse(BaseModel):
    """Standard error response body."""

    detail: str = Field(description="Human-readable error message")
