"""Common Pydantic schemas used across API endpoints."""

from datetime import datetime
from typing import Any, Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


# =============================================================================
# Pagination
# =============================================================================


class PaginationParams(BaseModel):
    """Page query parameters; use as `params: PaginationParams = Depends()`."""

    page: int = Field(default=1, ge=1, description="Page number (1-indexed)")
    page_size: int = Field(default=20, ge=1, le=100, description="Items per page (max 100)")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class PaginatedResponse(BaseModel, Generic[T]):
    """One page of a listing."""

    items: list[T]
    total: int = Field(description="Total number of matching items")
    page: int
    page_size: int
    pages: int = Field(description="Total number of pages")

    @classmethod
    def create(cls, items: list[T], total: int, params: PaginationParams) -> "PaginatedResponse[T]":
        return cls(
            items=items,
            total=total,
            page=params.page,
            page_size=params.page_size,
            pages=-(-total // params.page_size),
        )


# =============================================================================
# Error Responses
# =============================================================================


class ErrorResponse(BaseModel):
    """Body of every engine error (NotFound, InvalidReference, conflicts)."""

    error: str = Field(description="Error type, e.g. AlreadySealed")
    message: str = Field(description="Human-readable error message")
    details: dict[str, Any] | None = Field(
        default=None,
        description="Structured context: {kind, id} for NotFound, {attempts} for WriteConflict",
    )


# Documented on every router; the handler in main.py produces these bodies
ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    404: {"model": ErrorResponse, "description": "A named entity does not exist"},
    409: {"model": ErrorResponse, "description": "Sealed run, closed ticket, stage order or write conflict"},
    422: {"model": ErrorResponse, "description": "A reference names a nonexistent entity"},
}


# =============================================================================
# Base Response
# =============================================================================


class BaseResponse(BaseModel):
    """Response built from an ORM row with a UUID7 id."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="UUID7 identifier (time-ordered)")
    created_at: datetime
