"""Standard API envelope shared by every endpoint."""
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Meta(BaseModel):
    """Pagination and index bookkeeping for list endpoints."""

    page: Optional[int] = None
    page_size: Optional[int] = None
    total: Optional[int] = None
    pages: Optional[int] = None
    # Corpus index the listing was read alongside (search results cite the same version)
    index_version: Optional[int] = None


class ApiResponse(BaseModel, Generic[T]):
    success: bool
    data: Optional[T] = None
    meta: Optional[Meta] = None
    message: Optional[str] = None
    errors: Optional[list] = None
    trace_id: str
