"""Comparison request/response schemas."""

from typing import Optional

from pydantic import BaseModel, Field


class ComparisonCreate(BaseModel):
    """Create comparison request."""
    query: str = Field("", description="Free-text description of what you need")
    force_refresh: bool = Field(False, description="Bypass the cache (admins only)")


class OperationAccepted(BaseModel):
    """Accepted background operation."""
    session_id: str = Field(..., description="Progress/session identifier")
    status: str = Field(..., description="Always 'processing' on acceptance")
    repository_id: Optional[str] = Field(None, description="Repository for deep analyses")
