"""
Common schemas for API responses and error handling.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Schema for detailed error information."""

    error_code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error context")
    suggestions: Optional[List[str]] = Field(None, description="Helpful suggestions for resolving the error")
    retry_after: Optional[int] = None


class ErrorResponse(BaseModel):
    """Schema for API error responses."""

    error: ErrorDetail
    error_id: Optional[str] = None
    timestamp: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "error": {
                        "error_code": "INSUFFICIENT_CREDITS",
                        "message": "Insufficient credits: requested 1, available 0",
                        "details": {"requested": 1, "available": 0},
                        "suggestions": ["Buy a class pass"]
                    },
                    "error_id": "5b0c7d2e-9f43-4a57-8a43-9a1c3f0f2f11",
                    "timestamp": "2026-03-01T08:00:00+00:00"
                }
            ]
        }
    }


class SuccessResponse(BaseModel):
    """Schema for simple success responses."""

    message: str = Field(..., description="Success message")
    data: Optional[Dict[str, Any]] = Field(None, description="Additional response data")


class ListResponse(BaseModel):
    """Pagination envelope shared by list endpoints."""

    total: int
    limit: int
    offset: int
