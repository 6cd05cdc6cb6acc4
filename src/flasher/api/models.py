"""Pydantic models for HTTP API responses."""

from typing import Optional
from pydantic import BaseModel, Field

from flasher.models.state import SessionState


class ProgressResponse(BaseModel):
    """GET /api/v1.0/progress response.

    Returns the session snapshot with an application-level status code.

    Example (error set):
        {
            "code": 500,
            "msg": "Flashing failed: CHECKSUM_MISMATCH",
            "data": {"step": 3, "error": 5, "message": "", "progress": -1.0, ...},
            "description": "The system image downloaded does not match ..."
        }
    """

    code: int = Field(..., description="Application-level status code (200/500)")
    msg: str = Field(..., description="Status message or error name")
    data: SessionState = Field(..., description="Session snapshot")
    description: Optional[str] = Field(
        None, description="User-facing description of the current error"
    )


class SuccessResponse(BaseModel):
    """Success response for action endpoints."""

    code: int = Field(default=200, description="Application-level status code (200)")
    msg: str = Field(default="success", description="Success message")
    data: Optional[dict] = Field(None, description="Optional response data")


class ErrorResponse(BaseModel):
    """Error response for action endpoints.

    HTTP status code is always 200, real status in 'code' field.
    """

    code: int = Field(..., description="Application-level error code (409)")
    msg: str = Field(..., description="Error message")
