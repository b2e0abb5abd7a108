"""
DocGate Backend - Response Schemas
==================================

What:  Pydantic models for the responses the gateway itself produces.
       Collaborator replies are passed through and have no schema here.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    The Error Envelope. Every failure the gateway produces has this shape.

    Example:
        {"error": "File too large. Maximum size is 10MB."}
        {"error": "An unexpected error occurred. Please try again.",
         "details": "summarize service answered 503"}     (development only)
    """

    error: str = Field(description="Stable, human-readable error message")
    details: Optional[str] = Field(
        default=None,
        description="Original failure message; only present in development",
    )


class HealthResponse(BaseModel):
    status: str = Field(default="OK", description="Always OK while the process serves requests")
    timestamp: datetime = Field(description="Server time (UTC, ISO 8601)")
    version: str = Field(description="Application version")
    uptime_seconds: float = Field(description="Seconds since the process started")
