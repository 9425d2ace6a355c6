"""
Health check API schemas.

Pydantic schemas for health API responses.
"""

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field(
        ...,
        description="Overall health status",
        json_schema_extra={"example": "healthy"},
    )
    version: str = Field(default="1.0.0", description="API version")
    timestamp: float = Field(..., description="Timestamp when check was performed")
    message: str = Field(
        ...,
        description="Human-readable status message",
        json_schema_extra={"example": "Waiter Realtime Relay API v1 is running"},
    )
    details: Dict[str, Any] = Field(
        default_factory=dict, description="Additional health details"
    )
    active_sessions: int | None = Field(
        default=None,
        description="Current number of registered client connections (None if unavailable)",
    )
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "version": "1.0.0",
                "timestamp": 1691668800.0,
                "message": "Waiter Realtime Relay API v1 is running",
                "details": {"api_version": "v1", "service": "waiter-relay"},
                "active_sessions": 3,
            }
        }
    )
