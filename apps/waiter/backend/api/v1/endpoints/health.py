"""
Health Endpoints
===============

Liveness endpoint for the v1 API.
"""

import time

from fastapi import APIRouter, Request

from apps.waiter.backend.api.v1.schemas.health import HealthResponse
from utils.ml_logging import get_logger

logger = get_logger("v1.health")

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Basic Health Check",
    description="Returns 200 while the server is running. Used by load balancers for liveness checks.",
    tags=["Health"],
)
async def health_check(request: Request) -> HealthResponse:
    """Basic liveness endpoint.

    Best-effort augments the response with the registered connection count and
    liveness monitor state; failing to gather these must not fail liveness.
    """
    active_sessions: int | None = None
    details = {"api_version": "v1", "service": "waiter-relay"}

    try:
        registry = getattr(request.app.state, "registry", None)
        if registry is not None:
            active_sessions = await registry.count()
        monitor = getattr(request.app.state, "liveness_monitor", None)
        if monitor is not None:
            details["liveness_monitor"] = "running" if monitor.running else "stopped"
    except Exception as e:
        logger.debug(f"Health details unavailable: {e}")
        active_sessions = None

    return HealthResponse(
        status="healthy",
        timestamp=time.time(),
        message="Waiter Realtime Relay API v1 is running",
        details=details,
        active_sessions=active_sessions,
    )
