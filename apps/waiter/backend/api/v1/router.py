"""
API V1 Router
=============

Main router for API v1 endpoints, plus the root-level WebSocket router.
"""

from fastapi import APIRouter

from .endpoints import dashboard, health, notifications, realtime

# Create v1 router
v1_router = APIRouter(prefix="/api/v1")

v1_router.include_router(health.router, tags=["health"])
v1_router.include_router(
    realtime.router, prefix="/realtime", tags=["Real-time Communication"]
)
v1_router.include_router(
    notifications.router, prefix="/notifications", tags=["Notifications"]
)

# WebSocket paths are served at the application root
ws_router = APIRouter()
ws_router.include_router(realtime.ws_router, tags=["WebSocket"])
ws_router.include_router(dashboard.ws_router, tags=["WebSocket"])
