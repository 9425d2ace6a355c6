"""
API Version 1
=============

V1 API for the waiter realtime relay:
- Health checks
- Realtime relay and dashboard WebSockets
- Relay status and order status notifications
"""

from .router import v1_router, ws_router

__all__ = ["v1_router", "ws_router"]
