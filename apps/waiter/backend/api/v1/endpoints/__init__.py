"""
API Endpoints Package
====================

Endpoints organized by domain.

Available endpoints:
- health: Health check
- realtime: Realtime relay WebSocket and relay status
- dashboard: Staff and customer dashboard WebSocket
- notifications: Order status push
"""

from . import dashboard, health, notifications, realtime

__all__ = ["dashboard", "health", "notifications", "realtime"]
