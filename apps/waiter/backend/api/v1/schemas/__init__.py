"""
Pydantic schemas for API request/response models.
"""

from .health import HealthResponse
from .notifications import NotificationDeliveryResponse, OrderStatusNotification
from .realtime import (
    AudioCommand,
    ClientCommand,
    RealtimeStatusResponse,
    StartSessionCommand,
    TextCommand,
    parse_client_command,
)

__all__ = [
    "HealthResponse",
    "NotificationDeliveryResponse",
    "OrderStatusNotification",
    "AudioCommand",
    "ClientCommand",
    "RealtimeStatusResponse",
    "StartSessionCommand",
    "TextCommand",
    "parse_client_command",
]
