"""
Notification API schemas.

Order backends push order status changes to customer dashboards through the
relay's connection registry.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class OrderStatusNotification(BaseModel):
    restaurantId: str = Field(..., min_length=1, description="Restaurant of the order")
    customerSessionId: str = Field(
        ..., min_length=1, description="Customer session whose dashboards are notified"
    )
    orderId: Optional[str] = Field(default=None, description="Order identifier")
    status: str = Field(
        ..., min_length=1, description="New order status", json_schema_extra={"example": "preparing"}
    )
    details: Dict[str, Any] = Field(
        default_factory=dict, description="Additional order fields forwarded as-is"
    )


class NotificationDeliveryResponse(BaseModel):
    delivered: int = Field(..., description="Number of connections that received the event")
