"""
Notification Endpoints
======================

Lets the order backend push order status changes to customer dashboards.
"""

from fastapi import APIRouter, Request

from apps.waiter.backend.api.v1.schemas.notifications import (
    NotificationDeliveryResponse,
    OrderStatusNotification,
)
from apps.waiter.backend.src.ws_helpers import client_events
from utils.ml_logging import get_logger

logger = get_logger("v1.notifications")

router = APIRouter()


@router.post(
    "/order-status",
    response_model=NotificationDeliveryResponse,
    summary="Push Order Status Change",
    description="Send an order-status event to every dashboard of the customer session.",
    tags=["Notifications"],
)
async def push_order_status(
    body: OrderStatusNotification, request: Request
) -> NotificationDeliveryResponse:
    data = {
        **body.details,
        "orderId": body.orderId,
        "status": body.status,
        "updatedAt": client_events.utc_timestamp(),
    }
    delivered = await request.app.state.staff_notifier.notify_order_status_change(
        body.restaurantId, body.customerSessionId, data
    )
    logger.info(
        f"Order status {body.status!r} pushed to {delivered} connection(s)",
        extra={"restaurant_id": body.restaurantId},
    )
    return NotificationDeliveryResponse(delivered=delivered)
