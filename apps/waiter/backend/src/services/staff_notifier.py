"""
Staff notifier
==============

Fan-out helpers over the connection registry for dashboard clients:
chef new-question alerts and customer order-status updates.

Only ``/ws`` dashboard connections receive these events; voice relay sockets
share the customer index but speak a different protocol.
"""

from typing import Any, Dict, Optional

from apps.waiter.backend.src.ws_helpers import client_events
from src.enums.realtime import ConnectionRole
from src.pools.connection_registry import ConnectionRegistry
from utils.ml_logging import get_logger

logger = get_logger(__name__)

DASHBOARD_CLIENT = "dashboard"


class StaffNotifier:
    def __init__(self, registry: ConnectionRegistry):
        self._registry = registry

    async def broadcast(
        self,
        restaurant_id: str,
        role: str,
        payload: Dict[str, Any],
        customer_session_id: Optional[str] = None,
    ) -> int:
        """Send ``payload`` to every ``role`` dashboard of a restaurant."""
        delivered = await self._registry.broadcast(
            restaurant_id,
            role,
            payload,
            customer_session_id=customer_session_id,
            client_type=DASHBOARD_CLIENT,
        )
        logger.info(
            f"Broadcast {payload.get('type')} to {role}: delivered={delivered}",
            extra={"restaurant_id": restaurant_id},
        )
        return delivered

    async def notify_chef_new_question(
        self, restaurant_id: str, data: Dict[str, Any]
    ) -> int:
        """Alert every kitchen dashboard of the restaurant about a customer question."""
        return await self.broadcast(
            restaurant_id, ConnectionRole.CHEF.value, client_events.new_question(data)
        )

    async def notify_order_status_change(
        self,
        restaurant_id: str,
        customer_session_id: str,
        data: Dict[str, Any],
    ) -> int:
        """Push an order status change to the customer's dashboard connections."""
        return await self.broadcast(
            restaurant_id,
            ConnectionRole.CUSTOMER.value,
            client_events.order_status(data),
            customer_session_id=customer_session_id,
        )
