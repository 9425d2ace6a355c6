"""
Dashboard WebSocket Endpoint
============================

``/ws`` connections for restaurant dashboards: kitchen staff (``role=chef``)
receive ``new-question`` alerts, customer screens (``role=customer``) receive
``order-status`` updates. Connections are registered without a handler and
only answer application-level pings.
"""

from __future__ import annotations

import json
import secrets
import time
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState
from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from apps.waiter.backend.api.v1.endpoints.realtime import receive_client_frame
from apps.waiter.backend.src.utils.tracing import create_span_attrs, log_with_context
from apps.waiter.backend.src.ws_helpers import client_events
from src.enums.monitoring import SpanAttr
from src.enums.realtime import ConnectionRole
from src.exceptions import ConnectionLimitError
from src.pools.connection_registry import ClientConnection, ConnectionMeta
from utils.ml_logging import get_logger

logger = get_logger("api.v1.endpoints.dashboard")
tracer = trace.get_tracer(__name__)

ws_router = APIRouter()


@ws_router.websocket("/ws")
async def dashboard_endpoint(
    websocket: WebSocket,
    restaurantId: Optional[str] = Query(None),
    role: str = Query("customer"),
    customerSessionId: Optional[str] = Query(None),
) -> None:
    """
    Register a staff or customer dashboard for fan-out events.

    Args:
        websocket: Dashboard client connection.
        restaurantId: Restaurant whose events the dashboard receives (required).
        role: ``customer`` or ``chef``.
        customerSessionId: Narrows customer dashboards to one customer session.
    """
    await websocket.accept()

    if not restaurantId:
        logger.warning("Dashboard connection rejected: missing restaurantId")
        await websocket.close(code=1008, reason="Missing restaurantId")
        return

    conn_role = ConnectionRole.from_string(role)
    if conn_role is ConnectionRole.UNKNOWN:
        logger.warning(f"Dashboard connection rejected: invalid role {role!r}")
        await websocket.close(code=1008, reason="Invalid role")
        return

    state = websocket.app.state
    session_id = (
        f"dashboard-{restaurantId}-{conn_role.value}-"
        f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"
    )
    connection = ClientConnection(
        websocket,
        ConnectionMeta(
            session_id=session_id,
            restaurant_id=restaurantId,
            role=conn_role.value,
            customer_session_id=customerSessionId,
            client_type="dashboard",
        ),
    )

    try:
        with tracer.start_as_current_span(
            "api.v1.dashboard.connect",
            kind=SpanKind.SERVER,
            attributes=create_span_attrs(
                component="dashboard",
                service="dashboard_ws",
                **{
                    "api.version": "v1",
                    SpanAttr.SESSION_ID.value: session_id,
                    SpanAttr.RESTAURANT_ID.value: restaurantId,
                    SpanAttr.WS_ROLE.value: conn_role.value,
                    SpanAttr.WS_ENDPOINT.value: "/ws",
                    "network.protocol.name": "websocket",
                },
            ),
        ) as connect_span:
            try:
                await state.registry.register(connection)
            except ConnectionLimitError as e:
                connect_span.set_status(Status(StatusCode.ERROR, str(e)))
                await connection.close(code=1013, reason="Server at capacity")
                return
            connect_span.set_status(Status(StatusCode.OK))

        log_with_context(
            logger,
            "info",
            "Dashboard client connected",
            operation="dashboard_connect",
            session_id=session_id,
            restaurant_id=restaurantId,
            role=conn_role.value,
            customer_session_id=customerSessionId,
        )
        await _process_dashboard_messages(websocket, connection)

    except WebSocketDisconnect as e:
        log_with_context(
            logger,
            "info" if e.code in (1000, 1001) else "warning",
            "Dashboard client disconnected",
            operation="dashboard_disconnect",
            session_id=session_id,
            disconnect_code=e.code,
        )
    except Exception as e:
        log_with_context(
            logger,
            "error",
            "Dashboard client error",
            operation="dashboard_error",
            session_id=session_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await state.registry.deregister(connection)
        await connection.close()


async def _process_dashboard_messages(
    websocket: WebSocket, connection: ClientConnection
) -> None:
    while (
        not connection.closed
        and websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    ):
        raw = await receive_client_frame(websocket)
        connection.mark_alive()
        try:
            message = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring non-JSON dashboard frame", extra={"session_id": connection.session_id})
            continue

        if isinstance(message, dict) and message.get("type") == "ping":
            await connection.send_json(client_events.pong())
        else:
            logger.debug(
                "Ignoring dashboard frame",
                extra={"session_id": connection.session_id},
            )
