"""
V1 Realtime Relay Endpoints
===========================

WebSocket endpoint pairing a browser client with an upstream realtime voice
session, plus the realtime status endpoint.

WebSocket Flow:
1. Accept connection and validate the ``restaurantId`` query parameter
2. Create the relay session and register its connection
3. Feed every client frame to the relay session in receipt order
4. Tear the relay session down on disconnect/error
"""

from __future__ import annotations

import time
from typing import Any, Optional

from fastapi import APIRouter, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState
from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from apps.waiter.backend.api.v1.handlers.relay_session import (
    RelaySession,
    new_session_id,
)
from apps.waiter.backend.api.v1.schemas.realtime import RealtimeStatusResponse
from apps.waiter.backend.src.utils.tracing import create_span_attrs, log_with_context
from src.enums.monitoring import SpanAttr
from src.exceptions import ConnectionLimitError
from src.pools.connection_registry import ClientConnection, ConnectionMeta
from utils.ml_logging import get_logger, set_span_correlation_attributes

logger = get_logger("api.v1.endpoints.realtime")
tracer = trace.get_tracer(__name__)

# Mounted under /api/v1/realtime
router = APIRouter()
# Mounted at the application root
ws_router = APIRouter()


@router.get(
    "/status",
    response_model=RealtimeStatusResponse,
    summary="Get Realtime Relay Status",
    description="Relay availability, upstream settings and connection registry statistics.",
    tags=["Realtime Status"],
)
async def get_realtime_status(request: Request) -> RealtimeStatusResponse:
    """
    Retrieve status of the realtime relay.

    Reports ``degraded`` when no upstream credential is configured, since every
    ``start_session`` would then fail.
    """
    state = request.app.state
    conn_stats = await state.registry.stats()
    upstream_cfg = state.config.upstream

    return RealtimeStatusResponse(
        status="available" if upstream_cfg.api_key else "degraded",
        websocket_endpoints={"realtime": "/ws/realtime", "dashboard": "/ws"},
        upstream=upstream_cfg.to_dict(),
        connections=conn_stats,
        heartbeat_interval_seconds=state.config.connections.heartbeat_interval,
        version="v1",
    )


@ws_router.websocket("/ws/realtime")
async def realtime_relay_endpoint(
    websocket: WebSocket,
    restaurantId: Optional[str] = Query(None),
    customerSessionId: Optional[str] = Query(None),
    tableId: Optional[str] = Query(None),
) -> None:
    """
    Relay one browser voice session to the upstream realtime voice AI.

    Args:
        websocket: Browser client connection.
        restaurantId: Restaurant the customer is ordering from (required).
        customerSessionId: Customer session identity; generated when omitted.
        tableId: Table the customer is seated at, if known.

    Note:
        A missing ``restaurantId`` closes the socket with 1008; a full registry
        closes it with 1013.
    """
    await websocket.accept()

    if not restaurantId:
        logger.warning("Realtime connection rejected: missing restaurantId")
        await websocket.close(code=1008, reason="Missing restaurantId")
        return

    state = websocket.app.state
    customer_session_id = customerSessionId or f"session-{int(time.time() * 1000)}"
    session_id = new_session_id(restaurantId, customer_session_id)

    connection = ClientConnection(
        websocket,
        ConnectionMeta(
            session_id=session_id,
            restaurant_id=restaurantId,
            role="customer",
            customer_session_id=customer_session_id,
            table_id=tableId,
            client_type="realtime",
        ),
    )
    relay = RelaySession(
        connection,
        bootstrap=state.session_bootstrap,
        registry=state.registry,
        upstream_factory=state.upstream_factory,
        staff_notifier=state.staff_notifier,
        prompt_manager=state.prompt_manager,
        agent_config=state.agent_config,
    )

    try:
        with tracer.start_as_current_span(
            "api.v1.realtime.relay_connect",
            kind=SpanKind.SERVER,
            attributes=create_span_attrs(
                component="realtime_relay",
                service="realtime_ws",
                **{
                    "api.version": "v1",
                    SpanAttr.SESSION_ID.value: session_id,
                    SpanAttr.RESTAURANT_ID.value: restaurantId,
                    SpanAttr.CUSTOMER_SESSION_ID.value: customer_session_id,
                    SpanAttr.WS_ENDPOINT.value: "/ws/realtime",
                    "network.protocol.name": "websocket",
                },
            ),
        ) as connect_span:
            set_span_correlation_attributes(
                session_id=session_id,
                restaurant_id=restaurantId,
                operation_name="relay_connect",
            )
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
                "Realtime client connected",
                operation="relay_connect",
                session_id=session_id,
                restaurant_id=restaurantId,
                customer_session_id=customer_session_id,
                table_id=tableId,
            )

        await _process_relay_messages(websocket, relay)

    except WebSocketDisconnect as e:
        _log_relay_disconnect(e, session_id)
    except Exception as e:
        _log_relay_error(e, session_id)
        raise
    finally:
        await _cleanup_relay_session(relay)


async def receive_client_frame(websocket: WebSocket) -> Any:
    """
    Receive one text (or UTF-8 binary) frame.

    :raises WebSocketDisconnect: When the client goes away.
    """
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(
            code=message.get("code", 1000), reason=message.get("reason")
        )
    if message.get("text") is not None:
        return message["text"]
    data = message.get("bytes")
    return data.decode("utf-8", errors="replace") if data is not None else ""


async def _process_relay_messages(websocket: WebSocket, relay: RelaySession) -> None:
    """Feed client frames to the relay session until either side closes."""
    while (
        not relay.stopped
        and websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    ):
        raw = await receive_client_frame(websocket)
        await relay.handle_message(raw)


def _log_relay_disconnect(e: WebSocketDisconnect, session_id: Optional[str]) -> None:
    """Log relay client disconnection."""
    if e.code in (1000, 1001):
        log_with_context(
            logger,
            "info",
            "Realtime client disconnected normally",
            operation="relay_disconnect",
            session_id=session_id,
            disconnect_code=e.code,
        )
    else:
        log_with_context(
            logger,
            "warning",
            "Realtime client disconnected abnormally",
            operation="relay_disconnect",
            session_id=session_id,
            disconnect_code=e.code,
            reason=e.reason,
        )


def _log_relay_error(e: Exception, session_id: Optional[str]) -> None:
    log_with_context(
        logger,
        "error",
        "Realtime relay error",
        operation="relay_error",
        session_id=session_id,
        error=str(e),
        error_type=type(e).__name__,
    )


async def _cleanup_relay_session(relay: RelaySession) -> None:
    """Tear down the relay session; errors are logged, never re-raised."""
    with tracer.start_as_current_span(
        "api.v1.realtime.cleanup_relay",
        attributes={SpanAttr.SESSION_ID.value: relay.session_id},
    ) as span:
        try:
            await relay.stop(reason="client_disconnect")
            await relay.wait_for_start()
            span.set_status(Status(StatusCode.OK))
            log_with_context(
                logger,
                "info",
                "Relay session cleanup complete",
                operation="relay_cleanup",
                session_id=relay.session_id,
            )
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, f"Cleanup error: {e}"))
            logger.error(f"Error during relay cleanup: {e}")
