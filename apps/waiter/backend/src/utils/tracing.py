"""
Shared tracing utilities for OpenTelemetry instrumentation.

Provides common helper functions for span attributes and structured logging
without overriding OpenTelemetry Resource settings. Set `service.name` via the
TracerProvider Resource and pass `kind=SpanKind.*` when starting spans.
"""

from typing import Any, Dict, Optional

from opentelemetry.trace import Span, Status, StatusCode

from utils.ml_logging import get_logger

# Default logger for fallback usage
_default_logger = get_logger(__name__)

# Logical service names used in logs/attributes
SERVICE_NAMES = {
    "realtime_ws": "waiter-realtime-websocket",
    "dashboard_ws": "waiter-dashboard-websocket",
    "relay": "waiter-relay-session",
    "tools": "waiter-tools",
    "openai_realtime": "openai-realtime",
    "restaurant_api": "restaurant-api",
}


def create_span_attrs(
    component: str = "unknown",
    service: str = "unknown",
    **kwargs,
) -> Dict[str, Any]:
    """Create generic span attributes with common fields. None values are dropped."""
    attrs = {
        "component": component,
        "service": SERVICE_NAMES.get(service, service),
        "service.version": "1.0.0",
    }
    attrs.update({k: v for k, v in kwargs.items() if v is not None})
    return attrs


def create_service_dependency_attrs(
    source_service: str,
    target_service: str,
    session_id: Optional[str] = None,
    *,
    ws: bool | None = None,
    **kwargs,
) -> Dict[str, Any]:
    """Create attributes for CLIENT spans that represent dependencies.

    - peer.service: logical target
    - net.peer.name: target name
    - network.protocol.name: "websocket" for WS edges when ws=True
    """
    target_name = SERVICE_NAMES.get(target_service, target_service)

    attrs: Dict[str, Any] = {
        "component": source_service,
        "peer.service": target_name,
        "net.peer.name": target_name,
    }
    if ws:
        attrs["network.protocol.name"] = "websocket"
    if session_id is not None:
        attrs["session.id"] = session_id

    attrs.update({k: v for k, v in kwargs.items() if v is not None})
    return attrs


def mark_span_error(span: Span, error: BaseException) -> None:
    """Record ``error`` on ``span`` and set an ERROR status, if the span records."""
    if span is None or not span.is_recording():
        return
    span.record_exception(error)
    span.set_status(Status(StatusCode.ERROR, str(error)))


def log_with_context(
    logger,
    level: str,
    message: str,
    operation: Optional[str] = None,
    **kwargs,
) -> None:
    """Structured logging with consistent context.

    Filters None values to keep logs clean.
    """
    extra = {"operation_name": operation}
    extra.update({k: v for k, v in kwargs.items() if v is not None})

    try:
        getattr(logger, level)(message, extra=extra)
    except AttributeError:
        _default_logger.warning(
            f"Invalid log level '{level}' for message: {message}", extra=extra
        )
