from enum import Enum


# Span attribute keys for OpenTelemetry spans and log correlation
class SpanAttr(str, Enum):
    CORRELATION_ID = "correlation.id"
    SESSION_ID = "session.id"
    RESTAURANT_ID = "restaurant.id"
    CUSTOMER_SESSION_ID = "customer.session.id"
    OPERATION_NAME = "operation.name"
    SERVICE_NAME = "service.name"
    SERVICE_VERSION = "service.version"
    ERROR_TYPE = "error.type"
    ERROR_MESSAGE = "error.message"

    # Relay specific attributes
    RELAY_STATE = "relay.state"
    RELAY_COMMAND = "relay.command"
    TOOL_NAME = "tool.name"
    TOOL_CALL_ID = "tool.call_id"
    TOOL_SUCCESS = "tool.success"

    # WebSocket specific attributes
    WS_ENDPOINT = "ws.endpoint"
    WS_ROLE = "ws.role"
    WS_CLOSE_CODE = "ws.close_code"
