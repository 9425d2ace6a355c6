"""
Realtime API Schemas
===================

Pydantic schemas for the ``/ws/realtime`` relay protocol and the realtime
status endpoint.

Inbound client frames are JSON objects with a ``type`` discriminator. Each
known type is validated against its command model; unknown types are surfaced
as ``ClientCommandKind.UNKNOWN`` so the relay can log and ignore them.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.enums.realtime import ClientCommandKind
from src.exceptions import ProtocolError


class ClientCommand(BaseModel):
    """Base of every inbound relay command. Unknown extra fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., description="Command discriminator")


class StartSessionCommand(ClientCommand):
    language: Optional[str] = Field(
        default=None,
        description="Conversation language code; 'en' when omitted",
        json_schema_extra={"example": "en"},
    )
    restaurantName: Optional[str] = Field(
        default=None,
        description="Display name used only when the directory record has none",
    )


class AudioCommand(ClientCommand):
    audio: str = Field(..., description="Base64 PCM16 audio chunk")


class TextCommand(ClientCommand):
    text: str = Field(..., min_length=1, description="Typed customer message")


COMMAND_MODELS: Dict[ClientCommandKind, Type[ClientCommand]] = {
    ClientCommandKind.START_SESSION: StartSessionCommand,
    ClientCommandKind.AUDIO: AudioCommand,
    ClientCommandKind.TEXT: TextCommand,
}


def parse_client_command(raw: Any) -> Tuple[ClientCommandKind, ClientCommand]:
    """
    Decode and validate one inbound client frame.

    Returns:
        The command kind and its validated model. Unknown types come back as
        ``ClientCommandKind.UNKNOWN`` with a base ``ClientCommand``.

    Raises:
        ProtocolError: Malformed JSON, a non-object frame, or a missing or
            invalid field.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Malformed JSON frame: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("Frame is not a JSON object")
    if not isinstance(data.get("type"), str):
        raise ProtocolError("Frame has no string 'type'")

    kind = ClientCommandKind.from_string(data["type"])
    model = COMMAND_MODELS.get(kind, ClientCommand)
    try:
        return kind, model.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid {data['type']} command: {e.errors()}") from e


class RealtimeStatusResponse(BaseModel):
    """
    Response schema for realtime service status endpoint.

    Reports relay availability, upstream configuration and registry statistics.
    """

    status: str = Field(
        ...,
        description="Current service status",
        json_schema_extra={
            "example": "available",
            "enum": ["available", "degraded", "unavailable"],
        },
    )
    websocket_endpoints: Dict[str, str] = Field(
        ...,
        description="Available WebSocket endpoints",
        json_schema_extra={
            "example": {"realtime": "/ws/realtime", "dashboard": "/ws"}
        },
    )
    upstream: Dict[str, Any] = Field(
        default_factory=dict,
        description="Upstream realtime voice AI settings (credential redacted)",
    )
    connections: Dict[str, Any] = Field(
        default_factory=dict,
        description="Connection registry statistics",
        json_schema_extra={
            "example": {"connections": 3, "max_connections": 200, "rejected_count": 0}
        },
    )
    heartbeat_interval_seconds: float = Field(..., description="Liveness sweep period")
    version: str = Field(default="v1", description="API version")
