"""
Enums package for the waiter relay.

This package contains the enumerations shared by the relay core for
consistent type safety and value validation.
"""

from .monitoring import SpanAttr
from .realtime import ClientCommandKind, ConnectionRole, RelayState, UpstreamEventKind

__all__ = [
    "SpanAttr",
    "ClientCommandKind",
    "ConnectionRole",
    "RelayState",
    "UpstreamEventKind",
]
