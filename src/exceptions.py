"""
Relay error taxonomy.

Each class maps to one client-visible policy:

- ``ConfigError``: session cannot be configured (restaurant missing, AI waiter
  disabled, directory lookup failed). Reported to the client, session returns
  to ``CONNECTED``.
- ``UpstreamConnectError``: upstream credential missing, socket failure or
  handshake timeout. Reported to the client, session returns to ``CONNECTED``.
- ``UpstreamRuntimeError``: error event emitted by the upstream mid-session.
  Reported to the client, session stays ``ACTIVE``.
- ``ProtocolError``: malformed client frame. Logged only.
- ``ToolResolutionMiss``: tool-call item name has no exact menu match.
  Logged only; the tool call is still acknowledged upstream.
"""

from typing import Optional


class WaiterRelayError(Exception):
    """Base class for every error raised inside the relay core."""


class ConfigError(WaiterRelayError):
    pass


class UpstreamConnectError(WaiterRelayError):
    pass


class UpstreamRuntimeError(WaiterRelayError):
    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class ProtocolError(WaiterRelayError):
    pass


class ToolResolutionMiss(WaiterRelayError):
    def __init__(self, item_name: str):
        super().__init__(f"No exact menu match for {item_name!r}")
        self.item_name = item_name


class ConnectionLimitError(WaiterRelayError):
    pass


class RestaurantDirectoryError(WaiterRelayError):
    pass
