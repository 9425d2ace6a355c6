"""Waiter realtime relay core.

Shared building blocks for the restaurant AI waiter: the connection registry,
the liveness monitor, the upstream realtime voice client and prompt rendering.
"""

__version__ = "1.0.0"
