"""
Connection and Session Management Configuration
===============================================

WebSocket connection limits, heartbeat and upstream handshake settings
for the waiter relay.
"""

import os

# ==============================================================================
# WEBSOCKET CONNECTION MANAGEMENT
# ==============================================================================

MAX_WEBSOCKET_CONNECTIONS = int(os.getenv("MAX_WEBSOCKET_CONNECTIONS", "200"))
ENABLE_CONNECTION_LIMITS = (
    os.getenv("ENABLE_CONNECTION_LIMITS", "true").lower() == "true"
)

# Liveness sweep period; a silent client is evicted within two periods
HEARTBEAT_INTERVAL_SECONDS = float(os.getenv("HEARTBEAT_INTERVAL_SECONDS", "30"))

# ==============================================================================
# UPSTREAM SESSION
# ==============================================================================

# Socket open plus session.created must complete within this bound
UPSTREAM_HANDSHAKE_TIMEOUT_SECONDS = float(
    os.getenv("UPSTREAM_HANDSHAKE_TIMEOUT_SECONDS", "10")
)
