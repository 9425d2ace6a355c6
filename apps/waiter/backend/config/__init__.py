"""
Configuration Package
====================

Centralized configuration management for the waiter relay.

Usage:
    from apps.waiter.backend.config import AppConfig, HEARTBEAT_INTERVAL_SECONDS

    config = AppConfig()
"""

from .app_config import AppConfig, ConnectionConfig, DirectoryConfig, UpstreamConfig
from .app_settings import (
    ALLOWED_ORIGINS,
    DEBUG_MODE,
    ENABLE_DOCS,
    ENVIRONMENT,
    PORT,
    RESTAURANT_API_TIMEOUT_SECONDS,
    RESTAURANT_DIRECTORY_BACKEND,
    RESTAURANT_SEED_FILE,
    WAITER_AGENT_CONFIG,
    validate_app_settings,
)
from .connection_config import (
    ENABLE_CONNECTION_LIMITS,
    HEARTBEAT_INTERVAL_SECONDS,
    MAX_WEBSOCKET_CONNECTIONS,
    UPSTREAM_HANDSHAKE_TIMEOUT_SECONDS,
)
from .infrastructure import (
    API_BASE_URL,
    OPENAI_API_KEY,
    OPENAI_REALTIME_MODEL,
    OPENAI_REALTIME_URL,
)

__all__ = [
    "AppConfig",
    "ConnectionConfig",
    "DirectoryConfig",
    "UpstreamConfig",
    "ALLOWED_ORIGINS",
    "DEBUG_MODE",
    "ENABLE_DOCS",
    "ENVIRONMENT",
    "PORT",
    "RESTAURANT_API_TIMEOUT_SECONDS",
    "RESTAURANT_DIRECTORY_BACKEND",
    "RESTAURANT_SEED_FILE",
    "WAITER_AGENT_CONFIG",
    "validate_app_settings",
    "ENABLE_CONNECTION_LIMITS",
    "HEARTBEAT_INTERVAL_SECONDS",
    "MAX_WEBSOCKET_CONNECTIONS",
    "UPSTREAM_HANDSHAKE_TIMEOUT_SECONDS",
    "API_BASE_URL",
    "OPENAI_API_KEY",
    "OPENAI_REALTIME_MODEL",
    "OPENAI_REALTIME_URL",
]
