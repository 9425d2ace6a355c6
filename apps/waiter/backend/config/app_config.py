"""
Application Configuration Objects
=================================

Structured configuration objects using dataclasses for the waiter relay.
Provides type-safe access to configuration with validation and easy serialization.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .app_settings import (
    ALLOWED_ORIGINS,
    ENVIRONMENT,
    RESTAURANT_API_TIMEOUT_SECONDS,
    RESTAURANT_DIRECTORY_BACKEND,
    RESTAURANT_SEED_FILE,
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


@dataclass
class ConnectionConfig:
    """Configuration for WebSocket connection management."""

    max_connections: int = MAX_WEBSOCKET_CONNECTIONS
    enable_limits: bool = ENABLE_CONNECTION_LIMITS
    heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_connections": self.max_connections,
            "enable_limits": self.enable_limits,
            "heartbeat_interval": self.heartbeat_interval,
        }


@dataclass
class UpstreamConfig:
    """Configuration for the upstream realtime voice AI."""

    api_key: str = OPENAI_API_KEY
    url: str = OPENAI_REALTIME_URL
    model: str = OPENAI_REALTIME_MODEL
    handshake_timeout: float = UPSTREAM_HANDSHAKE_TIMEOUT_SECONDS

    def to_dict(self) -> Dict[str, Any]:
        # Never serialize the credential itself
        return {
            "api_key_configured": bool(self.api_key),
            "url": self.url,
            "model": self.model,
            "handshake_timeout": self.handshake_timeout,
        }


@dataclass
class DirectoryConfig:
    """Configuration for the restaurant directory."""

    backend: str = RESTAURANT_DIRECTORY_BACKEND
    seed_file: str = RESTAURANT_SEED_FILE
    api_base_url: str = API_BASE_URL
    timeout_seconds: float = RESTAURANT_API_TIMEOUT_SECONDS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "seed_file": self.seed_file,
            "api_base_url": self.api_base_url,
            "timeout_seconds": self.timeout_seconds,
        }


@dataclass
class AppConfig:
    """Complete application configuration."""

    environment: str = ENVIRONMENT
    connections: ConnectionConfig = field(default_factory=ConnectionConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    directory: DirectoryConfig = field(default_factory=DirectoryConfig)
    allowed_origins: List[str] = field(default_factory=lambda: ALLOWED_ORIGINS.copy())

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for serialization."""
        return {
            "environment": self.environment,
            "connections": self.connections.to_dict(),
            "upstream": self.upstream.to_dict(),
            "directory": self.directory.to_dict(),
            "allowed_origins": self.allowed_origins,
        }

    def validate(self) -> Dict[str, Any]:
        """Validate configuration and return validation results."""
        issues = []
        warnings = []

        if self.connections.max_connections < 1:
            issues.append("Max connections must be at least 1")
        elif self.connections.max_connections > 1000:
            warnings.append(
                f"Max connections ({self.connections.max_connections}) is very high"
            )

        if self.connections.heartbeat_interval <= 0:
            issues.append("Heartbeat interval must be positive")

        if self.upstream.handshake_timeout <= 0:
            issues.append("Upstream handshake timeout must be positive")

        if not self.upstream.api_key:
            warnings.append("Upstream API key is not configured")

        if self.directory.backend not in ("memory", "http"):
            issues.append(f"Unknown restaurant directory backend: {self.directory.backend}")
        elif self.directory.backend == "http" and not self.directory.api_base_url:
            issues.append("HTTP restaurant directory requires API_BASE_URL")

        if not self.connections.enable_limits:
            warnings.append("Connection limits are disabled")

        return {
            "valid": len(issues) == 0,
            "issues": issues,
            "warnings": warnings,
            "config_summary": {
                "environment": self.environment,
                "max_connections": self.connections.max_connections,
                "heartbeat_interval": self.connections.heartbeat_interval,
                "directory_backend": self.directory.backend,
                "upstream_model": self.upstream.model,
            },
        }
