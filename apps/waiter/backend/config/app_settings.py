"""
Application Settings
===================

Main configuration module that consolidates all settings from specialized
configuration modules for easy access throughout the application.
"""

import os
from typing import List

from .connection_config import *
from .infrastructure import *

# ==============================================================================
# ENVIRONMENT
# ==============================================================================

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
DEBUG_MODE = os.getenv("DEBUG", "false").lower() == "true"
PORT = int(os.getenv("PORT", "8010"))

# Swagger/ReDoc are only served outside production unless forced on
ENABLE_DOCS = (
    os.getenv("ENABLE_DOCS", "auto").lower() == "true"
    or (
        os.getenv("ENABLE_DOCS", "auto").lower() == "auto"
        and ENVIRONMENT not in ("production", "prod")
    )
)

ALLOWED_ORIGINS: List[str] = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "*").split(",")
    if origin.strip()
]

# ==============================================================================
# RESTAURANT DIRECTORY
# ==============================================================================

# memory: seeded from RESTAURANT_SEED_FILE; http: restaurant CRUD API at API_BASE_URL
RESTAURANT_DIRECTORY_BACKEND = os.getenv("RESTAURANT_DIRECTORY_BACKEND", "memory").lower()
RESTAURANT_SEED_FILE = os.getenv("RESTAURANT_SEED_FILE", "")
RESTAURANT_API_TIMEOUT_SECONDS = float(os.getenv("RESTAURANT_API_TIMEOUT_SECONDS", "5"))

# ==============================================================================
# AGENT
# ==============================================================================

# Empty uses the bundled agent_store/waiter_agent.yaml
WAITER_AGENT_CONFIG = os.getenv("WAITER_AGENT_CONFIG", "")

# ==============================================================================
# VALIDATION FUNCTIONS
# ==============================================================================


def validate_app_settings():
    """
    Validate current application settings and return validation results.

    Returns:
        Dict containing validation status, issues, warnings, and settings count
    """
    issues = []
    warnings = []

    if MAX_WEBSOCKET_CONNECTIONS < 1:
        issues.append("MAX_WEBSOCKET_CONNECTIONS must be at least 1")
    elif MAX_WEBSOCKET_CONNECTIONS > 1000:
        warnings.append(
            f"MAX_WEBSOCKET_CONNECTIONS ({MAX_WEBSOCKET_CONNECTIONS}) is very high"
        )

    if HEARTBEAT_INTERVAL_SECONDS <= 0:
        issues.append("HEARTBEAT_INTERVAL_SECONDS must be positive")

    if UPSTREAM_HANDSHAKE_TIMEOUT_SECONDS <= 0:
        issues.append("UPSTREAM_HANDSHAKE_TIMEOUT_SECONDS must be positive")

    if not OPENAI_API_KEY:
        warnings.append("OPENAI_API_KEY is not set; start_session will fail")

    if RESTAURANT_DIRECTORY_BACKEND not in ("memory", "http"):
        issues.append(
            f"RESTAURANT_DIRECTORY_BACKEND must be 'memory' or 'http' "
            f"(got {RESTAURANT_DIRECTORY_BACKEND!r})"
        )
    elif RESTAURANT_DIRECTORY_BACKEND == "memory" and not RESTAURANT_SEED_FILE:
        warnings.append("RESTAURANT_SEED_FILE is not set; directory starts empty")

    return {
        "valid": len(issues) == 0,
        "issues": issues,
        "warnings": warnings,
        "settings_count": len(
            [name for name in globals() if name.isupper() and not name.startswith("_")]
        ),
    }
