"""
Infrastructure Configuration
============================

Upstream voice AI and collaborator service endpoints.
These are typically secrets and should be loaded from environment variables.
"""

import os

# ==============================================================================
# UPSTREAM REALTIME VOICE AI
# ==============================================================================

OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
OPENAI_REALTIME_URL: str = os.getenv(
    "OPENAI_REALTIME_URL", "wss://api.openai.com/v1/realtime"
)
OPENAI_REALTIME_MODEL: str = os.getenv(
    "OPENAI_REALTIME_MODEL", "gpt-4o-realtime-preview-2024-12-17"
)

# ==============================================================================
# RESTAURANT API
# ==============================================================================

# Base URL of the restaurant CRUD API, used by the HTTP restaurant directory
API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:3000").rstrip("/")
