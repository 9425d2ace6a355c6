"""
Client event builders
=====================

One builder per outbound frame sent to realtime and dashboard clients.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, Literal

TranscriptRole = Literal["user", "assistant"]


def _now_ms() -> int:
    return int(time.time() * 1000)


def session_started(session_id: str) -> Dict[str, Any]:
    return {"type": "session_started", "sessionId": session_id}


def session_ended(reason: str = "") -> Dict[str, Any]:
    event: Dict[str, Any] = {"type": "session_ended"}
    if reason:
        event["reason"] = reason
    return event


def audio(delta: str) -> Dict[str, Any]:
    """Base64 PCM16 audio chunk from the AI voice."""
    return {"type": "audio", "audio": delta}


def transcript(text: str, role: TranscriptRole, is_final: bool = True) -> Dict[str, Any]:
    return {"type": "transcript", "transcript": text, "isFinal": is_final, "role": role}


def response_done(response: Any) -> Dict[str, Any]:
    return {"type": "response_done", "response": response}


def add_to_cart(item: Dict[str, Any]) -> Dict[str, Any]:
    """Cart mutation for the client; ``item`` is the full menu item plus quantity."""
    return {"type": "add_to_cart", "item": item}


def chef_called(question: str) -> Dict[str, Any]:
    return {"type": "chef_called", "question": question}


def error(message: str) -> Dict[str, Any]:
    return {"type": "error", "error": message}


def pong() -> Dict[str, Any]:
    return {"type": "pong", "ts": _now_ms()}


# Staff/customer dashboard events


def new_question(data: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "new-question", "data": data}


def order_status(data: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "order-status", "data": data}


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()
