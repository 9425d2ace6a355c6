"""
Shared doubles for the waiter relay tests.

- MockWebSocket: records every JSON frame the server sends to a client
- FakeUpstreamSocket: scripted upstream realtime socket; answers the
  ``session.update`` handshake with ``session.created`` unless told not to
- FakeConnector: stands in for ``websockets.connect``
"""

import asyncio
import json
import os
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

os.environ.setdefault("DISABLE_CLOUD_TELEMETRY", "true")

import pytest
from fastapi.websockets import WebSocketState

from apps.waiter.backend.src.agents.waiter_agent import load_waiter_agent
from apps.waiter.backend.src.services.restaurant_directory import (
    InMemoryRestaurantDirectory,
)
from apps.waiter.backend.src.services.staff_notifier import StaffNotifier
from apps.waiter.backend.src.sessions.session_bootstrap import SessionBootstrap
from src.aoai.realtime_client import RealtimeUpstreamClient, UpstreamEventHandlers
from src.pools.connection_registry import (
    ClientConnection,
    ConnectionMeta,
    ConnectionRegistry,
)
from src.prompts.prompt_manager import PromptManager

SEED_FILE = (
    Path(__file__).resolve().parent.parent
    / "apps"
    / "waiter"
    / "backend"
    / "src"
    / "services"
    / "seed"
    / "restaurants.yaml"
)

_CLOSED = object()


class MockWebSocket:
    """Mock client WebSocket for testing."""

    def __init__(self):
        self.sent_messages: List[Dict[str, Any]] = []
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self.close_calls = 0

    async def send_text(self, message: str):
        self.sent_messages.append(json.loads(message))

    async def close(self, code: int = 1000, reason: Optional[str] = None):
        self.close_calls += 1
        self.close_code = code
        self.close_reason = reason
        self.mark_closing()

    def mark_closing(self):
        """Mark the websocket as gone without a close handshake."""
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED

    def events(self, event_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent_messages if m.get("type") == event_type]

    @property
    def event_types(self) -> List[str]:
        return [m.get("type") for m in self.sent_messages]


class FakeUpstreamSocket:
    """Scripted upstream realtime socket."""

    def __init__(self, auto_session_created: bool = True):
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self.auto_session_created = auto_session_created
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str):
        if self.closed:
            raise ConnectionError("socket closed")
        event = json.loads(data)
        self.sent.append(event)
        if event["type"] == "session.update" and self.auto_session_created:
            self.push({"type": "session.created", "session": {"id": "sess_fake"}})

    def push(self, event: Any):
        """Queue one server frame; dicts are JSON-encoded."""
        self._incoming.put_nowait(json.dumps(event) if isinstance(event, dict) else event)

    def drop(self, code: int = 1011, reason: str = "server error"):
        """Simulate the server closing the connection."""
        self.close_code = code
        self.close_reason = reason
        self._incoming.put_nowait(_CLOSED)

    async def close(self):
        self.closed = True
        self._incoming.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def sent_types(self) -> List[str]:
        return [e["type"] for e in self.sent]


class FakeConnector:
    """Stands in for ``websockets.connect``."""

    def __init__(
        self,
        socket: Optional[FakeUpstreamSocket] = None,
        error: Optional[Exception] = None,
    ):
        self.socket = socket or FakeUpstreamSocket()
        self.error = error
        self.calls: List[tuple] = []

    async def __call__(self, url: str, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.socket


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def waiter():
    """Async polling helper."""
    return wait_until


@pytest.fixture
def make_connection():
    """Build a ``ClientConnection`` around a fresh ``MockWebSocket``."""
    counter = {"n": 0}

    def _make(
        restaurant_id: str = "R1",
        role: str = "customer",
        customer_session_id: Optional[str] = None,
        client_type: str = "realtime",
        session_id: Optional[str] = None,
    ) -> ClientConnection:
        counter["n"] += 1
        meta = ConnectionMeta(
            session_id=session_id or f"conn-{counter['n']}",
            restaurant_id=restaurant_id,
            role=role,
            customer_session_id=customer_session_id,
            client_type=client_type,
        )
        return ClientConnection(MockWebSocket(), meta)

    return _make


@pytest.fixture
def seed_directory() -> InMemoryRestaurantDirectory:
    return InMemoryRestaurantDirectory.from_yaml(SEED_FILE)


@pytest.fixture
def upstream_handlers() -> UpstreamEventHandlers:
    return UpstreamEventHandlers(
        on_ready=AsyncMock(),
        on_audio=AsyncMock(),
        on_transcript=AsyncMock(),
        on_response_done=AsyncMock(),
        on_tool_call=AsyncMock(),
        on_error=AsyncMock(),
        on_closed=AsyncMock(),
    )


@pytest.fixture
def relay_env(seed_directory, make_connection):
    """
    Everything a ``RelaySession`` depends on, wired to the seed directory and a
    fake upstream. ``env.sockets`` collects one upstream socket per started
    session; ``env.api_key`` may be cleared to simulate a missing credential.
    """
    from apps.waiter.backend.api.v1.handlers.relay_session import (
        RelaySession,
        new_session_id,
    )

    env = SimpleNamespace(
        registry=ConnectionRegistry(max_connections=10),
        bootstrap=SessionBootstrap(seed_directory),
        prompt_manager=PromptManager(),
        agent_config=load_waiter_agent(),
        api_key="sk-test",
        handshake_timeout=1.0,
        auto_session_created=True,
        clients=[],
        sockets=[],
    )
    env.staff_notifier = StaffNotifier(env.registry)

    def upstream_factory(handlers: UpstreamEventHandlers, session_id: str):
        socket = FakeUpstreamSocket(auto_session_created=env.auto_session_created)
        env.sockets.append(socket)
        client = RealtimeUpstreamClient(
            handlers,
            api_key=env.api_key,
            handshake_timeout=env.handshake_timeout,
            connect=FakeConnector(socket),
            session_id=session_id,
        )
        env.clients.append(client)
        return client

    env.upstream_factory = upstream_factory

    def make_relay(restaurant_id: str = "R1", customer_session_id: str = "cs-1", table_id=None):
        connection = make_connection(
            restaurant_id=restaurant_id,
            customer_session_id=customer_session_id,
            session_id=new_session_id(restaurant_id, customer_session_id),
        )
        connection.meta.table_id = table_id
        relay = RelaySession(
            connection,
            bootstrap=env.bootstrap,
            registry=env.registry,
            upstream_factory=env.upstream_factory,
            staff_notifier=env.staff_notifier,
            prompt_manager=env.prompt_manager,
            agent_config=env.agent_config,
        )
        return relay, connection.ws

    env.make_relay = make_relay
    return env


@pytest.fixture
def upstream_socket() -> FakeUpstreamSocket:
    return FakeUpstreamSocket()


@pytest.fixture
def connector(upstream_socket) -> FakeConnector:
    return FakeConnector(upstream_socket)
