"""
WebSocket Connection Registry
=============================

Registry of live client connections for the waiter relay.

Features:
- Thread-safe registry with a single async lock serializing every mutation
- Indexes by session identity, by (restaurant, role) and by
  (restaurant, role, customer session) for direct addressing and fan-out
- Empty index entries are removed so the indexes never accumulate dead keys
- Per-connection send lock so concurrent writers never interleave frames
- Liveness flag per connection, driven by the liveness monitor
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Literal, Optional, Set, Tuple, Union

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

from src.exceptions import ConnectionLimitError
from utils.ml_logging import get_logger

logger = get_logger(__name__)

ClientType = Literal["realtime", "dashboard"]

RoleKey = Tuple[str, str]
CustomerKey = Tuple[str, str, str]


@dataclass
class ConnectionMeta:
    """Routing metadata for one client connection."""

    session_id: str
    restaurant_id: str
    role: str = "customer"
    customer_session_id: Optional[str] = None
    table_id: Optional[str] = None
    client_type: ClientType = "realtime"
    created_at: float = field(default_factory=time.time)


class ClientConnection:
    """
    One client socket plus its routing metadata and liveness flag.

    ``handler`` is the object owning the connection's lifecycle (a relay
    session for ``/ws/realtime`` clients, ``None`` for dashboards). When the
    liveness monitor evicts the connection, ``terminate()`` delegates to
    ``handler.stop()`` so that the handler tears down anything it owns.
    """

    def __init__(
        self,
        websocket: WebSocket,
        meta: ConnectionMeta,
        handler: Optional[Any] = None,
    ):
        self.ws = websocket
        self.meta = meta
        self.handler = handler
        self.is_alive = True
        self._send_lock = asyncio.Lock()
        self._closed = False

    @property
    def session_id(self) -> str:
        return self.meta.session_id

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def connected(self) -> bool:
        return (
            not self._closed
            and self.ws.client_state == WebSocketState.CONNECTED
            and self.ws.application_state == WebSocketState.CONNECTED
        )

    def mark_alive(self) -> None:
        self.is_alive = True

    async def send_json(self, payload: Dict[str, Any]) -> bool:
        """Send one JSON frame. Returns False when the socket is gone."""
        if self._closed:
            return False

        async with self._send_lock:
            if not self.connected:
                logger.debug(
                    "WebSocket no longer connected; dropping frame",
                    extra={"session_id": self.meta.session_id},
                )
                return False
            try:
                await self.ws.send_text(json.dumps(payload))
                return True
            except Exception as e:
                level = logger.error
                message = str(e) if e else ""
                if isinstance(e, RuntimeError) and "close message" in message.lower():
                    level = logger.info
                level(
                    "WebSocket send failed: %s",
                    message,
                    extra={"session_id": self.meta.session_id},
                )
                return False

    async def ping(self) -> bool:
        """Clear the liveness flag and send a heartbeat the client must answer."""
        self.is_alive = False
        return await self.send_json({"type": "ping", "ts": int(time.time() * 1000)})

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the socket once; later calls are no-ops."""
        if self._closed:
            return

        async with self._send_lock:
            if self._closed:
                return
            self._closed = True
            try:
                if (
                    self.ws.client_state == WebSocketState.CONNECTED
                    and self.ws.application_state == WebSocketState.CONNECTED
                ):
                    await self.ws.close(code=code, reason=reason)
            except Exception as e:
                logger.debug(
                    f"Error closing WebSocket: {e}",
                    extra={"session_id": self.meta.session_id},
                )

    async def terminate(self, reason: str = "heartbeat_timeout") -> None:
        """Force-close the connection, tearing down its handler first."""
        if self.handler is not None and callable(getattr(self.handler, "stop", None)):
            try:
                await self.handler.stop(reason=reason)
            except Exception as e:
                logger.error(
                    f"Error stopping handler: {e}",
                    extra={"session_id": self.meta.session_id},
                )
        await self.close(code=1001, reason=reason.replace("_", " "))


class ConnectionRegistry:
    """
    Registry of live client connections.

    Simple API:
    - register() - Add a connection to every applicable index (idempotent)
    - deregister() - Remove a connection from every index (idempotent)
    - lookup() - Lazy iterator over connections for a restaurant/role
    - broadcast() - Send to every lookup match
    - snapshot() - All registered connections, used by the liveness sweep
    - stats() - Connection statistics
    """

    def __init__(
        self,
        max_connections: int = 200,
        enable_connection_limits: bool = True,
    ):
        self._lock = asyncio.Lock()
        self._conns: Dict[str, ClientConnection] = {}

        # Indexes for fan-out
        self._by_role: Dict[RoleKey, Set[str]] = {}
        self._by_customer: Dict[CustomerKey, Set[str]] = {}

        self.max_connections = max_connections
        self.enable_limits = enable_connection_limits
        self._rejected_count = 0

        logger.info(
            f"ConnectionRegistry initialized: max_connections={max_connections}, "
            f"limits_enabled={enable_connection_limits}"
        )

    @staticmethod
    def _index_keys(meta: ConnectionMeta) -> Tuple[RoleKey, Optional[CustomerKey]]:
        role_key = (meta.restaurant_id, meta.role)
        customer_key = (
            (meta.restaurant_id, meta.role, meta.customer_session_id)
            if meta.customer_session_id
            else None
        )
        return role_key, customer_key

    async def register(self, connection: ClientConnection) -> bool:
        """
        Insert a connection into the registry and all its index keys.

        Returns:
            bool: True if inserted, False if the session was already present.

        Raises:
            ConnectionLimitError: If connection limits are enabled and the
                registry is full.
        """
        meta = connection.meta
        async with self._lock:
            if meta.session_id in self._conns:
                return False

            if self.enable_limits and len(self._conns) >= self.max_connections:
                self._rejected_count += 1
                logger.warning(
                    f"Connection rejected: limit={self.max_connections}, "
                    f"total_rejected={self._rejected_count}",
                    extra={"session_id": meta.session_id},
                )
                raise ConnectionLimitError(
                    f"Connection limit exceeded: {len(self._conns)}/{self.max_connections}"
                )

            self._conns[meta.session_id] = connection
            role_key, customer_key = self._index_keys(meta)
            self._by_role.setdefault(role_key, set()).add(meta.session_id)
            if customer_key:
                self._by_customer.setdefault(customer_key, set()).add(meta.session_id)
            total = len(self._conns)

        logger.info(
            f"WebSocket registered: {meta.session_id} ({meta.client_type}/{meta.role}) "
            f"[{total}/{self.max_connections if self.enable_limits else 'unlimited'}]",
            extra={"session_id": meta.session_id, "restaurant_id": meta.restaurant_id},
        )
        return True

    async def deregister(self, target: Union[ClientConnection, str]) -> bool:
        """
        Remove a connection from every index.

        Returns:
            bool: True for the call that removed the entry, False otherwise.
        """
        session_id = target if isinstance(target, str) else target.session_id
        async with self._lock:
            conn = self._conns.pop(session_id, None)
            if not conn:
                return False

            role_key, customer_key = self._index_keys(conn.meta)
            self._discard(self._by_role, role_key, session_id)
            if customer_key:
                self._discard(self._by_customer, customer_key, session_id)
            remaining = len(self._conns)

        logger.info(
            f"WebSocket deregistered: {session_id} (remaining={remaining})",
            extra={"session_id": session_id},
        )
        return True

    @staticmethod
    def _discard(index: Dict[Any, Set[str]], key: Any, session_id: str) -> None:
        members = index.get(key)
        if members is None:
            return
        members.discard(session_id)
        if not members:
            del index[key]

    async def lookup(
        self,
        restaurant_id: str,
        role: str,
        customer_session_id: Optional[str] = None,
    ) -> Iterator[ClientConnection]:
        """
        Lazy iterator over connections matching restaurant and role, optionally
        narrowed to one customer session. Empty when nothing matches.
        """
        async with self._lock:
            if customer_session_id:
                ids = list(
                    self._by_customer.get((restaurant_id, role, customer_session_id), ())
                )
            else:
                ids = list(self._by_role.get((restaurant_id, role), ()))

        # Entries deregistered after the snapshot are skipped
        return (self._conns[i] for i in ids if i in self._conns)

    async def get(self, session_id: str) -> Optional[ClientConnection]:
        async with self._lock:
            return self._conns.get(session_id)

    async def snapshot(self) -> List[ClientConnection]:
        async with self._lock:
            return list(self._conns.values())

    async def count(self) -> int:
        async with self._lock:
            return len(self._conns)

    async def broadcast(
        self,
        restaurant_id: str,
        role: str,
        payload: Dict[str, Any],
        customer_session_id: Optional[str] = None,
        client_type: Optional[ClientType] = None,
    ) -> int:
        """
        Send to all connections for a restaurant/role, optionally narrowed to one
        client type. Returns delivered count.
        """
        targets = [
            conn
            for conn in await self.lookup(restaurant_id, role, customer_session_id)
            if client_type is None or conn.meta.client_type == client_type
        ]
        if not targets:
            return 0

        results = await asyncio.gather(
            *(conn.send_json(payload) for conn in targets), return_exceptions=True
        )
        sent = 0
        for conn, result in zip(targets, results):
            if result is True:
                sent += 1
            elif isinstance(result, Exception):
                logger.error(
                    f"Broadcast failed: {result}",
                    extra={"session_id": conn.session_id},
                )
        return sent

    async def stats(self) -> Dict[str, Any]:
        async with self._lock:
            by_type: Dict[str, int] = {}
            for conn in self._conns.values():
                by_type[conn.meta.client_type] = by_type.get(conn.meta.client_type, 0) + 1
            return {
                "connections": len(self._conns),
                "max_connections": self.max_connections if self.enable_limits else None,
                "utilization_percent": round(
                    len(self._conns) / self.max_connections * 100, 1
                )
                if self.enable_limits and self.max_connections
                else None,
                "rejected_count": self._rejected_count,
                "limits_enabled": self.enable_limits,
                "by_client_type": by_type,
                "by_role": {
                    f"{restaurant}:{role}": len(ids)
                    for (restaurant, role), ids in self._by_role.items()
                },
            }

    async def stop(self) -> None:
        """Terminate every connection and clear all indexes."""
        connections = await self.snapshot()
        await asyncio.gather(
            *(conn.terminate(reason="shutdown") for conn in connections), return_exceptions=True
        )

        async with self._lock:
            self._conns.clear()
            self._by_role.clear()
            self._by_customer.clear()
