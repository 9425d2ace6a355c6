"""
realtime_client.py

Async client for one upstream realtime voice session (OpenAI Realtime API
protocol) over ``websockets``.

The client owns exactly one upstream socket. It exposes a small command
surface (audio append/commit/clear, response cancel, text message, tool
result) and translates upstream server events into awaited callbacks on an
``UpstreamEventHandlers`` bundle. A single receive task drains the socket, so
callbacks run in receipt order.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets

from src.enums.realtime import UpstreamEventKind
from src.exceptions import UpstreamConnectError, UpstreamRuntimeError
from utils.ml_logging import get_logger

logger = get_logger(__name__)

DEFAULT_REALTIME_URL = "wss://api.openai.com/v1/realtime"
DEFAULT_REALTIME_MODEL = "gpt-4o-realtime-preview-2024-12-17"


@dataclass(frozen=True)
class ToolCall:
    """A completed function invocation emitted by the upstream model."""

    name: str
    call_id: str
    arguments: str


async def _noop(*_args: Any, **_kwargs: Any) -> None:
    return None


@dataclass
class UpstreamEventHandlers:
    """Callbacks invoked by the receive task, one per relay-level event."""

    on_ready: Callable[[], Awaitable[None]] = _noop
    on_audio: Callable[[str], Awaitable[None]] = _noop
    on_transcript: Callable[[str, str, bool], Awaitable[None]] = _noop
    on_response_done: Callable[[Any], Awaitable[None]] = _noop
    on_tool_call: Callable[[ToolCall], Awaitable[None]] = _noop
    on_error: Callable[[UpstreamRuntimeError], Awaitable[None]] = _noop
    on_closed: Callable[[Optional[int], str], Awaitable[None]] = _noop


class RealtimeUpstreamClient:
    """
    One upstream realtime voice connection.

    Usage:
        client = RealtimeUpstreamClient(handlers, api_key=key)
        await client.connect({"modalities": ["text", "audio"], ...})
        await client.send_audio(b64_chunk)
        await client.commit_audio()
        await client.disconnect()

    :param handlers: Event callbacks.
    :param api_key: Upstream bearer credential. Missing key fails ``connect``.
    :param url: Realtime websocket endpoint.
    :param model: Model query parameter.
    :param handshake_timeout: Seconds allowed for socket open plus ``session.created``.
    :param connect: Socket factory, ``websockets.connect`` by default.
    :param session_id: Relay session identity, used for log correlation.
    """

    def __init__(
        self,
        handlers: UpstreamEventHandlers,
        *,
        api_key: Optional[str],
        url: str = DEFAULT_REALTIME_URL,
        model: str = DEFAULT_REALTIME_MODEL,
        handshake_timeout: float = 10.0,
        connect: Callable[..., Any] = websockets.connect,
        session_id: Optional[str] = None,
    ) -> None:
        self._handlers = handlers
        self._api_key = api_key
        self._url = url
        self._model = model
        self._handshake_timeout = handshake_timeout
        self._connect = connect
        self._session_id = session_id

        self._ws: Optional[Any] = None
        self._recv_task: Optional[asyncio.Task] = None
        self._ready = asyncio.Event()
        self._is_ready = False
        self._closing = False
        self._send_lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #
    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._closing

    @property
    def is_ready(self) -> bool:
        return self._is_ready and self.is_connected

    @property
    def endpoint(self) -> str:
        return f"{self._url}?model={self._model}"

    def _log_extra(self) -> Dict[str, Any]:
        return {"session_id": self._session_id or "-"}

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    async def connect(self, session_config: Dict[str, Any]) -> None:
        """
        Open the upstream socket, send the ``session.update`` handshake and wait
        for ``session.created``.

        :param session_config: The ``session`` object of the handshake.
        :raises UpstreamConnectError: Missing credential, socket failure or
            handshake timeout. Any partially opened socket is closed.
        """
        if not self._api_key:
            raise UpstreamConnectError("OpenAI Realtime API is not configured")
        if self._ws is not None:
            logger.warning(
                "Upstream already connected; ignoring connect()", extra=self._log_extra()
            )
            return

        try:
            await asyncio.wait_for(
                self._open_and_handshake(session_config),
                timeout=self._handshake_timeout,
            )
        except asyncio.TimeoutError:
            await self.disconnect()
            raise UpstreamConnectError(
                f"Upstream handshake timed out after {self._handshake_timeout:.1f}s"
            )
        except UpstreamConnectError:
            await self.disconnect()
            raise
        except Exception as e:
            await self.disconnect()
            raise UpstreamConnectError(f"Failed to connect to upstream: {e}") from e

        logger.info("Upstream session ready", extra=self._log_extra())

    async def _open_and_handshake(self, session_config: Dict[str, Any]) -> None:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        try:
            self._ws = await self._connect(self.endpoint, additional_headers=headers)
        except TypeError:
            self._ws = await self._connect(self.endpoint, extra_headers=headers)
        logger.info(f"Connected to upstream {self._url}", extra=self._log_extra())

        sent = await self._send(
            {"type": "session.update", "session": session_config}, require_ready=False
        )
        if not sent:
            raise UpstreamConnectError("Failed to send session.update")
        self._recv_task = asyncio.create_task(
            self._receive_loop(), name=f"upstream-recv-{self._session_id or 'anon'}"
        )

        await self._ready.wait()
        if not self._is_ready:
            raise UpstreamConnectError("Upstream closed before session was created")

    async def disconnect(self) -> None:
        """Close the upstream connection. Safe to call any number of times."""
        if self._closing and self._ws is None and self._recv_task is None:
            return
        self._closing = True

        task = self._recv_task
        self._recv_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Receive task ended with error: {e}", extra=self._log_extra())

        ws = self._ws
        self._ws = None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing upstream socket: {e}", extra=self._log_extra())
            logger.info("Upstream connection closed", extra=self._log_extra())

        # Unblock a connect() still waiting for session.created
        self._ready.set()

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #
    async def send_audio(self, audio_b64: str) -> bool:
        """Forward one base64 audio chunk. No-op before ready."""
        if not audio_b64:
            return False
        return await self._send({"type": "input_audio_buffer.append", "audio": audio_b64})

    async def commit_audio(self) -> bool:
        """Close the current input turn and ask for a reply."""
        committed = await self._send({"type": "input_audio_buffer.commit"})
        if not committed:
            return False
        return await self._send({"type": "response.create"})

    async def clear_audio(self) -> bool:
        return await self._send({"type": "input_audio_buffer.clear"})

    async def cancel_response(self) -> bool:
        """Abandon the in-progress reply. Harmless when nothing is in progress."""
        return await self._send({"type": "response.cancel"})

    async def send_text(self, text: str) -> bool:
        sent = await self._send(
            {
                "type": "conversation.item.create",
                "item": {
                    "type": "message",
                    "role": "user",
                    "content": [{"type": "input_text", "text": text}],
                },
            }
        )
        if not sent:
            return False
        return await self._send({"type": "response.create"})

    async def send_tool_result(self, call_id: str, output: Dict[str, Any]) -> bool:
        """Acknowledge a tool call with its output, then resume generation."""
        sent = await self._send(
            {
                "type": "conversation.item.create",
                "item": {
                    "type": "function_call_output",
                    "call_id": call_id,
                    "output": json.dumps(output),
                },
            }
        )
        if not sent:
            return False
        return await self._send({"type": "response.create"})

    async def _send(self, event: Dict[str, Any], *, require_ready: bool = True) -> bool:
        if self._ws is None or self._closing:
            logger.warning(
                f"Upstream not connected; dropping {event.get('type')}",
                extra=self._log_extra(),
            )
            return False
        if require_ready and not self._is_ready:
            logger.warning(
                f"Upstream not ready; dropping {event.get('type')}",
                extra=self._log_extra(),
            )
            return False

        payload = {**event, "event_id": str(uuid.uuid4())}
        async with self._send_lock:
            try:
                await self._ws.send(json.dumps(payload))
                return True
            except Exception as e:
                logger.warning(
                    f"Upstream send failed for {event.get('type')}: {e}",
                    extra=self._log_extra(),
                )
                return False

    # ------------------------------------------------------------------ #
    # Receive side
    # ------------------------------------------------------------------ #
    async def _receive_loop(self) -> None:
        close_code: Optional[int] = None
        close_reason = ""
        try:
            async for message in self._ws:
                await self._dispatch(message)
        except asyncio.CancelledError:
            raise
        except websockets.ConnectionClosed as e:
            rcvd = getattr(e, "rcvd", None)
            close_code = getattr(rcvd, "code", None)
            close_reason = getattr(rcvd, "reason", "") or ""
            logger.warning(
                f"Upstream connection dropped: {e}", extra=self._log_extra()
            )
        except Exception as e:
            logger.error(f"Upstream receive loop failed: {e}", extra=self._log_extra())

        ws = self._ws
        if close_code is None and ws is not None:
            close_code = getattr(ws, "close_code", None)
            close_reason = getattr(ws, "close_reason", "") or ""

        if not self._is_ready:
            # connect() is still waiting; it reports the failure itself
            self._ready.set()
            return

        if not self._closing:
            logger.info(
                f"Upstream closed: code={close_code} reason={close_reason!r}",
                extra=self._log_extra(),
            )
            self._closing = True
            try:
                await self._handlers.on_closed(close_code, close_reason)
            except Exception as e:
                logger.error(f"on_closed handler failed: {e}", extra=self._log_extra())

    async def _dispatch(self, raw: Any) -> None:
        try:
            event = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Unparseable upstream frame: {e}", extra=self._log_extra())
            return
        if not isinstance(event, dict):
            logger.warning("Upstream frame is not an object", extra=self._log_extra())
            return

        event_type = event.get("type", "")
        kind = UpstreamEventKind.from_string(event_type)
        try:
            if kind is UpstreamEventKind.SESSION_CREATED:
                upstream_id = (event.get("session") or {}).get("id", "")
                logger.info(f"Upstream session created: {upstream_id}", extra=self._log_extra())
                self._is_ready = True
                self._ready.set()
                await self._handlers.on_ready()

            elif kind is UpstreamEventKind.SESSION_UPDATED:
                logger.info("Upstream session configuration updated", extra=self._log_extra())

            elif kind in (UpstreamEventKind.SPEECH_STARTED, UpstreamEventKind.SPEECH_STOPPED):
                logger.debug(f"Upstream VAD: {event_type}", extra=self._log_extra())

            elif kind is UpstreamEventKind.INPUT_TRANSCRIPT_COMPLETED:
                await self._handlers.on_transcript(event.get("transcript") or "", "user", True)

            elif kind is UpstreamEventKind.AUDIO_DELTA:
                delta = event.get("delta")
                if delta:
                    await self._handlers.on_audio(delta)

            elif kind is UpstreamEventKind.AUDIO_TRANSCRIPT_DONE:
                await self._handlers.on_transcript(
                    event.get("transcript") or "", "assistant", True
                )

            elif kind is UpstreamEventKind.TOOL_CALL_ARGUMENTS_DONE:
                call = ToolCall(
                    name=event.get("name") or "",
                    call_id=event.get("call_id") or "",
                    arguments=event.get("arguments") or "{}",
                )
                logger.info(
                    f"Upstream tool call: {call.name} ({call.call_id})",
                    extra=self._log_extra(),
                )
                await self._handlers.on_tool_call(call)

            elif kind is UpstreamEventKind.RESPONSE_DONE:
                await self._handlers.on_response_done(event.get("response"))

            elif kind is UpstreamEventKind.ERROR:
                error = event.get("error") or {}
                message = error.get("message") or "Unknown error"
                logger.error(f"Upstream error: {message}", extra=self._log_extra())
                await self._handlers.on_error(
                    UpstreamRuntimeError(message, code=error.get("code"))
                )

            elif kind is UpstreamEventKind.RATE_LIMITS_UPDATED:
                pass

            else:
                logger.debug(f"Unhandled upstream event: {event_type}", extra=self._log_extra())

        except Exception as e:
            logger.error(
                f"Handler for upstream event {event_type} failed: {e}",
                extra=self._log_extra(),
            )
