"""
Relay Session
=============

Per-client state machine pairing one ``/ws/realtime`` browser connection with
at most one upstream realtime voice session.

States: CONNECTED -> STARTING -> ACTIVE -> ENDING -> CLOSED.

- Client commands are parsed, validated and handled in receipt order under the
  session's command lock; tool-call resolution takes the same lock, so a tool
  result is acknowledged upstream before the next client command runs.
- ``start_session`` runs in its own task holding that lock, so the client
  drain loop keeps reading during the upstream handshake. ``ping`` is answered
  without the lock.
- ``stop()`` tears the session down from any state and is idempotent. It is
  called by the endpoint when the client leaves, by the upstream close
  callback, and by the liveness monitor through ``ClientConnection.terminate``.
- Failures are contained here; nothing propagates into the registry or other
  sessions.
"""

import asyncio
import secrets
import time
from typing import Any, Callable, Dict, Optional

from opentelemetry import trace
from opentelemetry.trace import SpanKind

from apps.waiter.backend.api.v1.schemas.realtime import (
    AudioCommand,
    ClientCommand,
    StartSessionCommand,
    TextCommand,
    parse_client_command,
)
from apps.waiter.backend.src.agents.tool_store.cart import SessionCart
from apps.waiter.backend.src.agents.tool_store.tool_registry import (
    available_tools,
    execute_tool_call,
)
from apps.waiter.backend.src.agents.tool_store.waiter_tools import ToolContext
from apps.waiter.backend.src.agents.waiter_agent import WaiterAgentConfig
from apps.waiter.backend.src.services.staff_notifier import StaffNotifier
from apps.waiter.backend.src.sessions.session_bootstrap import (
    SessionBootstrap,
    SessionConfiguration,
)
from apps.waiter.backend.src.utils.tracing import (
    create_service_dependency_attrs,
    log_with_context,
    mark_span_error,
)
from apps.waiter.backend.src.ws_helpers import client_events
from src.aoai.realtime_client import (
    RealtimeUpstreamClient,
    ToolCall,
    UpstreamEventHandlers,
)
from src.enums.monitoring import SpanAttr
from src.enums.realtime import ClientCommandKind, RelayState
from src.exceptions import (
    ConfigError,
    ProtocolError,
    UpstreamConnectError,
    UpstreamRuntimeError,
)
from src.pools.connection_registry import ClientConnection, ConnectionRegistry
from src.prompts.prompt_manager import PromptManager
from utils.ml_logging import get_logger

logger = get_logger("api.v1.handlers.relay_session")
tracer = trace.get_tracer(__name__)

UpstreamFactory = Callable[[UpstreamEventHandlers, str], RealtimeUpstreamClient]

# Client close code per teardown reason
_CLOSE_CODES: Dict[str, int] = {
    "end_session": 1000,
    "client_disconnect": 1000,
    "upstream_closed": 1011,
    "heartbeat_timeout": 1001,
    "shutdown": 1001,
}

_UPSTREAM_COMMANDS = (
    ClientCommandKind.AUDIO,
    ClientCommandKind.COMMIT_AUDIO,
    ClientCommandKind.CANCEL,
    ClientCommandKind.TEXT,
)


def new_session_id(restaurant_id: str, customer_session_id: str) -> str:
    """``realtime-{restaurant}-{customer session}-{epoch ms}-{6 hex}``."""
    return (
        f"realtime-{restaurant_id}-{customer_session_id}-"
        f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"
    )


class RelaySession:
    """
    Relay between one client connection and its upstream voice session.

    The session attaches itself as ``connection.handler`` so that eviction by
    the liveness monitor runs the full teardown.
    """

    def __init__(
        self,
        connection: ClientConnection,
        *,
        bootstrap: SessionBootstrap,
        registry: ConnectionRegistry,
        upstream_factory: UpstreamFactory,
        staff_notifier: StaffNotifier,
        prompt_manager: PromptManager,
        agent_config: WaiterAgentConfig,
    ):
        self.connection = connection
        self._bootstrap = bootstrap
        self._registry = registry
        self._upstream_factory = upstream_factory
        self._staff_notifier = staff_notifier
        self._prompt_manager = prompt_manager
        self._agent_config = agent_config

        self.state = RelayState.CONNECTED
        self.config: Optional[SessionConfiguration] = None
        self.upstream: Optional[RealtimeUpstreamClient] = None
        self.cart = SessionCart()

        self._command_lock = asyncio.Lock()
        self._stopped = False
        self._start_task: Optional[asyncio.Task] = None

        connection.handler = self

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #
    @property
    def session_id(self) -> str:
        return self.connection.session_id

    @property
    def restaurant_id(self) -> str:
        return self.connection.meta.restaurant_id

    @property
    def stopped(self) -> bool:
        return self._stopped

    def _log(self, level: str, message: str, operation: Optional[str] = None, **kwargs) -> None:
        log_with_context(
            logger,
            level,
            message,
            operation=operation,
            session_id=self.session_id,
            restaurant_id=self.restaurant_id,
            **kwargs,
        )

    async def _emit(self, event: Dict[str, Any]) -> bool:
        return await self.connection.send_json(event)

    # ------------------------------------------------------------------ #
    # Client side
    # ------------------------------------------------------------------ #
    async def handle_message(self, raw: Any) -> None:
        """Handle one inbound client frame. Never raises."""
        self.connection.mark_alive()

        if self._stopped:
            self._log("debug", "Frame received after teardown; ignored")
            return

        try:
            kind, command = parse_client_command(raw)
        except ProtocolError as e:
            self._log("warning", f"Ignoring client frame: {e}", operation="handle_message")
            return

        if kind is ClientCommandKind.PING:
            await self._emit(client_events.pong())
            return

        if kind is ClientCommandKind.START_SESSION:
            await self._schedule_start(command)  # type: ignore[arg-type]
            return

        await self._run_command(kind, command)

    async def _run_command(
        self,
        kind: ClientCommandKind,
        command: ClientCommand,
        locked: Optional[asyncio.Event] = None,
    ) -> None:
        try:
            async with self._command_lock:
                if locked is not None:
                    locked.set()
                await self._dispatch(kind, command)
        except Exception as e:
            self._log(
                "error",
                f"Error handling {kind} command: {e}",
                operation="handle_message",
                relay_state=str(self.state),
            )
        finally:
            if locked is not None:
                locked.set()

    async def _schedule_start(self, command: StartSessionCommand) -> None:
        """
        Start the session in a background task and return once that task owns
        the command lock; commands received afterwards queue behind it.
        """
        if self._start_task is not None and not self._start_task.done():
            self._log(
                "warning",
                "start_session ignored: start already in progress",
                operation="start_session",
            )
            return

        locked = asyncio.Event()
        self._start_task = asyncio.create_task(
            self._run_command(ClientCommandKind.START_SESSION, command, locked),
            name=f"relay-start-{self.session_id}",
        )
        await locked.wait()

    async def wait_for_start(self) -> None:
        """Block until an in-flight ``start_session`` has finished."""
        task = self._start_task
        if task is not None and task is not asyncio.current_task():
            await asyncio.wait({task})

    async def _dispatch(self, kind: ClientCommandKind, command: ClientCommand) -> None:
        if self._stopped:
            return

        if kind is ClientCommandKind.START_SESSION:
            await self._start_session(command)  # type: ignore[arg-type]

        elif kind in _UPSTREAM_COMMANDS:
            await self._forward_upstream(kind, command)

        elif kind is ClientCommandKind.PONG:
            # Liveness already recorded in handle_message
            pass

        elif kind is ClientCommandKind.END_SESSION:
            await self.stop(reason="end_session")

        else:
            self._log(
                "warning",
                f"Unknown client command type: {command.type!r}",
                operation="handle_message",
            )

    async def _forward_upstream(self, kind: ClientCommandKind, command: ClientCommand) -> None:
        upstream = self.upstream
        if upstream is None or self.state not in (RelayState.STARTING, RelayState.ACTIVE):
            level = "debug" if kind is ClientCommandKind.AUDIO else "warning"
            self._log(
                level,
                f"{kind} ignored: no upstream session (state={self.state})",
                operation="forward_upstream",
            )
            return

        if kind is ClientCommandKind.AUDIO:
            await upstream.send_audio(command.audio)  # type: ignore[union-attr]
        elif kind is ClientCommandKind.COMMIT_AUDIO:
            await upstream.commit_audio()
        elif kind is ClientCommandKind.CANCEL:
            await upstream.cancel_response()
        elif kind is ClientCommandKind.TEXT:
            await upstream.send_text(command.text)  # type: ignore[union-attr]

    async def _start_session(self, command: StartSessionCommand) -> None:
        if self.state is not RelayState.CONNECTED:
            self._log(
                "warning",
                f"start_session ignored in state {self.state}",
                operation="start_session",
            )
            return

        self.state = RelayState.STARTING
        meta = self.connection.meta

        with tracer.start_as_current_span(
            "relay.start_session",
            attributes={
                SpanAttr.SESSION_ID.value: self.session_id,
                SpanAttr.RESTAURANT_ID.value: self.restaurant_id,
                SpanAttr.RELAY_COMMAND.value: ClientCommandKind.START_SESSION.value,
            },
        ) as span:
            try:
                config = await self._bootstrap.resolve(
                    meta.restaurant_id,
                    language=command.language,
                    customer_session_id=meta.customer_session_id,
                    table_id=meta.table_id,
                    restaurant_name_hint=command.restaurantName,
                )
            except ConfigError as e:
                mark_span_error(span, e)
                await self._fail_start(str(e))
                return

            if self._stopped:
                return
            self.config = config

            upstream: Optional[RealtimeUpstreamClient] = None
            try:
                instructions = self._prompt_manager.create_waiter_instructions(
                    config, self._agent_config.prompt_template
                )
                session_update = self._agent_config.build_session_update(
                    instructions, available_tools
                )
                upstream = self._upstream_factory(self._upstream_handlers(), self.session_id)
                self.upstream = upstream
                with tracer.start_as_current_span(
                    "relay.upstream_connect",
                    kind=SpanKind.CLIENT,
                    attributes=create_service_dependency_attrs(
                        source_service="relay",
                        target_service="openai_realtime",
                        session_id=self.session_id,
                        ws=True,
                    ),
                ):
                    await upstream.connect(session_update)
            except Exception as e:
                mark_span_error(span, e)
                if upstream is not None:
                    await upstream.disconnect()
                    if self.upstream is upstream:
                        self.upstream = None
                if self._stopped:
                    return
                message = str(e) if isinstance(e, UpstreamConnectError) else "Failed to start session"
                self._log("error", f"Upstream connect failed: {e}", operation="start_session")
                await self._fail_start(message)
                return

            if self._stopped:
                # Torn down while the socket was still opening
                await upstream.disconnect()
                return

        self._log("info", "Relay session started", operation="start_session")

    async def _fail_start(self, message: str) -> None:
        """Report a failed start and return to CONNECTED so the client may retry."""
        self.config = None
        if self._stopped:
            return
        self.state = RelayState.CONNECTED
        self._log("warning", f"start_session failed: {message}", operation="start_session")
        await self._emit(client_events.error(message))

    # ------------------------------------------------------------------ #
    # Upstream side
    # ------------------------------------------------------------------ #
    def _upstream_handlers(self) -> UpstreamEventHandlers:
        return UpstreamEventHandlers(
            on_ready=self._on_upstream_ready,
            on_audio=self._on_upstream_audio,
            on_transcript=self._on_upstream_transcript,
            on_response_done=self._on_upstream_response_done,
            on_tool_call=self._on_upstream_tool_call,
            on_error=self._on_upstream_error,
            on_closed=self._on_upstream_closed,
        )

    async def _on_upstream_ready(self) -> None:
        if self._stopped or self.state is not RelayState.STARTING:
            return
        self.state = RelayState.ACTIVE
        await self._emit(client_events.session_started(self.session_id))

    async def _on_upstream_audio(self, delta: str) -> None:
        await self._emit(client_events.audio(delta))

    async def _on_upstream_transcript(self, text: str, role: str, is_final: bool) -> None:
        await self._emit(client_events.transcript(text, role, is_final))

    async def _on_upstream_response_done(self, response: Any) -> None:
        await self._emit(client_events.response_done(response))

    async def _on_upstream_error(self, error: UpstreamRuntimeError) -> None:
        await self._emit(client_events.error(error.message))

    async def _on_upstream_closed(self, code: Optional[int], reason: str) -> None:
        self._log(
            "warning",
            f"Upstream closed unexpectedly (code={code}, reason={reason!r})",
            operation="upstream_closed",
        )
        await self.stop(reason="upstream_closed")

    async def _on_upstream_tool_call(self, call: ToolCall) -> None:
        async with self._command_lock:
            upstream = self.upstream
            config = self.config
            if self._stopped or upstream is None or config is None:
                self._log(
                    "warning",
                    f"Tool call {call.name} ({call.call_id}) dropped: session not active",
                    operation="tool_call",
                )
                return

            ctx = ToolContext(
                session_id=self.session_id,
                config=config,
                cart=self.cart,
                emit=self._emit,
                notify_staff=self._staff_notifier.notify_chef_new_question,
            )
            outcome = await execute_tool_call(ctx, call.name, call.arguments)
            await upstream.send_tool_result(call.call_id, outcome.output)
            self._log(
                "info",
                f"Tool {call.name} acknowledged (success={outcome.success})",
                operation="tool_call",
                tool_call_id=call.call_id,
            )

    # ------------------------------------------------------------------ #
    # Teardown
    # ------------------------------------------------------------------ #
    async def stop(self, reason: str = "client_disconnect") -> None:
        """
        Tear the session down from any state. Later calls are no-ops.

        Args:
            reason: ``end_session``, ``client_disconnect``, ``upstream_closed``,
                ``heartbeat_timeout`` or ``shutdown``.
        """
        if self._stopped:
            return
        self._stopped = True
        self.state = RelayState.ENDING
        self._log("info", f"Stopping relay session ({reason})", operation="stop")

        try:
            if reason == "upstream_closed":
                await self._emit(client_events.error("Upstream connection closed"))
            if reason != "client_disconnect":
                await self._emit(client_events.session_ended(reason))

            upstream = self.upstream
            self.upstream = None
            if upstream is not None:
                try:
                    await upstream.disconnect()
                except Exception as e:
                    self._log("error", f"Upstream disconnect failed: {e}", operation="stop")

            await self._registry.deregister(self.connection)
            await self.connection.close(
                code=_CLOSE_CODES.get(reason, 1000), reason=reason.replace("_", " ")
            )
        finally:
            self.cart.clear()
            self.state = RelayState.CLOSED
