"""
Tests for the upstream realtime session client.

The upstream socket is replaced by a scripted fake injected through the
client's ``connect`` parameter.
"""

import asyncio
import json

import pytest

from src.aoai.realtime_client import RealtimeUpstreamClient, ToolCall
from src.exceptions import UpstreamConnectError, UpstreamRuntimeError

SESSION = {"modalities": ["text", "audio"], "instructions": "Be brief."}


def make_client(handlers, connector, **kwargs):
    kwargs.setdefault("api_key", "sk-test")
    kwargs.setdefault("handshake_timeout", 1.0)
    return RealtimeUpstreamClient(handlers, connect=connector, session_id="s-1", **kwargs)


class TestHandshake:
    @pytest.mark.asyncio
    async def test_connect_sends_session_update_and_waits_for_created(
        self, upstream_handlers, connector, upstream_socket
    ):
        client = make_client(upstream_handlers, connector, model="gpt-test")
        await client.connect(SESSION)

        url, kwargs = connector.calls[0]
        assert url.endswith("?model=gpt-test")
        assert kwargs["additional_headers"]["Authorization"] == "Bearer sk-test"
        assert kwargs["additional_headers"]["OpenAI-Beta"] == "realtime=v1"

        update = upstream_socket.sent[0]
        assert update["type"] == "session.update"
        assert update["session"] == SESSION
        assert update["event_id"]

        assert client.is_ready
        upstream_handlers.on_ready.assert_awaited_once()
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_falls_back_to_extra_headers(self, upstream_handlers, upstream_socket):
        calls = []

        async def legacy_connect(url, **kwargs):
            calls.append(kwargs)
            if "additional_headers" in kwargs:
                raise TypeError("unexpected keyword argument 'additional_headers'")
            return upstream_socket

        client = make_client(upstream_handlers, legacy_connect)
        await client.connect(SESSION)

        assert "extra_headers" in calls[-1]
        assert client.is_ready
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_missing_credential_fails_before_connecting(self, upstream_handlers, connector):
        client = make_client(upstream_handlers, connector, api_key="")
        with pytest.raises(UpstreamConnectError, match="not configured"):
            await client.connect(SESSION)
        assert connector.calls == []

    @pytest.mark.asyncio
    async def test_socket_failure_is_wrapped(self, upstream_handlers, connector):
        connector.error = OSError("connection refused")
        client = make_client(upstream_handlers, connector)
        with pytest.raises(UpstreamConnectError, match="Failed to connect to upstream"):
            await client.connect(SESSION)
        assert not client.is_connected

    @pytest.mark.asyncio
    async def test_handshake_timeout_closes_socket(
        self, upstream_handlers, connector, upstream_socket
    ):
        upstream_socket.auto_session_created = False
        client = make_client(upstream_handlers, connector, handshake_timeout=0.05)

        with pytest.raises(UpstreamConnectError, match="timed out"):
            await client.connect(SESSION)

        assert upstream_socket.closed
        assert not client.is_connected
        upstream_handlers.on_closed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close_before_created_fails_connect(
        self, upstream_handlers, connector, upstream_socket
    ):
        upstream_socket.auto_session_created = False
        client = make_client(upstream_handlers, connector)

        task = asyncio.create_task(client.connect(SESSION))
        await asyncio.sleep(0.01)
        upstream_socket.drop(code=4000, reason="bad auth")

        with pytest.raises(UpstreamConnectError):
            await task
        upstream_handlers.on_closed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_audio_is_not_sent_before_session_created(
        self, upstream_handlers, connector, upstream_socket, waiter
    ):
        upstream_socket.auto_session_created = False
        client = make_client(upstream_handlers, connector)

        task = asyncio.create_task(client.connect(SESSION))
        await waiter(lambda: upstream_socket.sent_types() == ["session.update"])

        assert await client.send_audio("AAAA") is False
        assert await client.commit_audio() is False
        assert upstream_socket.sent_types() == ["session.update"]

        upstream_socket.push({"type": "session.created", "session": {"id": "sess_1"}})
        await task

        assert await client.send_audio("AAAA") is True
        assert upstream_socket.sent[-1] == {
            "type": "input_audio_buffer.append",
            "audio": "AAAA",
            "event_id": upstream_socket.sent[-1]["event_id"],
        }
        await client.disconnect()


class TestCommands:
    @pytest.mark.asyncio
    async def test_commit_requests_a_response(self, upstream_handlers, connector, upstream_socket):
        client = make_client(upstream_handlers, connector)
        await client.connect(SESSION)

        assert await client.commit_audio() is True
        assert upstream_socket.sent_types()[-2:] == [
            "input_audio_buffer.commit",
            "response.create",
        ]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_empty_audio_is_dropped(self, upstream_handlers, connector, upstream_socket):
        client = make_client(upstream_handlers, connector)
        await client.connect(SESSION)

        assert await client.send_audio("") is False
        assert upstream_socket.sent_types() == ["session.update"]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_text_and_cancel(self, upstream_handlers, connector, upstream_socket):
        client = make_client(upstream_handlers, connector)
        await client.connect(SESSION)

        await client.send_text("Two burgers please")
        await client.cancel_response()
        await client.clear_audio()

        item = upstream_socket.sent[1]["item"]
        assert item["type"] == "message"
        assert item["role"] == "user"
        assert item["content"] == [{"type": "input_text", "text": "Two burgers please"}]
        assert upstream_socket.sent_types()[1:] == [
            "conversation.item.create",
            "response.create",
            "response.cancel",
            "input_audio_buffer.clear",
        ]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_tool_result_echoes_call_id_then_resumes(
        self, upstream_handlers, connector, upstream_socket
    ):
        client = make_client(upstream_handlers, connector)
        await client.connect(SESSION)

        assert await client.send_tool_result("call_42", {"success": True, "message": "ok"})

        result, resume = upstream_socket.sent[-2:]
        assert result["type"] == "conversation.item.create"
        assert result["item"]["type"] == "function_call_output"
        assert result["item"]["call_id"] == "call_42"
        assert json.loads(result["item"]["output"]) == {"success": True, "message": "ok"}
        assert resume["type"] == "response.create"
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_commands_after_disconnect_are_dropped(
        self, upstream_handlers, connector, upstream_socket
    ):
        client = make_client(upstream_handlers, connector)
        await client.connect(SESSION)
        await client.disconnect()

        assert await client.send_audio("AAAA") is False
        assert upstream_socket.sent_types() == ["session.update"]


class TestServerEvents:
    @pytest.mark.asyncio
    async def test_events_are_translated_in_order(
        self, upstream_handlers, connector, upstream_socket, waiter
    ):
        client = make_client(upstream_handlers, connector)
        await client.connect(SESSION)

        upstream_socket.push({"type": "input_audio_buffer.speech_started"})
        upstream_socket.push(
            {
                "type": "conversation.item.input_audio_transcription.completed",
                "transcript": "Two burgers",
            }
        )
        upstream_socket.push({"type": "response.audio.delta", "delta": "UklGRg=="})
        upstream_socket.push(
            {"type": "response.audio_transcript.done", "transcript": "Coming right up."}
        )
        upstream_socket.push({"type": "rate_limits.updated", "rate_limits": []})
        upstream_socket.push({"type": "some.future.event"})
        upstream_socket.push("not json")
        upstream_socket.push({"type": "response.done", "response": {"status": "completed"}})

        await waiter(lambda: upstream_handlers.on_response_done.await_count == 1)

        upstream_handlers.on_audio.assert_awaited_once_with("UklGRg==")
        assert [c.args for c in upstream_handlers.on_transcript.await_args_list] == [
            ("Two burgers", "user", True),
            ("Coming right up.", "assistant", True),
        ]
        upstream_handlers.on_response_done.assert_awaited_once_with({"status": "completed"})
        upstream_handlers.on_error.assert_not_awaited()
        assert client.is_ready
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_tool_call_event(self, upstream_handlers, connector, upstream_socket, waiter):
        client = make_client(upstream_handlers, connector)
        await client.connect(SESSION)

        upstream_socket.push(
            {
                "type": "response.function_call_arguments.done",
                "name": "add_to_cart",
                "call_id": "call_1",
                "arguments": '{"item_name": "Burger"}',
            }
        )
        await waiter(lambda: upstream_handlers.on_tool_call.await_count == 1)

        upstream_handlers.on_tool_call.assert_awaited_once_with(
            ToolCall(name="add_to_cart", call_id="call_1", arguments='{"item_name": "Burger"}')
        )
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_error_event(self, upstream_handlers, connector, upstream_socket, waiter):
        client = make_client(upstream_handlers, connector)
        await client.connect(SESSION)

        upstream_socket.push(
            {"type": "error", "error": {"message": "Rate limited", "code": "rate_limit"}}
        )
        await waiter(lambda: upstream_handlers.on_error.await_count == 1)

        error = upstream_handlers.on_error.await_args.args[0]
        assert isinstance(error, UpstreamRuntimeError)
        assert error.message == "Rate limited"
        assert error.code == "rate_limit"
        assert client.is_ready
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_the_loop(
        self, upstream_handlers, connector, upstream_socket, waiter
    ):
        upstream_handlers.on_audio.side_effect = RuntimeError("boom")
        client = make_client(upstream_handlers, connector)
        await client.connect(SESSION)

        upstream_socket.push({"type": "response.audio.delta", "delta": "AAAA"})
        upstream_socket.push({"type": "response.done", "response": {}})
        await waiter(lambda: upstream_handlers.on_response_done.await_count == 1)

        assert client.is_connected
        await client.disconnect()


class TestClose:
    @pytest.mark.asyncio
    async def test_server_close_fires_on_closed_once(
        self, upstream_handlers, connector, upstream_socket, waiter
    ):
        client = make_client(upstream_handlers, connector)
        await client.connect(SESSION)

        upstream_socket.drop(code=1011, reason="internal")
        await waiter(lambda: upstream_handlers.on_closed.await_count == 1)

        upstream_handlers.on_closed.assert_awaited_once_with(1011, "internal")
        assert not client.is_connected
        await client.disconnect()
        upstream_handlers.on_closed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent_and_silent(
        self, upstream_handlers, connector, upstream_socket
    ):
        client = make_client(upstream_handlers, connector)
        await client.connect(SESSION)

        await client.disconnect()
        await client.disconnect()

        assert upstream_socket.closed
        assert not client.is_connected
        upstream_handlers.on_closed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disconnect_before_connect(self, upstream_handlers, connector):
        client = make_client(upstream_handlers, connector)
        await client.disconnect()
        assert not client.is_connected
