"""
Tests for the relay session state machine.

Covers the full client lifecycle against the seeded restaurant directory and a
scripted upstream: start, audio relay, tool calls, teardown paths and
malformed input.
"""

import asyncio
import json
from unittest.mock import patch

import pytest

from apps.waiter.backend.api.v1.handlers.relay_session import new_session_id
from apps.waiter.backend.src.agents.tool_store.tool_registry import function_mapping
from apps.waiter.backend.src.agents.tool_store.waiter_tools import ToolOutcome
from src.enums.realtime import RelayState
from src.pools.liveness_monitor import LivenessMonitor


def frame(**payload) -> str:
    return json.dumps(payload)


async def start_active_relay(relay_env, restaurant_id="R1", **kwargs):
    relay, ws = relay_env.make_relay(restaurant_id, **kwargs)
    await relay_env.registry.register(relay.connection)
    await relay.handle_message(frame(type="start_session", language="en"))
    await relay.wait_for_start()
    return relay, ws


def tool_call(name: str, call_id: str, **arguments) -> dict:
    return {
        "type": "response.function_call_arguments.done",
        "name": name,
        "call_id": call_id,
        "arguments": json.dumps(arguments),
    }


def test_session_id_format():
    session_id = new_session_id("R1", "cs-1")
    prefix, restaurant, customer, cs_suffix, millis, suffix = session_id.split("-")
    assert (prefix, restaurant, f"{customer}-{cs_suffix}") == ("realtime", "R1", "cs-1")
    assert millis.isdigit()
    assert len(suffix) == 6
    assert new_session_id("R1", "cs-1") != session_id


class TestStartSession:
    @pytest.mark.asyncio
    async def test_start_session_goes_active(self, relay_env):
        relay, ws = await start_active_relay(relay_env, table_id="T4")

        assert relay.state is RelayState.ACTIVE
        assert ws.events("session_started") == [
            {"type": "session_started", "sessionId": relay.session_id}
        ]

        socket = relay_env.sockets[0]
        update = socket.sent[0]
        assert update["type"] == "session.update"
        session = update["session"]
        assert [tool["name"] for tool in session["tools"]] == ["add_to_cart", "call_chef"]
        assert session["tool_choice"] == "auto"
        assert session["input_audio_format"] == "pcm16"
        assert session["turn_detection"]["type"] == "server_vad"
        assert "Demo Diner" in session["instructions"]
        assert "Burger ($9.99)" in session["instructions"]
        assert "table T4" in session["instructions"]
        assert "Milkshake" not in session["instructions"]

    @pytest.mark.asyncio
    async def test_disabled_restaurant_never_contacts_upstream(self, relay_env):
        relay, ws = await start_active_relay(relay_env, restaurant_id="R2")

        assert ws.events("error") == [
            {"type": "error", "error": "AI Waiter is not enabled for this restaurant"}
        ]
        assert relay.state is RelayState.CONNECTED
        assert relay_env.clients == []
        assert relay.upstream is None

    @pytest.mark.asyncio
    async def test_unknown_restaurant(self, relay_env):
        relay, ws = await start_active_relay(relay_env, restaurant_id="R404")
        assert ws.events("error") == [{"type": "error", "error": "Restaurant not found"}]
        assert relay.state is RelayState.CONNECTED

    @pytest.mark.asyncio
    async def test_missing_credential_reports_error(self, relay_env):
        relay_env.api_key = ""
        relay, ws = await start_active_relay(relay_env)

        assert ws.events("error") == [
            {"type": "error", "error": "OpenAI Realtime API is not configured"}
        ]
        assert relay.state is RelayState.CONNECTED
        assert relay.upstream is None

    @pytest.mark.asyncio
    async def test_handshake_timeout_allows_retry(self, relay_env):
        relay_env.auto_session_created = False
        relay_env.handshake_timeout = 0.05
        relay, ws = await start_active_relay(relay_env)

        assert relay.state is RelayState.CONNECTED
        assert "timed out" in ws.events("error")[0]["error"]
        assert relay_env.sockets[0].closed

        relay_env.auto_session_created = True
        await relay.handle_message(frame(type="start_session"))
        await relay.wait_for_start()
        assert relay.state is RelayState.ACTIVE
        assert len(relay_env.clients) == 2

    @pytest.mark.asyncio
    async def test_second_start_is_ignored(self, relay_env):
        relay, ws = await start_active_relay(relay_env)
        await relay.handle_message(frame(type="start_session"))
        await relay.wait_for_start()

        assert relay.state is RelayState.ACTIVE
        assert len(relay_env.clients) == 1
        assert len(ws.events("session_started")) == 1


class TestCommands:
    @pytest.mark.asyncio
    async def test_audio_before_start_is_dropped(self, relay_env):
        relay, ws = relay_env.make_relay()
        await relay.handle_message(frame(type="audio", audio="AAAA"))
        await relay.handle_message(frame(type="commit_audio"))

        assert relay.state is RelayState.CONNECTED
        assert ws.sent_messages == []
        assert relay_env.sockets == []

    @pytest.mark.asyncio
    async def test_audio_commit_cancel_text_forwarded(self, relay_env):
        relay, _ = await start_active_relay(relay_env)
        socket = relay_env.sockets[0]

        await relay.handle_message(frame(type="audio", audio="AAAA"))
        await relay.handle_message(frame(type="commit_audio"))
        await relay.handle_message(frame(type="cancel"))
        await relay.handle_message(frame(type="text", text="A burger please"))

        assert socket.sent_types()[1:] == [
            "input_audio_buffer.append",
            "input_audio_buffer.commit",
            "response.create",
            "response.cancel",
            "conversation.item.create",
            "response.create",
        ]
        assert socket.sent[1]["audio"] == "AAAA"

    @pytest.mark.asyncio
    async def test_ping_answered_with_pong(self, relay_env):
        relay, ws = relay_env.make_relay()
        await relay.handle_message(frame(type="ping"))
        assert ws.event_types == ["pong"]
        assert isinstance(ws.sent_messages[0]["ts"], int)

    @pytest.mark.asyncio
    async def test_ping_answered_during_upstream_handshake(self, relay_env, waiter):
        relay_env.auto_session_created = False
        relay, ws = relay_env.make_relay()
        await relay_env.registry.register(relay.connection)

        await relay.handle_message(frame(type="start_session"))
        await waiter(lambda: relay_env.sockets and relay_env.sockets[0].sent)
        assert relay.state is RelayState.STARTING

        await relay.handle_message(frame(type="ping"))
        assert ws.event_types == ["pong"]

        await relay.handle_message(frame(type="start_session"))
        assert len(relay_env.clients) == 1

        relay_env.sockets[0].push({"type": "session.created", "session": {"id": "sess_late"}})
        await relay.wait_for_start()
        assert relay.state is RelayState.ACTIVE
        assert ws.event_types == ["pong", "session_started"]

    @pytest.mark.asyncio
    async def test_end_session_waits_for_pending_start(self, relay_env, waiter):
        relay_env.auto_session_created = False
        relay, ws = relay_env.make_relay()
        await relay_env.registry.register(relay.connection)

        await relay.handle_message(frame(type="start_session"))
        await waiter(lambda: relay_env.sockets and relay_env.sockets[0].sent)

        ending = asyncio.create_task(relay.handle_message(frame(type="end_session")))
        await asyncio.sleep(0.02)
        assert not ending.done()
        assert relay.state is RelayState.STARTING

        relay_env.sockets[0].push({"type": "session.created", "session": {"id": "sess_late"}})
        await ending

        assert relay.state is RelayState.CLOSED
        assert ws.event_types == ["session_started", "session_ended"]
        assert relay_env.sockets[0].closed

    @pytest.mark.parametrize(
        "raw",
        [
            "{not json",
            "[]",
            json.dumps({"audio": "AAAA"}),
            json.dumps({"type": "audio"}),
            json.dumps({"type": "text", "text": ""}),
            json.dumps({"type": "dance"}),
        ],
    )
    @pytest.mark.asyncio
    async def test_malformed_frames_are_ignored(self, relay_env, raw):
        relay, ws = await start_active_relay(relay_env)
        sent_before = list(relay_env.sockets[0].sent)

        await relay.handle_message(raw)

        assert relay.state is RelayState.ACTIVE
        assert ws.event_types == ["session_started"]
        assert relay_env.sockets[0].sent == sent_before

    @pytest.mark.asyncio
    async def test_any_frame_marks_connection_alive(self, relay_env):
        relay, _ = relay_env.make_relay()
        relay.connection.is_alive = False
        await relay.handle_message("{not json")
        assert relay.connection.is_alive


class TestUpstreamEvents:
    @pytest.mark.asyncio
    async def test_audio_and_transcripts_relayed(self, relay_env, waiter):
        relay, ws = await start_active_relay(relay_env)
        socket = relay_env.sockets[0]

        socket.push({"type": "response.audio.delta", "delta": "UklGRg=="})
        socket.push(
            {
                "type": "conversation.item.input_audio_transcription.completed",
                "transcript": "Two burgers",
            }
        )
        socket.push({"type": "response.audio_transcript.done", "transcript": "Sure!"})
        socket.push({"type": "response.done", "response": {"status": "completed"}})
        await waiter(lambda: ws.events("response_done"))

        assert ws.events("audio") == [{"type": "audio", "audio": "UklGRg=="}]
        assert ws.events("transcript") == [
            {"type": "transcript", "transcript": "Two burgers", "isFinal": True, "role": "user"},
            {"type": "transcript", "transcript": "Sure!", "isFinal": True, "role": "assistant"},
        ]

    @pytest.mark.asyncio
    async def test_upstream_error_keeps_session(self, relay_env, waiter):
        relay, ws = await start_active_relay(relay_env)
        relay_env.sockets[0].push({"type": "error", "error": {"message": "Bad audio"}})
        await waiter(lambda: ws.events("error"))

        assert ws.events("error") == [{"type": "error", "error": "Bad audio"}]
        assert relay.state is RelayState.ACTIVE


class TestToolCalls:
    @pytest.mark.asyncio
    async def test_add_to_cart_two_burgers(self, relay_env, waiter):
        relay, ws = await start_active_relay(relay_env)
        socket = relay_env.sockets[0]

        socket.push(tool_call("add_to_cart", "call_1", item_name="Burger", quantity=2))
        await waiter(lambda: socket.sent_types()[-1] == "response.create")

        [event] = ws.events("add_to_cart")
        assert event["item"]["id"] == "m-burger"
        assert event["item"]["name"] == "Burger"
        assert event["item"]["price"] == "9.99"
        assert event["item"]["quantity"] == 2
        assert event["item"]["category"] == "Mains"

        result = socket.sent[-2]
        assert result["item"]["type"] == "function_call_output"
        assert result["item"]["call_id"] == "call_1"
        output = json.loads(result["item"]["output"])
        assert output["success"] is True
        assert output["cart_total"] == "$19.98"
        assert relay.cart.item_count == 2

    @pytest.mark.asyncio
    async def test_misspelled_item_is_not_added(self, relay_env, waiter):
        relay, ws = await start_active_relay(relay_env)
        socket = relay_env.sockets[0]

        socket.push(tool_call("add_to_cart", "call_2", item_name="Burgerrr"))
        await waiter(lambda: socket.sent_types()[-1] == "response.create")

        assert ws.events("add_to_cart") == []
        output = json.loads(socket.sent[-2]["item"]["output"])
        assert output["success"] is False
        assert output["suggestions"] == ["Burger"]
        assert relay.state is RelayState.ACTIVE

    @pytest.mark.asyncio
    async def test_unknown_tool_is_still_acknowledged(self, relay_env, waiter):
        relay, _ = await start_active_relay(relay_env)
        socket = relay_env.sockets[0]

        socket.push(tool_call("confirm_order", "call_3"))
        await waiter(lambda: socket.sent_types()[-1] == "response.create")

        result = socket.sent[-2]["item"]
        assert result["call_id"] == "call_3"
        assert json.loads(result["output"])["message"] == "Unknown function: confirm_order"

    @pytest.mark.asyncio
    async def test_tool_result_sent_before_next_client_command(self, relay_env, waiter):
        relay, _ = await start_active_relay(relay_env)
        socket = relay_env.sockets[0]
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow_call_chef(ctx, args):
            entered.set()
            await release.wait()
            return ToolOutcome({"success": True, "message": "Request sent to kitchen."})

        with patch.dict(function_mapping, {"call_chef": slow_call_chef}):
            socket.push(tool_call("call_chef", "call_7", question="Is it spicy?"))
            await asyncio.wait_for(entered.wait(), timeout=1.0)

            sending_text = asyncio.create_task(
                relay.handle_message(frame(type="text", text="And a soda"))
            )
            await asyncio.sleep(0.02)
            assert not sending_text.done()
            assert socket.sent_types() == ["session.update"]

            release.set()
            await sending_text

        items = [e["item"] for e in socket.sent if e["type"] == "conversation.item.create"]
        assert [item["type"] for item in items] == ["function_call_output", "message"]
        assert [item.get("call_id") for item in items].count("call_7") == 1
        assert socket.sent_types()[1:] == [
            "conversation.item.create",
            "response.create",
            "conversation.item.create",
            "response.create",
        ]

    @pytest.mark.asyncio
    async def test_call_chef_reaches_kitchen_dashboard(self, relay_env, make_connection, waiter):
        chef = make_connection(role="chef", client_type="dashboard")
        other_restaurant_chef = make_connection(
            restaurant_id="R2", role="chef", client_type="dashboard"
        )
        await relay_env.registry.register(chef)
        await relay_env.registry.register(other_restaurant_chef)

        relay, ws = await start_active_relay(relay_env, table_id="T4")
        socket = relay_env.sockets[0]
        socket.push(tool_call("call_chef", "call_4", question="Is the bun vegan?"))
        await waiter(lambda: socket.sent_types()[-1] == "response.create")

        assert ws.events("chef_called") == [
            {"type": "chef_called", "question": "Is the bun vegan?"}
        ]
        [alert] = chef.ws.events("new-question")
        assert alert["data"]["question"] == "Is the bun vegan?"
        assert alert["data"]["customerSessionId"] == "cs-1"
        assert alert["data"]["tableId"] == "T4"
        assert other_restaurant_chef.ws.sent_messages == []


class TestTeardown:
    @pytest.mark.asyncio
    async def test_end_session(self, relay_env):
        relay, ws = await start_active_relay(relay_env)
        await relay.handle_message(frame(type="end_session"))

        assert relay.state is RelayState.CLOSED
        assert ws.events("session_ended") == [{"type": "session_ended", "reason": "end_session"}]
        assert ws.close_code == 1000
        assert relay_env.sockets[0].closed
        assert await relay_env.registry.count() == 0

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, relay_env):
        relay, ws = await start_active_relay(relay_env)
        client = relay_env.clients[0]

        with patch.object(
            relay_env.registry, "deregister", wraps=relay_env.registry.deregister
        ) as deregister, patch.object(client, "disconnect", wraps=client.disconnect) as disconnect:
            await relay.stop(reason="end_session")
            await relay.stop(reason="client_disconnect")
            await relay.stop(reason="heartbeat_timeout")

        assert deregister.await_count == 1
        assert disconnect.await_count == 1
        assert ws.close_calls == 1
        assert len(ws.events("session_ended")) == 1
        assert relay.state is RelayState.CLOSED

    @pytest.mark.asyncio
    async def test_client_disconnect_sends_nothing(self, relay_env):
        relay, ws = await start_active_relay(relay_env)
        await relay.stop(reason="client_disconnect")

        assert ws.event_types == ["session_started"]
        assert relay_env.sockets[0].closed
        assert await relay_env.registry.count() == 0

    @pytest.mark.asyncio
    async def test_upstream_drop_ends_session(self, relay_env, waiter):
        relay, ws = await start_active_relay(relay_env)
        relay_env.sockets[0].drop(code=1011, reason="internal")
        await waiter(lambda: relay.state is RelayState.CLOSED)

        assert ws.event_types[-2:] == ["error", "session_ended"]
        assert ws.events("error") == [{"type": "error", "error": "Upstream connection closed"}]
        assert ws.events("session_ended")[0]["reason"] == "upstream_closed"
        assert ws.close_code == 1011
        assert await relay_env.registry.count() == 0

    @pytest.mark.asyncio
    async def test_frames_after_stop_are_ignored(self, relay_env):
        relay, ws = await start_active_relay(relay_env)
        await relay.stop(reason="end_session")
        sent_before = list(ws.sent_messages)

        await relay.handle_message(frame(type="ping"))
        await relay.handle_message(frame(type="start_session"))

        assert ws.sent_messages == sent_before
        assert len(relay_env.clients) == 1

    @pytest.mark.asyncio
    async def test_cart_cleared_on_stop(self, relay_env, waiter):
        relay, _ = await start_active_relay(relay_env)
        socket = relay_env.sockets[0]
        socket.push(tool_call("add_to_cart", "call_5", item_name="Fries"))
        await waiter(lambda: relay.cart.item_count == 1)

        await relay.stop(reason="end_session")
        assert relay.cart.item_count == 0

    @pytest.mark.asyncio
    async def test_heartbeat_eviction_runs_full_teardown(self, relay_env):
        relay, ws = await start_active_relay(relay_env)
        monitor = LivenessMonitor(relay_env.registry, interval_seconds=30)

        await monitor.sweep()
        result = await monitor.sweep()

        assert result["evicted"] == 1
        assert relay.state is RelayState.CLOSED
        assert ws.events("session_ended")[0]["reason"] == "heartbeat_timeout"
        assert ws.close_code == 1001
        assert relay_env.sockets[0].closed
        assert await relay_env.registry.count() == 0


class TestDashboardFanOut:
    @pytest.mark.asyncio
    async def test_order_status_reaches_dashboard_not_voice_relay(
        self, relay_env, make_connection
    ):
        relay, ws = await start_active_relay(relay_env)
        dashboard = make_connection(customer_session_id="cs-1", client_type="dashboard")
        await relay_env.registry.register(dashboard)

        delivered = await relay_env.staff_notifier.notify_order_status_change(
            "R1", "cs-1", {"orderId": "o-1", "status": "ready"}
        )

        assert delivered == 1
        assert dashboard.ws.event_types == ["order-status"]
        assert ws.events("order-status") == []
        assert relay.state is RelayState.ACTIVE

    @pytest.mark.asyncio
    async def test_chef_alerts_skip_non_dashboard_connections(self, relay_env, make_connection):
        chef_dashboard = make_connection(role="chef", client_type="dashboard")
        chef_other = make_connection(role="chef", client_type="realtime")
        await relay_env.registry.register(chef_dashboard)
        await relay_env.registry.register(chef_other)

        delivered = await relay_env.staff_notifier.notify_chef_new_question(
            "R1", {"question": "Gluten free?"}
        )

        assert delivered == 1
        assert chef_dashboard.ws.event_types == ["new-question"]
        assert chef_other.ws.sent_messages == []
