"""Tests for the agent-facing Bridge facade."""

import asyncio
import time

import pytest

from telegram_mcp_bridge.bridge import Bridge
from telegram_mcp_bridge.models import BridgeSession


@pytest.fixture
def session():
    return BridgeSession(session_id="s-aaaaaa", machine="box", agent="agent")


@pytest.fixture
def bridge(session, fake_client, own_queue):
    return Bridge(session, fake_client, own_queue)


class TestInteract:
    """Tests for Bridge.interact."""

    @pytest.mark.asyncio
    async def test_send_only(self, bridge, fake_client):
        before = int(time.time())
        result = await bridge.interact(message="Starting the migration")

        assert result["ok"] is True
        assert result["sent"] is True
        assert result["messages"] == []
        assert result["pending"] == 0
        assert before <= result["now"] <= int(time.time())
        assert fake_client.sent == [("[box/agent] Starting the migration", None)]

    @pytest.mark.asyncio
    async def test_check_only(self, bridge, own_queue, fake_client):
        own_queue.enqueue("use staging", timestamp=1700000000)

        result = await bridge.interact()

        assert result["ok"] is True
        assert "sent" not in result
        assert result["messages"] == [{"text": "use staging", "timestamp": 1700000000}]
        assert result["pending"] == 0
        assert fake_client.sent == []

    @pytest.mark.asyncio
    async def test_conversation_round_trip(self, bridge, own_queue):
        """Send, get a reply in the same second, then only see newer messages."""
        first = await bridge.interact(message="Deploy to prod?")
        own_queue.enqueue("yes", timestamp=first["now"])

        second = await bridge.interact(since_ts=first["now"])
        assert [m["text"] for m in second["messages"]] == ["yes"]

        third = await bridge.interact(since_ts=second["now"])
        assert third["messages"] == []
        assert [m.text for m in own_queue.delivered] == ["yes"]

    @pytest.mark.asyncio
    async def test_since_ts_drops_older_messages(self, bridge, own_queue):
        own_queue.enqueue("stale", timestamp=1000)
        own_queue.enqueue("fresh", timestamp=2000)

        result = await bridge.interact(since_ts=1500)

        assert result["messages"] == [{"text": "fresh", "timestamp": 2000}]
        assert result["pending"] == 0
        assert own_queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_topic_sessions_send_into_their_topic(self, fake_client, own_queue):
        session = BridgeSession("s-aaaaaa", "box", "agent", topic_id=77)
        bridge = Bridge(session, fake_client, own_queue)

        await bridge.interact(message="hi")

        assert fake_client.sent == [("[box/agent] hi", 77)]

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, bridge, fake_client, own_queue):
        own_queue.enqueue("waiting")

        result = await bridge.interact(message="   ")

        assert result["ok"] is False
        assert result["error"] == "Message text cannot be empty"
        assert "now" in result
        assert fake_client.sent == []
        assert own_queue.pending_count() == 1

    @pytest.mark.asyncio
    async def test_message_too_long(self, bridge, fake_client):
        result = await bridge.interact(message="x" * 4096)

        assert result["ok"] is False
        assert "maximum length" in result["error"]
        assert fake_client.sent == []

    @pytest.mark.asyncio
    async def test_send_failure(self, bridge, fake_client, own_queue):
        fake_client.send_ok = False
        own_queue.enqueue("unread")

        result = await bridge.interact(message="hello", wait=30)

        assert result == {"ok": False, "error": "send failed", "now": result["now"]}
        assert own_queue.pending_count() == 1

    @pytest.mark.asyncio
    async def test_invalid_since_ts(self, bridge):
        result = await bridge.interact(since_ts="last tuesday")
        assert result["ok"] is False
        assert "since_ts" in result["error"]

    @pytest.mark.asyncio
    async def test_wait_returns_when_reply_arrives(self, bridge, own_queue):
        async def reply_later():
            await asyncio.sleep(0.2)
            own_queue.enqueue("approved")

        started = time.monotonic()
        replier = asyncio.create_task(reply_later())
        result = await bridge.interact(message="Merge?", wait=10)
        await replier

        assert [m["text"] for m in result["messages"]] == ["approved"]
        assert time.monotonic() - started < 5

    @pytest.mark.asyncio
    async def test_wait_times_out_empty(self, bridge):
        started = time.monotonic()
        result = await bridge.interact(wait=1)

        assert result["ok"] is True
        assert result["messages"] == []
        assert time.monotonic() - started >= 0.9

    @pytest.mark.asyncio
    async def test_wait_ignores_old_messages(self, bridge, own_queue):
        """A stale pending message does not end the wait early."""
        own_queue.enqueue("stale", timestamp=1000)

        started = time.monotonic()
        result = await bridge.interact(wait=1, since_ts=2000)

        assert result["messages"] == []
        assert time.monotonic() - started >= 0.9
        assert own_queue.pending_count() == 0


class TestLegacyTools:
    """Tests for the split legacy operations."""

    @pytest.mark.asyncio
    async def test_send_message(self, bridge, fake_client):
        result = await bridge.send_message("build green")

        assert result["sent"] is True
        assert "now" in result
        assert fake_client.sent == [("[box/agent] build green", None)]

    @pytest.mark.asyncio
    async def test_send_empty_message(self, bridge, fake_client):
        assert await bridge.send_message("") == {"error": "empty message"}
        assert fake_client.sent == []

    @pytest.mark.asyncio
    async def test_poll_messages(self, bridge, own_queue):
        own_queue.enqueue("a", timestamp=1)
        own_queue.enqueue("b", timestamp=2)

        result = await bridge.poll_messages()

        assert result["messages"] == [{"text": "a", "timestamp": 1}, {"text": "b", "timestamp": 2}]
        assert (await bridge.poll_messages())["messages"] == []

    @pytest.mark.asyncio
    async def test_check_status(self, bridge, own_queue):
        own_queue.enqueue("a")

        result = await bridge.check_status()

        assert result["pending"] == 1
        assert own_queue.pending_count() == 1

    @pytest.mark.asyncio
    async def test_wait_for_reply(self, bridge, own_queue):
        own_queue.enqueue("here")

        result = await bridge.wait_for_reply(timeout=5)

        assert [m["text"] for m in result["messages"]] == ["here"]
        assert "timeout" not in result

    @pytest.mark.asyncio
    async def test_wait_for_reply_timeout(self, bridge):
        result = await bridge.wait_for_reply(timeout=1)

        assert result["timeout"] is True
        assert result["waited"] == 1
        assert "now" in result
