"""Request/response facade used by agents.

``Bridge.interact`` is the one real operation: optionally send, optionally wait
for a reply, then drain. The legacy split tools (send_message, poll_messages,
check_status, wait_for_reply) are thin adapters over the same three steps.
"""

import asyncio
import logging
import time
from typing import Any, Optional, Protocol

from .message_queue import MessageQueue
from .models import Message, BridgeSession
from .validation import (
    MAX_MESSAGE_LENGTH,
    clamp_seconds,
    validate_message_text,
    validate_since_ts,
)

logger = logging.getLogger("telegram_mcp_bridge.bridge")

WAIT_POLL_INTERVAL = 0.5
DEFAULT_REPLY_TIMEOUT = 120


class Transport(Protocol):
    async def send_to_chat(self, text: str, message_thread_id: int | None = None) -> bool: ...


def _now() -> int:
    return int(time.time())


def _slim(messages: list[Message]) -> list[dict[str, Any]]:
    return [m.to_slim_dict() for m in messages]


class Bridge:
    """The agent-facing side of one bridge session."""

    def __init__(self, session: BridgeSession, transport: Transport, queue: MessageQueue):
        """Initialize the facade.

        Args:
            session: Identity of this process (labels, forum topic)
            transport: Sends outgoing text to the authorized chat
            queue: This session's inbound queue
        """
        self.session = session
        self.transport = transport
        self.queue = queue

    async def _send(self, text: str) -> bool:
        """Send ``text`` tagged with this session's label."""
        full_text = f"{self.session.label} {text}"
        ok = await self.transport.send_to_chat(full_text, message_thread_id=self.session.topic_id)
        if ok:
            logger.info(f"Sent message to Telegram: {text[:50]!r}")
        else:
            logger.warning("Message to Telegram was not delivered")
        return ok

    def _count(self, since_ts: Optional[int]) -> int:
        return self.queue.pending_count_since(since_ts)

    async def _wait_for_pending(self, wait: int, since_ts: Optional[int] = None) -> bool:
        """Sleep in short steps until a qualifying message is pending or ``wait`` elapses.

        Returns:
            True if something is pending when the wait ends
        """
        deadline = time.monotonic() + wait
        while True:
            if self._count(since_ts) > 0:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(WAIT_POLL_INTERVAL, remaining))

    def _drain(self, since_ts: Optional[int]) -> list[Message]:
        if since_ts:
            return self.queue.poll_since(since_ts)
        return self.queue.poll()

    def _check_text(self, text: Optional[str]) -> Optional[str]:
        limit = MAX_MESSAGE_LENGTH - len(self.session.label) - 1
        _, error = validate_message_text(text, max_length=limit)
        return error

    async def interact(
        self,
        message: Optional[str] = None,
        wait: Any = 0,
        since_ts: Any = None,
    ) -> dict[str, Any]:
        """Send and/or receive in one round trip.

        Args:
            message: Text for the human. None means "just check".
            wait: Seconds (0-300) to block for a reply before draining
            since_ts: A ``now`` from an earlier call. Pending messages received
                before that second are drained but not returned.

        Returns:
            ``{ok, sent?, messages: [{text, timestamp}], pending, now}`` or
            ``{ok: False, error, now}``
        """
        now = _now()
        wait_seconds = clamp_seconds(wait)
        since, since_error = validate_since_ts(since_ts)
        if since_error:
            return {"ok": False, "error": since_error, "now": now}

        # ``now`` is whole seconds; a reply in that same second must still count
        # as newer, so compare against the second before. MessageQueue.poll_since
        # stays strict (timestamp > since_ts); the inclusive edge lives here.
        cutoff = since - 1 if since else None

        sent: Optional[bool] = None
        if message is not None:
            text_error = self._check_text(message)
            if text_error:
                return {"ok": False, "error": text_error, "now": now}
            sent = await self._send(message)
            if not sent:
                return {"ok": False, "error": "send failed", "now": now}

        if wait_seconds > 0:
            await self._wait_for_pending(wait_seconds, cutoff)

        messages = self._drain(cutoff)
        result: dict[str, Any] = {
            "ok": True,
            "now": now,
            "messages": _slim(messages),
            "pending": self.queue.pending_count(),
        }
        if sent is not None:
            result["sent"] = sent
        return result

    async def send_message(self, text: Optional[str]) -> dict[str, Any]:
        """Legacy: send only."""
        error = self._check_text(text)
        if error:
            return {"error": "empty message" if not (text or "").strip() else error}
        ok = await self._send(text)
        return {"sent": ok, "now": _now()}

    async def poll_messages(self) -> dict[str, Any]:
        """Legacy: drain only."""
        return {"messages": _slim(self._drain(None)), "now": _now()}

    async def check_status(self, wait: Any = 0) -> dict[str, Any]:
        """Legacy: pending count, optionally waiting for one to arrive."""
        wait_seconds = clamp_seconds(wait)
        if wait_seconds > 0:
            await self._wait_for_pending(wait_seconds)
        return {"pending": self.queue.pending_count(), "now": _now()}

    async def wait_for_reply(self, timeout: Any = DEFAULT_REPLY_TIMEOUT) -> dict[str, Any]:
        """Legacy: block up to ``timeout`` seconds (1-300) and drain."""
        timeout_seconds = clamp_seconds(timeout, default=DEFAULT_REPLY_TIMEOUT, minimum=1)
        if await self._wait_for_pending(timeout_seconds):
            return {"messages": _slim(self._drain(None)), "now": _now()}
        return {"timeout": True, "waited": timeout_seconds, "now": _now()}
