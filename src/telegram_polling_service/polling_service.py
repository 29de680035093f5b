"""
Telegram Polling Service
Long-polls Telegram for the authorized chat and routes each human message into
the queues of the agent sessions that should see it.
Runs as a background task next to the MCP server, one per bridge process.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from enum import Enum
from typing import Any, Optional

import httpx

from telegram_mcp_bridge.commands import (
    HELP_COMMAND,
    SESSIONS_COMMAND,
    format_help,
    format_sessions,
    format_status,
    get_bot_commands,
    parse_command,
)
from telegram_mcp_bridge.config import Settings
from telegram_mcp_bridge.errors import TelegramAPIError, format_telegram_error
from telegram_mcp_bridge.message_queue import MessageQueue
from telegram_mcp_bridge.models import BridgeSession, Sender
from telegram_mcp_bridge.session_registry import SessionRegistry
from telegram_mcp_bridge.telegram_client import TelegramClient

polling_logger = logging.getLogger("telegram_mcp_bridge.polling_service")

DEDUP_CAPACITY = 1000


class LoopState(str, Enum):
    """Where the ingestion loop currently is."""

    STARTING = "starting"
    POLLING = "polling"
    IDLE_WAIT = "idle_wait"
    STOPPED = "stopped"


class RecentUpdates:
    """Bounded set of recently seen update IDs, oldest evicted first."""

    def __init__(self, capacity: int = DEDUP_CAPACITY):
        self.capacity = capacity
        self._ids: OrderedDict[int, None] = OrderedDict()

    def __contains__(self, update_id: int) -> bool:
        return update_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, update_id: int) -> bool:
        """Remember an update. Returns False if it was already known."""
        if update_id in self._ids:
            return False
        self._ids[update_id] = None
        while len(self._ids) > self.capacity:
            self._ids.popitem(last=False)
        return True


class TelegramPollingService:
    """Ingestion loop: Telegram updates in, session queues out."""

    def __init__(
        self,
        settings: Settings,
        client: TelegramClient,
        registry: SessionRegistry,
        queue: MessageQueue,
        session: BridgeSession,
    ):
        """Initialize the service.

        Args:
            settings: Bridge configuration
            client: Transport bound to the authorized chat
            registry: Shared session registry
            queue: This session's own queue
            session: Identity of this process
        """
        self.settings = settings
        self.client = client
        self.registry = registry
        self.queue = queue
        self.session = session

        self.offset: Optional[int] = None
        self.recent_updates = RecentUpdates()
        self.state = LoopState.STARTING
        self.running = False
        self._started = False

    # ------------------------------------------------------------------
    # Startup / shutdown
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Flush old updates, claim a forum topic if needed and register the session."""
        self.state = LoopState.STARTING
        offset = await self.client.flush_updates()
        if offset is not None:
            self.offset = offset
            polling_logger.info(f"Skipped updates queued before start (offset {offset})")

        if self.settings.use_topics and self.session.topic_id is None:
            self.session.topic_id = await self._resolve_topic()

        self.registry.register(
            self.session.session_id,
            self.session.machine,
            self.session.agent,
            topic_id=self.session.topic_id,
        )

        if self.settings.register_commands:
            await self.client.ensure_commands_set(get_bot_commands())

        self._started = True

    async def _resolve_topic(self) -> Optional[int]:
        """Reuse this session's topic from a previous run, or create a new one."""
        previous = self.registry.get(self.session.session_id)
        if previous is not None and previous.topic_id is not None:
            polling_logger.info(f"Reusing forum topic {previous.topic_id}")
            return previous.topic_id
        try:
            topic = await self.client.create_forum_topic(self.client.chat_id, self.session.topic_name)
        except (TelegramAPIError, httpx.HTTPError) as e:
            polling_logger.warning(
                f"Could not create forum topic, using the main chat: {format_telegram_error(e)}"
            )
            return None
        topic_id = topic.get("message_thread_id") if isinstance(topic, dict) else None
        polling_logger.info(f"Created forum topic {topic_id} for session {self.session.session_id}")
        return topic_id

    def request_stop(self) -> None:
        """Ask the loop to exit without touching the registry.

        Safe from a signal handler: ``run()`` deactivates the session in its
        ``finally`` once it unwinds.
        """
        self.running = False

    def stop(self) -> None:
        """Stop the loop after its current iteration and mark the session inactive."""
        if not self.running and self.state == LoopState.STOPPED:
            return
        self.running = False
        self.state = LoopState.STOPPED
        self.registry.deactivate(self.session.session_id)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _advance_offset(self, update_id: int) -> None:
        if self.offset is None or update_id + 1 > self.offset:
            self.offset = update_id + 1

    async def poll_once(self) -> int:
        """Fetch one batch of updates and process it.

        Returns:
            Number of human messages routed to queues
        """
        self.state = LoopState.POLLING
        updates = await self.client.fetch_updates(self.offset, self.settings.polling_timeout)
        if not updates:
            return 0

        polling_logger.debug(f"Received {len(updates)} update(s)")
        routed = 0
        for update in updates:
            if await self.handle_update(update):
                routed += 1
        return routed

    async def handle_update(self, update: dict[str, Any]) -> bool:
        """Process one update.

        Returns:
            True if the update was delivered to at least one queue
        """
        update_id = update.get("update_id")
        if not isinstance(update_id, int):
            polling_logger.warning(f"Ignoring update without update_id: {update!r:.100}")
            return False

        # The cursor moves for every update, duplicates and commands included
        self._advance_offset(update_id)
        if not self.recent_updates.add(update_id):
            polling_logger.debug(f"Skipping duplicate update {update_id}")
            return False

        msg = update.get("message")
        if not isinstance(msg, dict):
            return False
        text = msg.get("text")
        if not text:
            return False
        if (msg.get("from") or {}).get("is_bot"):
            return False

        chat_id = str((msg.get("chat") or {}).get("id"))
        if chat_id != self.settings.chat_id:
            polling_logger.warning(f"Ignoring message from unauthorized chat: {chat_id}")
            return False

        thread_id = msg.get("message_thread_id")
        command = parse_command(text)
        if command is not None:
            await self._answer_command(command, thread_id)
            return False

        targets = self.route(text, thread_id)
        polling_logger.info(
            f"Queued message from user to {len(targets)} session(s): {text[:50]!r}"
        )
        return bool(targets)

    async def _answer_command(self, command: str, thread_id: Optional[int]) -> None:
        if command == SESSIONS_COMMAND:
            reply = format_sessions(self.registry.get_all(), self.registry.liveness_window)
        elif command == HELP_COMMAND:
            reply = format_help()
        else:
            reply = format_status(self.settings.chat_id, self.session, self.registry.get_active())
        await self.client.send_to_chat(reply, message_thread_id=thread_id)

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _queue_for(self, session_id: str) -> MessageQueue:
        if session_id == self.session.session_id:
            return self.queue
        return MessageQueue.for_session(
            self.settings.data_dir, session_id, max_history=self.settings.max_history
        )

    def route(self, text: str, thread_id: Optional[int] = None) -> list[str]:
        """Deliver a human message.

        A message posted inside a forum topic owned by a session goes to that
        session only; everything else is broadcast.

        Returns:
            IDs of the sessions whose queues received the message
        """
        if thread_id is not None:
            owner = self.registry.find_by_topic(thread_id)
            if owner is not None:
                self._queue_for(owner.session_id).enqueue(text, Sender.HUMAN)
                return [owner.session_id]
        return self.broadcast(text)

    def broadcast(self, text: str) -> list[str]:
        """Enqueue ``text`` into every live session's queue.

        All copies share one timestamp. If this session is not among the live
        ones (e.g. the registry file was just lost) it still gets a copy.
        """
        timestamp = int(time.time())
        active_ids = self.registry.get_active_session_ids()
        delivered: list[str] = []
        for session_id in active_ids:
            self._queue_for(session_id).enqueue(text, Sender.HUMAN, timestamp=timestamp)
            delivered.append(session_id)

        if self.session.session_id not in active_ids:
            self.queue.enqueue(text, Sender.HUMAN, timestamp=timestamp)
            delivered.append(self.session.session_id)
        return delivered

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Run the ingestion loop until ``stop()`` is called."""
        self.running = True
        if not self._started:
            await self.start()

        interval = self.settings.poll_interval_ms / 1000
        polling_logger.info(
            f"Telegram polling started (session={self.session.session_id}, "
            f"machine={self.session.machine}, interval={interval}s)"
        )

        try:
            while self.running:
                try:
                    await self.poll_once()
                except Exception as e:
                    polling_logger.error(f"Error polling Telegram: {e}", exc_info=True)
                if not self.running:
                    break
                self.state = LoopState.IDLE_WAIT
                self.registry.heartbeat(self.session.session_id)
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            polling_logger.info("Polling cancelled")
            raise
        finally:
            polling_logger.info("Shutting down polling service")
            self.stop()
