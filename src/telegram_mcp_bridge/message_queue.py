"""Durable per-session message queue backed by one JSON file.

The file holds ``{"pending": [...], "delivered": [...]}``. Every operation
reloads the file first, so a queue written by another process (a broadcast from
a different session's polling loop) is always seen, and every mutation rewrites
the whole file.
"""

import logging
import time
from pathlib import Path
from typing import Optional

from .file_store import atomic_write_json, locked, read_json
from .models import Message, Sender, new_message_id

logger = logging.getLogger("telegram_mcp_bridge.message_queue")

MAX_HISTORY = 200


def queue_file_for(data_dir: Path, session_id: str) -> Path:
    return Path(data_dir) / f"queue-{session_id}.json"


class MessageQueue:
    """Pending/delivered message store for one session."""

    def __init__(self, file_path: Path, max_history: int = MAX_HISTORY):
        """Initialize the queue and load any persisted state.

        Args:
            file_path: Backing JSON file (created on first write)
            max_history: Cap on delivered messages kept for debugging
        """
        self.file_path = Path(file_path)
        self.max_history = max_history
        self._pending: list[Message] = []
        self._delivered: list[Message] = []
        self._unsaved = False
        self._load()

    @classmethod
    def for_session(
        cls, data_dir: Path, session_id: str, max_history: int = MAX_HISTORY
    ) -> "MessageQueue":
        """Open the queue of any session by ID."""
        return cls(queue_file_for(data_dir, session_id), max_history=max_history)

    def _trim(self, delivered: list[Message]) -> list[Message]:
        if self.max_history <= 0:
            return []
        return delivered[-self.max_history:]

    def _load(self) -> None:
        """Replace in-memory state with the file contents (empty if missing or corrupt)."""
        if self._unsaved:
            # The last save failed, memory holds the only copy
            return
        data = read_json(self.file_path)
        if data is None:
            self._pending, self._delivered = [], []
            return
        if not isinstance(data, dict):
            logger.warning(f"Queue file {self.file_path} is not a JSON object, starting empty")
            self._pending, self._delivered = [], []
            return
        try:
            self._pending = [Message.from_dict(m) for m in data.get("pending") or []]
            self._delivered = self._trim(
                [Message.from_dict(m) for m in data.get("delivered") or []]
            )
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Queue file {self.file_path} has malformed entries, starting empty: {e}")
            self._pending, self._delivered = [], []

    def _save(self) -> None:
        """Persist the whole queue. Failures are logged; in-memory state is kept."""
        self._delivered = self._trim(self._delivered)
        try:
            atomic_write_json(
                self.file_path,
                {
                    "pending": [m.to_dict() for m in self._pending],
                    "delivered": [m.to_dict() for m in self._delivered],
                },
            )
            self._unsaved = False
        except OSError as e:
            logger.warning(f"Queue save failed ({self.file_path}): {e}")
            self._unsaved = True

    def enqueue(
        self,
        text: str,
        sender: Sender = Sender.HUMAN,
        timestamp: Optional[int] = None,
    ) -> Message:
        """Append a message to the pending list.

        Args:
            text: Message text
            sender: Who wrote it
            timestamp: Receive time in epoch seconds; defaults to now. Broadcasts
                pass one shared value so every copy carries the same timestamp.

        Returns:
            The stored message
        """
        with locked(self.file_path):
            self._load()
            taken = {m.id for m in self._pending} | {m.id for m in self._delivered}
            message_id = new_message_id()
            while message_id in taken:
                message_id = new_message_id()
            message = Message(
                id=message_id,
                text=text,
                sender=Sender(sender),
                timestamp=int(time.time()) if timestamp is None else int(timestamp),
            )
            self._pending.append(message)
            self._save()
        return message

    def poll(self) -> list[Message]:
        """Remove and return all pending messages in insertion order."""
        with locked(self.file_path):
            self._load()
            if not self._pending:
                return []
            messages = self._pending
            self._pending = []
            self._delivered.extend(messages)
            self._save()
        return messages

    def poll_since(self, since_ts: int) -> list[Message]:
        """Drain every pending message but return only those newer than ``since_ts``.

        Messages at or before ``since_ts`` are moved to the delivered history too;
        they are not kept pending for a later call.
        """
        with locked(self.file_path):
            self._load()
            if not self._pending:
                return []
            fresh = [m for m in self._pending if m.timestamp > since_ts]
            stale = [m for m in self._pending if m.timestamp <= since_ts]
            self._delivered.extend(stale)
            self._delivered.extend(fresh)
            self._pending = []
            self._save()
        if stale:
            logger.debug(f"Discarded {len(stale)} stale message(s) older than {since_ts}")
        return fresh

    def pending_count(self) -> int:
        self._load()
        return len(self._pending)

    def pending_count_since(self, since_ts: Optional[int]) -> int:
        """Count pending messages newer than ``since_ts`` (all of them if falsy)."""
        self._load()
        if not since_ts:
            return len(self._pending)
        return sum(1 for m in self._pending if m.timestamp > since_ts)

    def clear(self) -> None:
        """Empty both pending and delivered."""
        with locked(self.file_path):
            self._pending = []
            self._delivered = []
            self._save()

    @property
    def pending(self) -> list[Message]:
        """Current pending messages (re-read from disk)."""
        self._load()
        return list(self._pending)

    @property
    def delivered(self) -> list[Message]:
        """Current delivered history (re-read from disk)."""
        self._load()
        return list(self._delivered)
