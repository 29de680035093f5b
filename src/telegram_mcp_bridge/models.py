"""Data models shared by the queue, the registry and the polling service."""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class Sender(str, Enum):
    """Who wrote a message."""

    HUMAN = "human"
    AGENT = "agent"

    @classmethod
    def parse(cls, value: Any) -> "Sender":
        # Queue files from the first bridge release used "user"
        if value in ("user", None):
            return cls.HUMAN
        return cls(value)


def new_message_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class Message:
    """One unit of conversation. Never mutated after creation."""

    id: str
    text: str
    sender: Sender
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "text": self.text,
            "sender": self.sender.value,
            "timestamp": self.timestamp,
        }

    def to_slim_dict(self) -> dict[str, Any]:
        """Agent-facing form: text and timestamp only."""
        return {"text": self.text, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        """Deserialize from dictionary."""
        timestamp = data.get("timestamp", data.get("ts", 0))
        return cls(
            id=str(data.get("id") or new_message_id()),
            text=str(data.get("text", "")),
            sender=Sender.parse(data.get("sender")),
            timestamp=int(timestamp),
        )


@dataclass
class Session:
    """A registry entry for one running bridge process."""

    session_id: str
    machine: str
    agent: str
    started_at: int
    last_seen: int
    active: bool = True

    # Telegram forum topic (message_thread_id) owned by this session, if any
    topic_id: Optional[int] = None

    def is_live(self, now: int, liveness_window: int) -> bool:
        return self.active and (now - self.last_seen) < liveness_window

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the registry file layout (keyed by session ID outside)."""
        data: dict[str, Any] = {
            "machine": self.machine,
            "agent": self.agent,
            "startedAt": self.started_at,
            "lastSeen": self.last_seen,
            "active": self.active,
        }
        if self.topic_id is not None:
            data["topicId"] = self.topic_id
        return data

    @classmethod
    def from_dict(cls, session_id: str, data: dict[str, Any]) -> "Session":
        """Deserialize from a registry file entry."""
        topic_id = data.get("topicId")
        return cls(
            session_id=session_id,
            machine=str(data.get("machine", "")),
            agent=str(data.get("agent", "")),
            started_at=int(data.get("startedAt", 0)),
            last_seen=int(data.get("lastSeen", 0)),
            active=bool(data.get("active", False)),
            topic_id=int(topic_id) if topic_id is not None else None,
        )


@dataclass
class BridgeSession:
    """Identity of this bridge process, shared by the facade and the polling loop."""

    session_id: str
    machine: str
    agent: str

    # Resolved at startup in topic mode
    topic_id: Optional[int] = None

    @property
    def label(self) -> str:
        return f"[{self.machine}/{self.agent}]"

    @property
    def topic_name(self) -> str:
        return f"{self.machine}/{self.agent} ({self.session_id})"
