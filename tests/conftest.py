"""Test configuration for pytest."""

from typing import Any, Optional

import pytest

from telegram_mcp_bridge.config import Settings
from telegram_mcp_bridge.message_queue import MessageQueue
from telegram_mcp_bridge.session_registry import SessionRegistry

CHAT_ID = 123456789


class FakeTelegramClient:
    """Stands in for TelegramClient: records sends, replays canned update batches."""

    def __init__(self, chat_id: int = CHAT_ID):
        self.chat_id = chat_id
        self.sent: list[tuple[str, Optional[int]]] = []
        self.send_ok = True
        self.batches: list[list[dict[str, Any]]] = []
        self.offsets: list[Optional[int]] = []
        self.flush_offset: Optional[int] = None
        self.command_calls: list[list[dict[str, str]]] = []
        self.topic_names: list[str] = []
        self.topic: dict[str, Any] = {"message_thread_id": 77, "name": "topic"}

    async def send_to_chat(self, text: str, message_thread_id: Optional[int] = None) -> bool:
        self.sent.append((text, message_thread_id))
        return self.send_ok

    async def fetch_updates(self, offset: Optional[int], timeout: int) -> list[dict[str, Any]]:
        self.offsets.append(offset)
        return self.batches.pop(0) if self.batches else []

    async def flush_updates(self) -> Optional[int]:
        return self.flush_offset

    async def ensure_commands_set(self, commands: list[dict[str, str]], force: bool = False) -> bool:
        self.command_calls.append(commands)
        return True

    async def create_forum_topic(self, chat_id: int, name: str) -> dict[str, Any]:
        self.topic_names.append(name)
        return self.topic


def make_update(
    update_id: int,
    text: Optional[str] = "Hello, world!",
    chat_id: int = CHAT_ID,
    is_bot: bool = False,
    thread_id: Optional[int] = None,
) -> dict[str, Any]:
    """Build a getUpdates entry carrying one text message."""
    message: dict[str, Any] = {
        "message_id": update_id,
        "chat": {"id": chat_id, "type": "private"},
        "from": {"id": 987654321, "is_bot": is_bot, "username": "testuser"},
        "date": 1234567890,
    }
    if text is not None:
        message["text"] = text
    if thread_id is not None:
        message["message_thread_id"] = thread_id
    return {"update_id": update_id, "message": message}


@pytest.fixture
def mock_settings(monkeypatch):
    """Mock environment variables for settings."""
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "test_bot_token")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", str(CHAT_ID))
    monkeypatch.setenv("TELEGRAM_API_BASE_URL", "https://api.telegram.org")
    return None


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def settings(data_dir):
    """Settings for one session on machine "box", never reading the environment file."""
    return Settings(
        _env_file=None,
        bot_token="test_bot_token",
        chat_id=str(CHAT_ID),
        data_dir=data_dir,
        session_id="s-aaaaaa",
        machine_label="box",
        agent_label="agent",
        poll_interval_ms=0,
    )


@pytest.fixture
def own_queue(settings):
    return MessageQueue(settings.own_queue_file, max_history=settings.max_history)


@pytest.fixture
def registry(settings):
    return SessionRegistry(settings.data_dir, liveness_window=settings.liveness_window)


@pytest.fixture
def fake_client():
    return FakeTelegramClient()
