"""Telegram MCP Bridge - lets AI agent sessions talk to a human over Telegram."""

from .bridge import Bridge
from .config import Settings, get_settings
from .message_queue import MessageQueue
from .models import BridgeSession, Message, Sender, Session
from .session_registry import SessionRegistry
from .telegram_client import TelegramClient

__version__ = "2.0.0"

__all__ = [
    "Bridge",
    "BridgeSession",
    "Message",
    "MessageQueue",
    "Sender",
    "Session",
    "SessionRegistry",
    "Settings",
    "TelegramClient",
    "get_settings",
]
