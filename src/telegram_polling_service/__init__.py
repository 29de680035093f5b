"""Telegram Polling Service - routes inbound Telegram messages to session queues."""

from .polling_service import LoopState, RecentUpdates, TelegramPollingService

__all__ = ["LoopState", "RecentUpdates", "TelegramPollingService"]
