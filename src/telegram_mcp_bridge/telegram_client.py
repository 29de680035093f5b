"""Telegram Bot API client for the bridge."""

import asyncio
import logging
from typing import Any, Optional

import httpx

from .errors import TelegramAPIError, format_telegram_error

logger = logging.getLogger("telegram_mcp_bridge.telegram_client")

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
INITIAL_RETRY_DELAY = 0.1
MAX_RETRY_DELAY = 5.0


def _envelope(response: httpx.Response) -> Optional[dict[str, Any]]:
    """The ``{"ok": ..., ...}`` body of a Bot API reply, or None for anything else."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and "ok" in payload:
        return payload
    return None


class TelegramClient:
    """Client for the Telegram Bot API, bound to the one authorized chat.

    The raising methods (``send_message``, ``get_updates`` ...) mirror the Bot
    API. ``send_to_chat``, ``fetch_updates`` and ``flush_updates`` are what the
    bridge uses: they log failures and degrade to False / empty results so the
    caller can simply try again on its next tick.
    """

    def __init__(
        self,
        bot_token: str,
        chat_id: str | int,
        base_url: str = "https://api.telegram.org",
        max_retries: int = 0,
        retry_delay: float = INITIAL_RETRY_DELAY,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the client.

        Args:
            bot_token: Bot token from @BotFather
            chat_id: The authorized chat; outgoing bridge messages go here
            base_url: Bot API root, overridable for a local Bot API server
            max_retries: Extra attempts per call for retryable failures
            retry_delay: First backoff delay in seconds, doubled per attempt
            http_client: Preconfigured httpx client (tests, proxies)
        """
        self.chat_id = int(chat_id)
        self.base_url = f"{base_url.rstrip('/')}/bot{bot_token}"
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        # Long polls are short (seconds); 60s leaves a wide margin
        self._http = http_client or httpx.AsyncClient(
            timeout=60.0,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

    async def close(self) -> None:
        await self._http.aclose()

    def _next_delay(self, attempt: int, retry_after: Any = None) -> Optional[float]:
        """Backoff before attempt ``attempt + 1``, or None once retries are used up."""
        if attempt >= self.max_retries:
            return None
        if retry_after:
            return float(retry_after)
        return min(self.retry_delay * (2**attempt), MAX_RETRY_DELAY)

    async def _call(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """POST one Bot API method and return its ``result``.

        Raises:
            TelegramAPIError: Telegram answered with ok=false
            httpx.HTTPError: Network failure or a non-API error response
        """
        url = f"{self.base_url}/{method}"
        attempt = 0
        while True:
            try:
                response = await self._http.post(url, json=params or {})
            except (httpx.NetworkError, httpx.TimeoutException) as e:
                delay = self._next_delay(attempt)
                if delay is None:
                    raise
                logger.warning(
                    f"{method}: {type(e).__name__}, retry {attempt + 1}/{self.max_retries} in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                attempt += 1
                continue

            payload = _envelope(response)
            if payload is not None and payload.get("ok"):
                return payload.get("result")

            if response.status_code in RETRYABLE_STATUS_CODES:
                retry_after = ((payload or {}).get("parameters") or {}).get("retry_after")
                delay = self._next_delay(attempt, retry_after)
                if delay is not None:
                    logger.warning(
                        f"{method}: HTTP {response.status_code}, "
                        f"retry {attempt + 1}/{self.max_retries} in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

            if payload is None:
                response.raise_for_status()
                raise TelegramAPIError(
                    f"Invalid response from Telegram: {response.text[:200]}", response.status_code
                )
            raise TelegramAPIError(
                payload.get("description", "Unknown error"),
                payload.get("error_code", response.status_code),
            )

    # ------------------------------------------------------------------
    # Bot API methods (raise on failure)
    # ------------------------------------------------------------------

    async def get_me(self) -> dict[str, Any]:
        return await self._call("getMe")

    async def get_my_commands(self) -> list[dict[str, Any]]:
        commands = await self._call("getMyCommands")
        return commands if isinstance(commands, list) else []

    async def set_my_commands(self, commands: list[dict[str, str]]) -> Any:
        return await self._call("setMyCommands", {"commands": commands})

    async def send_message(
        self,
        chat_id: str | int,
        text: str,
        parse_mode: str | None = "Markdown",
        message_thread_id: int | None = None,
        disable_notification: bool = False,
    ) -> dict[str, Any]:
        """Send ``text`` to ``chat_id``; ``parse_mode=None`` sends plain text."""
        params: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            params["parse_mode"] = parse_mode
        if message_thread_id is not None:
            params["message_thread_id"] = message_thread_id
        if disable_notification:
            params["disable_notification"] = True
        return await self._call("sendMessage", params)

    async def get_updates(
        self,
        offset: int | None = None,
        limit: int = 100,
        timeout: int = 2,
        allowed_updates: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Long-poll ``getUpdates``.

        Args:
            offset: First update_id to return; -1 returns only the newest
            limit: Batch size (1-100)
            timeout: Seconds Telegram holds the request open when idle
            allowed_updates: Update kinds to receive, None for Telegram's default
        """
        params: dict[str, Any] = {"limit": limit, "timeout": timeout}
        if offset is not None:
            params["offset"] = offset
        if allowed_updates is not None:
            params["allowed_updates"] = allowed_updates
        updates = await self._call("getUpdates", params)
        return updates if isinstance(updates, list) else []

    async def create_forum_topic(self, chat_id: str | int, name: str) -> dict[str, Any]:
        """Open a topic in a forum supergroup. The reply carries ``message_thread_id``."""
        return await self._call("createForumTopic", {"chat_id": chat_id, "name": name[:128]})

    # ------------------------------------------------------------------
    # Bridge helpers (never raise)
    # ------------------------------------------------------------------

    async def ensure_commands_set(self, commands: list[dict[str, str]], force: bool = False) -> bool:
        """Register the command menu unless the bot already has one.

        Returns:
            True if the menu was written
        """
        try:
            existing = await self.get_my_commands()
            if existing and not force:
                logger.debug(f"Keeping the existing command menu ({len(existing)} entries)")
                return False
            await self.set_my_commands(commands)
        except (TelegramAPIError, httpx.HTTPError) as e:
            logger.warning(f"Could not register bot commands: {e}")
            return False
        logger.info(f"Registered {len(commands)} bot commands")
        return True

    async def send_to_chat(self, text: str, message_thread_id: int | None = None) -> bool:
        """Send text to the authorized chat, falling back to plain text.

        Markdown is tried first; if Telegram cannot parse the entities the
        message is sent once more without formatting.

        Returns:
            True if Telegram accepted the message
        """
        try:
            await self.send_message(self.chat_id, text, message_thread_id=message_thread_id)
            return True
        except TelegramAPIError as e:
            if not e.is_parse_error:
                logger.error(f"sendMessage failed: {format_telegram_error(e)}")
                return False
            logger.debug(f"Markdown rejected, resending as plain text: {e.description}")
        except httpx.HTTPError as e:
            logger.error(f"sendMessage failed: {e!r}")
            return False

        try:
            await self.send_message(
                self.chat_id, text, parse_mode=None, message_thread_id=message_thread_id
            )
            return True
        except (TelegramAPIError, httpx.HTTPError) as e:
            logger.error(f"sendMessage (plain text) failed: {format_telegram_error(e)}")
            return False

    async def fetch_updates(self, offset: int | None, timeout: int) -> list[dict[str, Any]]:
        """Long-poll for new messages. The offset cursor is owned by the caller.

        Returns:
            Updates, or an empty list on any failure (logged as a warning)
        """
        try:
            return await self.get_updates(offset=offset, timeout=timeout, allowed_updates=["message"])
        except (TelegramAPIError, httpx.HTTPError) as e:
            logger.warning(f"Telegram poll error: {e!r}")
            return []

    async def flush_updates(self) -> int | None:
        """Skip everything Telegram queued before this process started.

        Returns:
            The offset just past the newest pending update, or None if there is
            nothing pending or the request failed
        """
        try:
            updates = await self.get_updates(offset=-1, timeout=0)
        except (TelegramAPIError, httpx.HTTPError) as e:
            logger.warning(f"Flush old updates failed: {e!r}")
            return None
        if not updates:
            return None
        return int(updates[-1].get("update_id", 0)) + 1
