"""MCP server exposing the Telegram bridge to agents using FastMCP."""

import argparse
import asyncio
import json
import logging
import signal
import sys
import time
from typing import Any

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import ValidationError

from telegram_polling_service.polling_service import TelegramPollingService

from .bridge import Bridge
from .config import Settings, get_settings
from .errors import (
    ErrorCategory,
    add_error_log_file,
    log_and_format_error,
    logger,
    set_console_level,
)
from .message_queue import MessageQueue
from .session_registry import SessionRegistry
from .telegram_client import TelegramClient

SERVER_NAME = "telegram-bridge"


def build_interact_description(settings: Settings) -> str:
    """Describe the interact tool, including the protocol the agent should follow."""
    description = (
        "Unified Telegram communication tool. Does everything in one call:\n"
        "• If `message` is provided: sends it to the user via Telegram (Markdown supported)\n"
        "• Always checks for and returns any pending user messages\n"
        "• If `wait` > 0: blocks up to that many seconds (max 300) for a user reply before returning\n"
        "• Use `since_ts` to ignore messages older than a timestamp (avoids reading stale messages)\n\n"
        "Response format: {ok, sent?, messages: [{text, timestamp}], pending, now}\n"
        "- `now`: current server timestamp, pass it as `since_ts` on the next call to only get newer messages\n"
        "- `messages`: new messages from the user (empty array if none)\n"
        "- `pending`: count of unread messages left after this call"
    )

    rules = []
    if settings.auto_start:
        rules.append("At the START of every session/task, call with a brief greeting and plan summary.")
    if settings.auto_summary:
        rules.append("When starting work, call with a concise summary of what you're about to do.")
    rules.append("Call with updates on major milestones or when you need input.")
    if settings.auto_end:
        rules.append("When done, call with a final summary and wait=120 to give the user a chance to reply.")
    if settings.auto_poll:
        rules.append(
            "During any task, call periodically (every few minutes) with no message to check for "
            "user input. Use wait=60-120 when idle to avoid rapid polling."
        )
    rules.append("Keep messages concise (phone-readable).")
    return description + "\n\nPROTOCOL: " + " ".join(rules)


def _dump(result: dict[str, Any]) -> str:
    return json.dumps(result, ensure_ascii=False)


def _tool_error(tool_name: str, error: Exception, bridge: Bridge) -> str:
    message = log_and_format_error(
        tool_name,
        error,
        category=ErrorCategory.MSG,
        session_id=bridge.session.session_id,
    )
    return _dump({"ok": False, "error": message, "now": int(time.time())})


def create_server(settings: Settings, bridge: Bridge) -> FastMCP:
    """Create the MCP server with the interact tool (and legacy tools if enabled)."""
    mcp = FastMCP(SERVER_NAME)

    @mcp.tool(
        name="interact",
        description=build_interact_description(settings),
        annotations=ToolAnnotations(title="Interact", destructiveHint=False, openWorldHint=True),
    )
    async def interact(
        message: str | None = None,
        wait: float = 0,
        since_ts: float | None = None,
    ) -> str:
        """Send a message and/or collect replies.

        Args:
            message: Message to send via Telegram (Markdown). Omit to just check for messages.
            wait: Seconds to wait for a reply (0 = instant check, up to 300).
            since_ts: Only return messages newer than this; use `now` from the previous response.
        """
        try:
            return _dump(await bridge.interact(message=message, wait=wait, since_ts=since_ts))
        except Exception as e:
            return _tool_error("interact", e, bridge)

    if not settings.legacy_tools:
        return mcp

    @mcp.tool(
        name="send_message",
        annotations=ToolAnnotations(title="Send Message", destructiveHint=False, openWorldHint=True),
    )
    async def send_message(text: str) -> str:
        """Send a message to the user via Telegram (Markdown supported).

        Args:
            text: Message text.
        """
        try:
            return _dump(await bridge.send_message(text))
        except Exception as e:
            return _tool_error("send_message", e, bridge)

    @mcp.tool(
        name="poll_messages",
        annotations=ToolAnnotations(title="Poll Messages", openWorldHint=False),
    )
    async def poll_messages() -> str:
        """Retrieve new messages from the user. Each message is returned exactly once."""
        try:
            return _dump(await bridge.poll_messages())
        except Exception as e:
            return _tool_error("poll_messages", e, bridge)

    @mcp.tool(
        name="check_status",
        annotations=ToolAnnotations(title="Check Status", readOnlyHint=True, openWorldHint=False),
    )
    async def check_status(wait: float = 0) -> str:
        """Lightweight check returning the number of pending user messages.

        Args:
            wait: Seconds to wait for a message to arrive (0-300).
        """
        try:
            return _dump(await bridge.check_status(wait))
        except Exception as e:
            return _tool_error("check_status", e, bridge)

    @mcp.tool(
        name="wait_for_reply",
        annotations=ToolAnnotations(title="Wait For Reply", openWorldHint=False),
    )
    async def wait_for_reply(timeout: float = 120) -> str:
        """Block until the user replies or the timeout expires, then return the messages.

        Args:
            timeout: Seconds to wait (1-300, default 120).
        """
        try:
            return _dump(await bridge.wait_for_reply(timeout))
        except Exception as e:
            return _tool_error("wait_for_reply", e, bridge)

    return mcp


def _log_polling_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("Polling loop crashed", exc_info=error)


def install_shutdown_handlers(
    loop: asyncio.AbstractEventLoop,
    service: TelegramPollingService,
    task: asyncio.Task,
) -> list[signal.Signals]:
    """Cancel ``task`` on SIGTERM.

    The handler runs on the event loop between callbacks, never in the middle
    of a registry write, and only flips flags. Deactivating the session is left
    to the ``finally`` blocks that unwind after the cancellation.

    Returns:
        The signals that now have a handler (empty where the loop has no
        signal support, e.g. on Windows)
    """

    def request_shutdown(sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, shutting down")
        service.request_stop()
        task.cancel()

    installed = []
    for sig in (signal.SIGTERM,):
        try:
            loop.add_signal_handler(sig, request_shutdown, sig)
        except (NotImplementedError, RuntimeError):
            continue
        installed.append(sig)
    return installed


async def serve(settings: Settings) -> None:
    """Run the MCP stdio server and the polling loop on one event loop."""
    session = settings.bridge_session()
    client = TelegramClient(
        bot_token=settings.bot_token,
        chat_id=settings.chat_id,
        base_url=settings.api_base_url,
        max_retries=settings.api_max_retries,
    )
    queue = MessageQueue(settings.own_queue_file, max_history=settings.max_history)
    registry = SessionRegistry(settings.data_dir, liveness_window=settings.liveness_window)
    service = TelegramPollingService(settings, client, registry, queue, session)
    bridge = Bridge(session, client, queue)
    mcp = create_server(settings, bridge)

    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()
    installed = install_shutdown_handlers(loop, service, main_task) if main_task else []

    polling_task = asyncio.create_task(service.run(), name="telegram-polling")
    polling_task.add_done_callback(_log_polling_exit)
    try:
        await mcp.run_stdio_async()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        service.stop()
        polling_task.cancel()
        try:
            await polling_task
        except asyncio.CancelledError:
            pass
        except Exception:
            # Already reported by _log_polling_exit
            pass
        await client.close()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Telegram MCP Bridge: lets agent sessions talk to a human over Telegram",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with settings from the environment / .env
  telegram-mcp-bridge

  # Name this session so it survives restarts
  telegram-mcp-bridge --session-id build-box --agent-label claude

Environment variables:
  TELEGRAM_BOT_TOKEN      - Bot token (required)
  TELEGRAM_CHAT_ID        - Authorized chat ID (required)
  TELEGRAM_MCP_DATA_DIR   - Queue/registry directory (default: ~/.telegram-mcp-bridge/data)
  TELEGRAM_SESSION_ID     - Stable session ID (default: random per start)
  TELEGRAM_MACHINE_LABEL  - Machine label (default: hostname)
  TELEGRAM_AGENT_LABEL    - Agent label (default: agent)
  TELEGRAM_USE_TOPICS     - One forum topic per session (default: false)
        """,
    )
    parser.add_argument("--session-id", help="Stable session ID")
    parser.add_argument("--machine-label", help="Machine label shown in messages")
    parser.add_argument("--agent-label", help="Agent label shown in messages")
    parser.add_argument("--data-dir", help="Directory for queue files and the session registry")
    parser.add_argument(
        "--legacy-tools",
        action="store_true",
        default=None,
        help="Also expose send_message, poll_messages, check_status and wait_for_reply",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    if args.verbose:
        set_console_level(logging.DEBUG)

    try:
        settings = get_settings(
            session_id=args.session_id,
            machine_label=args.machine_label,
            agent_label=args.agent_label,
            data_dir=args.data_dir,
            legacy_tools=args.legacy_tools,
        )
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    add_error_log_file(settings.error_log_file)
    logger.info(
        f"Starting Telegram MCP Bridge (session={settings.session_id}, "
        f"machine={settings.machine_label}, agent={settings.agent_label})"
    )
    if settings.legacy_tools:
        logger.info("  - Legacy tools: ENABLED")
    if settings.use_topics:
        logger.info("  - Forum topic per session: ENABLED")

    try:
        asyncio.run(serve(settings))
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")


if __name__ == "__main__":
    main()
