"""Telegram control commands answered by the bridge itself.

These never reach an agent queue. The list is also registered with the Bot API
so it shows up in the Telegram command menu.
"""

import time
from typing import Dict, List, Optional

from .models import BridgeSession, Session

DEFAULT_COMMANDS = [
    {"command": "status", "description": "Bridge identity and live sessions"},
    {"command": "sessions", "description": "All known sessions with liveness"},
    {"command": "help", "description": "Show bridge commands"},
]

STATUS_COMMANDS = {"start", "status"}
SESSIONS_COMMAND = "sessions"
HELP_COMMAND = "help"


def get_bot_commands() -> List[Dict[str, str]]:
    """Return the list of bot commands with descriptions."""
    return [dict(cmd) for cmd in DEFAULT_COMMANDS]


def parse_command(text: str) -> Optional[str]:
    """Return the bridge command named by ``text``, or None for ordinary text.

    Accepts ``/cmd`` and ``/cmd@botname``; anything after the command word
    makes it ordinary text again so ``/status of the build?`` reaches agents.
    """
    stripped = text.strip()
    if not stripped.startswith("/") or " " in stripped:
        return None
    name = stripped[1:].split("@", 1)[0].lower()
    if name in STATUS_COMMANDS or name in (SESSIONS_COMMAND, HELP_COMMAND):
        return name
    return None


def format_status(chat_id: str | int, bridge: BridgeSession, active: Dict[str, Session]) -> str:
    """Reply to /start and /status."""
    session_list = "\n".join(
        f"• `{sid}` on *{s.machine}* ({s.agent})" for sid, s in active.items()
    ) or "None"
    return (
        f"🔗 *Telegram MCP Bridge*\n"
        f"Chat ID: `{chat_id}`\n"
        f"Answering session: `{bridge.session_id}`\n\n"
        f"*Active sessions:*\n{session_list}"
    )


def format_sessions(
    sessions: Dict[str, Session], liveness_window: int, now: Optional[int] = None
) -> str:
    """Reply to /sessions: every known session, live or not."""
    now = int(time.time()) if now is None else now
    lines = []
    for sid, s in sorted(sessions.items(), key=lambda item: -item[1].last_seen):
        status = "🟢" if s.is_live(now, liveness_window) else "🔴"
        ago = now - s.last_seen
        lines.append(f"{status} `{sid}` *{s.machine}* ({s.agent}) - {ago}s ago")
    return "*Sessions:*\n" + ("\n".join(lines) or "None")


def format_help() -> str:
    lines = [f"/{cmd['command']} - {cmd['description']}" for cmd in DEFAULT_COMMANDS]
    return (
        "*Bridge commands*\n"
        + "\n".join(lines)
        + "\n\nAny other message is delivered to the running agent sessions."
    )
