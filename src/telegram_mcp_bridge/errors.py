"""Error handling utilities for Telegram MCP Bridge."""

import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from pythonjsonlogger import jsonlogger

LOGGER_NAME = "telegram_mcp_bridge"


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    MSG = "MSG"
    QUEUE = "QUEUE"
    SESSION = "SESSION"
    POLL = "POLL"
    TRANSPORT = "TRANSPORT"
    GENERAL = "GEN"


class TelegramAPIError(Exception):
    """Raised when the Telegram Bot API answers with ok=false."""

    def __init__(self, description: str, error_code: int | None = None):
        super().__init__(f"Telegram API error: {description}")
        self.description = description
        self.error_code = error_code

    @property
    def is_parse_error(self) -> bool:
        """True when Telegram rejected the message formatting."""
        return "can't parse entities" in self.description.lower()


def setup_logger(name: str = LOGGER_NAME) -> logging.Logger:
    """Return the bridge logger, attaching the console handler on first use.

    The console is stderr: stdout carries the MCP stdio transport.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s - %(message)s"))
    logger.addHandler(console)
    return logger


def add_error_log_file(log_file_path: Path, name: str = LOGGER_NAME) -> bool:
    """Attach a JSON file handler for structured error logging.

    Args:
        log_file_path: Where to append JSON error records
        name: Logger name

    Returns:
        True if the handler was attached, False if the file is not writable
    """
    logger = logging.getLogger(name)
    target = log_file_path.resolve()
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename).resolve() == target:
            return True

    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, mode="a", encoding="utf-8")
    except OSError as e:
        # If we can't write to the log file, just use console
        logger.warning(f"Error log file unavailable ({log_file_path}): {e}")
        return False

    file_handler.setLevel(logging.ERROR)
    json_formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    file_handler.setFormatter(json_formatter)
    logger.addHandler(file_handler)
    return True


def set_console_level(level: int, name: str = LOGGER_NAME) -> None:
    """Change the level of the console handler (e.g. for --verbose)."""
    for handler in logging.getLogger(name).handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)


# Global logger instance
logger = setup_logger()


def _error_code(function_name: str, category: Optional[Union[ErrorCategory, str]]) -> str:
    if isinstance(category, ErrorCategory):
        prefix = category.value
    else:
        prefix = category or ErrorCategory.GENERAL.value
    # Stable across runs, unlike hash() on str
    checksum = sum(ord(c) * (i + 1) for i, c in enumerate(function_name))
    return f"{prefix}-ERR-{checksum % 1000:03d}"


def log_and_format_error(
    function_name: str,
    error: Exception,
    category: Optional[Union[ErrorCategory, str]] = None,
    user_message: Optional[str] = None,
    **context: Any,
) -> str:
    """Log an unexpected failure with its traceback and return a short coded message.

    The code depends only on ``category`` and ``function_name``, so the same
    tool failing twice reports the same code and can be found in the log.

    Args:
        function_name: Tool or operation that failed
        error: The exception that was raised
        category: Code prefix, ``GEN`` when omitted
        user_message: Text to show instead of the generic message
        **context: Extra fields for the log line (e.g. session_id="s-1a2b3c")
    """
    error_code = _error_code(function_name, category)
    details = ", ".join(f"{k}={v}" for k, v in context.items())
    where = f"{function_name} ({details})" if details else function_name
    logger.error(f"Error in {where} - Code: {error_code}", exc_info=error)

    if user_message:
        return f"{user_message} (code: {error_code})"
    return f"An error occurred (code: {error_code}). Check logs for details."


# Substring of the lowercased Telegram description -> readable explanation
_TELEGRAM_ERROR_HINTS = (
    ("chat not found", "Chat not found. Please verify the chat ID."),
    ("bot was blocked", "Bot was blocked by the user."),
    ("not enough rights", "Bot doesn't have permission to perform this action."),
    ("message thread not found", "Forum topic not found. It may have been deleted."),
    ("too many requests", "Rate limited by Telegram. Please try again later."),
    ("unauthorized", "Bot token is invalid or expired."),
)


def format_telegram_error(error: Exception) -> str:
    """Turn a Telegram or network error into a one-line explanation for the log."""
    text = str(error)
    lowered = text.lower()
    for needle, hint in _TELEGRAM_ERROR_HINTS:
        if needle in lowered:
            return hint
    return text
