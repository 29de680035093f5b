"""Input validation utilities for Telegram MCP Bridge."""

from typing import Any, Optional, Tuple

MAX_MESSAGE_LENGTH = 4096
MAX_WAIT_SECONDS = 300

# Telegram IDs fit in a signed 64-bit integer
_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1


def validate_chat_id(value: Any, param_name: str = "chat_id") -> Tuple[Optional[int], Optional[str]]:
    """Validate a numeric Telegram chat ID.

    Accepts ints and numeric strings (negative for groups and supergroups).
    Usernames are rejected because incoming updates only carry the numeric ID.

    Returns:
        Tuple of (chat_id, error_message); error_message is None on success
    """
    if isinstance(value, bool):
        return None, f"Invalid {param_name}: Type must be int or string, got bool"
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None, f"Invalid {param_name}: Empty string"
        try:
            value = int(stripped)
        except ValueError:
            return None, f"Invalid {param_name}: must be a numeric chat ID, got {stripped!r}"
    if not isinstance(value, int):
        return None, f"Invalid {param_name}: Type must be int or string, got {type(value).__name__}"
    if not _INT64_MIN <= value <= _INT64_MAX:
        return None, f"Invalid {param_name}: ID out of valid range"
    return value, None


def validate_message_text(
    text: Optional[str], max_length: int = MAX_MESSAGE_LENGTH
) -> Tuple[str, Optional[str]]:
    """Reject blank text and text over ``max_length`` characters."""
    if not text or not text.strip():
        return "", "Message text cannot be empty"
    if len(text) > max_length:
        return "", f"Message text exceeds maximum length of {max_length} characters"

    return text, None


def clamp_seconds(
    value: Any, default: int = 0, minimum: int = 0, maximum: int = MAX_WAIT_SECONDS
) -> int:
    """Coerce a wait/timeout argument to whole seconds within [minimum, maximum].

    Unparseable or missing values fall back to ``default``.
    """
    try:
        seconds = int(float(value)) if value is not None else default
    except (TypeError, ValueError):
        seconds = default
    if not seconds:
        seconds = default
    return max(minimum, min(seconds, maximum))


def validate_since_ts(value: Any) -> Tuple[Optional[int], Optional[str]]:
    """Validate a since_ts argument (unix seconds).

    Returns:
        Tuple of (timestamp or None when absent/zero, error_message)
    """
    if value is None or value == "":
        return None, None
    if isinstance(value, bool):
        return None, "Invalid since_ts: must be a unix timestamp"
    try:
        ts = int(float(value))
    except (TypeError, ValueError):
        return None, "Invalid since_ts: must be a unix timestamp"
    if ts < 0:
        return None, "Invalid since_ts: must not be negative"
    return (ts or None), None
