"""Configuration management for Telegram MCP Bridge."""

import secrets
import socket
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import BridgeSession
from .validation import validate_chat_id


def _default_session_id() -> str:
    return f"s-{secrets.token_hex(3)}"


def _default_machine_label() -> str:
    return socket.gethostname()[:20]


class Settings(BaseSettings):
    """Bridge settings loaded from environment variables.

    Built once at process entry and passed to the transport client, queue,
    registry and polling service. Nothing else reads the environment.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TELEGRAM_",
        extra="ignore",
        populate_by_name=True,
    )

    bot_token: str = Field(
        ...,
        description="Telegram Bot API token from @BotFather",
    )
    chat_id: str = Field(
        ...,
        description="The only chat allowed to talk to the bridge (user, group or supergroup ID)",
    )
    api_base_url: str = Field(
        default="https://api.telegram.org",
        description="Telegram Bot API base URL",
    )
    data_dir: Path = Field(
        default=Path("~/.telegram-mcp-bridge/data"),
        validate_default=True,
        validation_alias=AliasChoices("TELEGRAM_MCP_DATA_DIR", "data_dir"),
        description="Directory holding queue files and the session registry",
    )
    queue_file: Path | None = Field(
        default=None,
        validation_alias=AliasChoices("TELEGRAM_MCP_QUEUE_FILE", "queue_file"),
        description="Legacy single-session queue file. Overrides the per-session queue path.",
    )
    max_history: int = Field(
        default=200,
        ge=0,
        validation_alias=AliasChoices("TELEGRAM_MCP_MAX_HISTORY", "max_history"),
        description="Delivered messages kept per queue for debugging",
    )
    poll_interval_ms: int = Field(
        default=2000,
        ge=0,
        validation_alias=AliasChoices("TELEGRAM_POLL_INTERVAL", "poll_interval_ms"),
        description="Pause between long-poll calls in milliseconds",
    )
    polling_timeout: int = Field(
        default=2,
        ge=0,
        description="Server-side long polling timeout per getUpdates call, in seconds",
    )
    liveness_window: int = Field(
        default=600,
        gt=0,
        description="Seconds without a heartbeat after which a session is no longer live",
    )
    session_id: str = Field(
        default_factory=_default_session_id,
        description="Stable session ID. Random per process start when unset.",
    )
    machine_label: str = Field(
        default_factory=_default_machine_label,
        description="Machine label shown in outgoing messages",
    )
    agent_label: str = Field(
        default="agent",
        description="Agent label shown in outgoing messages",
    )
    auto_start: bool = Field(default=True, description="Ask agents to greet at session start")
    auto_end: bool = Field(default=True, description="Ask agents to send a final summary")
    auto_summary: bool = Field(default=True, description="Ask agents to summarize new work")
    auto_poll: bool = Field(default=True, description="Ask agents to poll for input periodically")
    legacy_tools: bool = Field(
        default=False,
        description="Also expose send_message, poll_messages, check_status and wait_for_reply",
    )
    use_topics: bool = Field(
        default=False,
        description="Give each session its own forum topic in a supergroup",
    )
    topic_id: int | None = Field(
        default=None,
        description="Fixed forum topic (message_thread_id) for this session",
    )
    register_commands: bool = Field(
        default=True,
        description="Register the bridge commands in the Telegram command menu on start",
    )
    api_max_retries: int = Field(
        default=0,
        ge=0,
        description="Retries for retryable Telegram API failures within one call",
    )

    @field_validator("chat_id", mode="before")
    @classmethod
    def normalize_chat_id(cls, v):
        """Normalize the chat ID to the string form of an integer ID."""
        value, error = validate_chat_id(v)
        if error:
            raise ValueError(error)
        return str(value)

    @field_validator("data_dir", "queue_file")
    @classmethod
    def expand_path(cls, v: Path | None) -> Path | None:
        return v.expanduser() if v is not None else None

    def bridge_session(self) -> BridgeSession:
        """Identity of this process as seen by the facade and the polling loop."""
        return BridgeSession(
            session_id=self.session_id,
            machine=self.machine_label,
            agent=self.agent_label,
            topic_id=self.topic_id,
        )

    @property
    def own_queue_file(self) -> Path:
        """Queue file of this process: the legacy file if set, else the per-session file."""
        return self.queue_file or self.data_dir / f"queue-{self.session_id}.json"

    @property
    def error_log_file(self) -> Path:
        return self.data_dir / "bridge_errors.log"


def get_settings(**overrides) -> Settings:
    """Get application settings, loading from environment.

    Keyword overrides (e.g. from the command line) win over the environment.
    """
    return Settings(**{k: v for k, v in overrides.items() if v is not None})
