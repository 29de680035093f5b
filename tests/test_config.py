"""Tests for configuration loading."""

import re
from pathlib import Path

import pytest
from pydantic import ValidationError

from telegram_mcp_bridge.config import Settings, get_settings


@pytest.fixture
def clean_env(monkeypatch, mock_settings):
    for name in (
        "TELEGRAM_MCP_DATA_DIR",
        "TELEGRAM_MCP_QUEUE_FILE",
        "TELEGRAM_MCP_MAX_HISTORY",
        "TELEGRAM_POLL_INTERVAL",
        "TELEGRAM_SESSION_ID",
        "TELEGRAM_LEGACY_TOOLS",
        "TELEGRAM_AUTO_POLL",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, clean_env):
        settings = Settings(_env_file=None)

        assert settings.bot_token == "test_bot_token"
        assert settings.chat_id == "123456789"
        assert settings.max_history == 200
        assert settings.poll_interval_ms == 2000
        assert settings.polling_timeout == 2
        assert settings.liveness_window == 600
        assert settings.agent_label == "agent"
        assert settings.legacy_tools is False
        assert settings.auto_poll is True
        assert re.fullmatch(r"s-[0-9a-f]{6}", settings.session_id)
        assert 0 < len(settings.machine_label) <= 20
        assert settings.data_dir == Path("~/.telegram-mcp-bridge/data").expanduser()

    def test_session_ids_differ_per_start(self, clean_env):
        ids = {Settings(_env_file=None).session_id for _ in range(5)}
        assert len(ids) > 1

    def test_environment_names(self, clean_env, tmp_path):
        clean_env.setenv("TELEGRAM_MCP_DATA_DIR", str(tmp_path))
        clean_env.setenv("TELEGRAM_MCP_MAX_HISTORY", "50")
        clean_env.setenv("TELEGRAM_POLL_INTERVAL", "500")
        clean_env.setenv("TELEGRAM_SESSION_ID", "build-box")
        clean_env.setenv("TELEGRAM_AUTO_POLL", "false")
        clean_env.setenv("TELEGRAM_LEGACY_TOOLS", "true")

        settings = Settings(_env_file=None)

        assert settings.data_dir == tmp_path
        assert settings.max_history == 50
        assert settings.poll_interval_ms == 500
        assert settings.session_id == "build-box"
        assert settings.auto_poll is False
        assert settings.legacy_tools is True
        assert settings.own_queue_file == tmp_path / "queue-build-box.json"
        assert settings.error_log_file == tmp_path / "bridge_errors.log"

    def test_legacy_queue_file(self, clean_env, tmp_path):
        clean_env.setenv("TELEGRAM_MCP_QUEUE_FILE", str(tmp_path / "queue.json"))
        assert Settings(_env_file=None).own_queue_file == tmp_path / "queue.json"

    def test_negative_chat_id(self, clean_env):
        clean_env.setenv("TELEGRAM_CHAT_ID", "-1001234567890")
        assert Settings(_env_file=None).chat_id == "-1001234567890"

    def test_integer_chat_id(self, clean_env):
        assert Settings(_env_file=None, chat_id=42).chat_id == "42"

    def test_username_chat_id_rejected(self, clean_env):
        clean_env.setenv("TELEGRAM_CHAT_ID", "@someone")
        with pytest.raises(ValidationError, match="numeric chat ID"):
            Settings(_env_file=None)

    def test_missing_token(self, clean_env):
        clean_env.delenv("TELEGRAM_BOT_TOKEN")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_bridge_session(self, clean_env):
        settings = Settings(_env_file=None, session_id="s-abc123", machine_label="box", topic_id=9)
        session = settings.bridge_session()

        assert session.label == "[box/agent]"
        assert session.topic_name == "box/agent (s-abc123)"
        assert session.topic_id == 9

    def test_get_settings_ignores_unset_overrides(self, clean_env):
        settings = get_settings(session_id=None, agent_label="claude")

        assert settings.agent_label == "claude"
        assert settings.session_id.startswith("s-")
