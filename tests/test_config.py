"""
Tests for configuration module.
"""

import json
import os
from pathlib import Path
from unittest.mock import patch

from tapir_agent.config import DEFAULT_CONTEXT_WINDOW, Settings, read_config_file


def test_settings_default_values(tmp_path):
    """Test that settings have sensible defaults."""
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings.load(tmp_path / "none.json")

        assert settings.api_key == ""
        assert settings.model == "claude-sonnet-4-20250514"
        assert settings.max_tokens == 16384
        assert settings.thinking_budget == 0
        assert settings.api_url == "https://api.anthropic.com/v1/messages"
        assert settings.log_level == "WARNING"
        assert settings.context_window == DEFAULT_CONTEXT_WINDOW


def test_settings_from_env():
    """Test loading settings from environment variables."""
    env = {
        "ANTHROPIC_API_KEY": "sk-test",
        "TAPIR_MODEL": "claude-opus-4",
        "TAPIR_MAX_TOKENS": "4096",
        "TAPIR_THINKING_BUDGET": "2048",
        "TAPIR_LOG_LEVEL": "debug",
    }

    with patch.dict(os.environ, env, clear=True):
        settings = Settings()

        assert settings.api_key == "sk-test"
        assert settings.model == "claude-opus-4"
        assert settings.max_tokens == 4096
        assert settings.thinking_budget == 2048
        assert settings.log_level == "DEBUG"


def test_env_overrides_config_file(tmp_path):
    """Test that the environment wins over the JSON config file."""
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"api_key": "from-file", "model": "file-model", "max_tokens": 1000}))

    with patch.dict(os.environ, {"TAPIR_MODEL": "env-model"}, clear=True):
        settings = Settings.load(config)

        assert settings.model == "env-model"
        assert settings.api_key == "from-file"
        assert settings.max_tokens == 1000


def test_models_table(tmp_path):
    """Test the per-model pricing and context table."""
    config = tmp_path / "config.json"
    config.write_text(json.dumps({
        "model": "big",
        "_models": {"big": {"context": 1_000_000, "input_cost_per_m": 6, "notes": "long context"}},
    }))

    with patch.dict(os.environ, {}, clear=True):
        settings = Settings.load(config)

        assert settings.model_info.notes == "long context"
        assert settings.model_info.output_cost_per_m == 15.0
        assert settings.context_window == 1_000_000


def test_unreadable_config_is_ignored(tmp_path):
    """Test that a broken config file yields an empty config."""
    config = tmp_path / "config.json"
    config.write_text("{broken")
    assert read_config_file(config) == {}

    config.write_text("[1, 2]")
    assert read_config_file(config) == {}
    assert read_config_file(tmp_path / "missing.json") == {}


def test_session_dir_encodes_working_dir(tmp_path):
    """Test the per-project session directory name."""
    with patch.dict(os.environ, {"TAPIR_HOME": str(tmp_path)}, clear=True):
        settings = Settings(working_dir=Path("/home/user/project"))

        assert settings.session_dir == tmp_path / "sessions" / "-home-user-project"
        assert settings.agent_dir == tmp_path / "agent"
