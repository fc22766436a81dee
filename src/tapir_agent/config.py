"""
Configuration management for tapir-agent

Uses pydantic-settings for environment variable parsing and validation.
Values come from, highest priority first: environment variables, a local
.env file, and the JSON config file (~/.tapir/config.json or ``-c path``).
"""

import json
import os
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

logger = structlog.get_logger()

DEFAULT_CONTEXT_WINDOW = 200_000
DEFAULT_INPUT_COST_PER_M = 3.0
DEFAULT_OUTPUT_COST_PER_M = 15.0


def default_home_dir() -> Path:
    return Path(os.environ.get("TAPIR_HOME", "~/.tapir")).expanduser()


def default_config_path() -> Path:
    return default_home_dir() / "config.json"


class ModelInfo(BaseModel):
    """Pricing and limits for one model, from the config file's ``_models`` table."""

    context: int = DEFAULT_CONTEXT_WINDOW
    max_output: int = 16384
    input_cost_per_m: float = DEFAULT_INPUT_COST_PER_M
    output_cost_per_m: float = DEFAULT_OUTPUT_COST_PER_M
    extended_thinking: bool = False
    notes: str = ""


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TAPIR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # API
    api_key: str = Field(
        default="",
        validation_alias="anthropic_api_key",
        description="Anthropic API key",
    )
    api_url: str = "https://api.anthropic.com/v1/messages"

    # Model
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = Field(default=16384, gt=0)
    thinking_budget: int = Field(default=0, ge=0, description="Extended thinking budget, 0 disables")
    models: dict[str, ModelInfo] = Field(default_factory=dict, validation_alias="_models")

    # Paths
    home_dir: Path = Field(default_factory=default_home_dir)
    working_dir: Path = Field(default_factory=Path.cwd)

    # Logging
    log_level: str = "WARNING"

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.strip().upper() or "WARNING"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Config file values arrive as init kwargs; the environment overrides them.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @classmethod
    def load(cls, config_path: Path | None = None) -> "Settings":
        """Load settings, reading the JSON config file if it exists."""
        path = Path(config_path).expanduser() if config_path else default_config_path()
        return cls(**read_config_file(path))

    @property
    def session_dir(self) -> Path:
        """Per-project session directory: the cwd with ``/`` replaced by ``-``."""
        encoded = str(self.working_dir).replace("/", "-")
        return self.home_dir / "sessions" / encoded

    @property
    def agent_dir(self) -> Path:
        """Global directory for SYSTEM.md, APPEND_SYSTEM.md and AGENTS.md."""
        return self.home_dir / "agent"

    @property
    def model_info(self) -> ModelInfo | None:
        return self.models.get(self.model)

    @property
    def context_window(self) -> int:
        info = self.model_info
        return info.context if info else DEFAULT_CONTEXT_WINDOW


def read_config_file(path: Path) -> dict[str, Any]:
    """Read the JSON config file; problems are logged and yield an empty config."""
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Cannot read config file", path=str(path), error=str(e))
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file is not a JSON object", path=str(path))
        return {}
    return data
