"""Settings loader.

Reads settings from <home>/config.yaml or falls back to defaults. The API
key only comes from the environment.
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .constants import (
    CONFIG_FILENAME,
    DEFAULT_HOME_DIRNAME,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MAX_TOOL_ROUNDS,
    DEFAULT_MODEL,
)
from .errors import ConfigError


class Settings(BaseModel):
    """Runtime settings."""

    model_config = ConfigDict(extra="forbid")

    model: str = DEFAULT_MODEL
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0)
    max_tool_rounds: int = Field(default=DEFAULT_MAX_TOOL_ROUNDS, ge=1)
    stream: bool = True
    queue_size: int = Field(default=0, ge=0)  # 0 = unbounded
    system_prompt: str = ""
    log_level: str = "INFO"
    api_key: str | None = Field(default=None, repr=False)


def default_home() -> Path:
    """AGNT_HOME if set, else ~/.agnt."""
    if env_path := os.environ.get("AGNT_HOME"):
        return Path(env_path)
    return Path.home() / DEFAULT_HOME_DIRNAME


def load_settings(home: Path) -> Settings:
    """Load settings from <home>/config.yaml.

    Settings file format:
    ```
    model: claude-3-5-sonnet-20241022
    max_tokens: 4096
    max_tool_rounds: 10
    stream: true
    system_prompt: "You maintain the user's knowledge graph."
    ```

    Returns defaults overridden by the file, with api_key taken from
    ANTHROPIC_API_KEY.

    Raises:
        ConfigError: the file is not valid YAML or holds unknown/invalid keys.
    """
    settings_path = home / CONFIG_FILENAME
    user_settings: dict = {}

    if settings_path.exists():
        try:
            user_settings = yaml.safe_load(settings_path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {settings_path}: {e}") from e
        if not isinstance(user_settings, dict):
            raise ConfigError(f"{settings_path} must contain a mapping")
        if "api_key" in user_settings:
            raise ConfigError("api_key is read from ANTHROPIC_API_KEY, not the settings file")

    if api_key := os.environ.get("ANTHROPIC_API_KEY"):
        user_settings["api_key"] = api_key

    try:
        return Settings.model_validate(user_settings)
    except ValidationError as e:
        raise ConfigError(f"invalid settings in {settings_path}: {e}") from e
