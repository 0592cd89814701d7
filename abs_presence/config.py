import json
from pathlib import Path
from typing import Optional, Union
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_PATH = "config.json"


class ConfigError(Exception):
    """Raised when the config file is missing or invalid. Fatal at startup."""


class Settings(BaseSettings):
    # Discord
    discord_client_id: str = Field(min_length=1)

    # Audiobookshelf
    audiobookshelf_url: str = Field(min_length=1)
    audiobookshelf_token: str = Field(min_length=1)

    # Presence
    show_chapters: bool = False
    show_paused: bool = False
    use_abs_cover: bool = False  # False = prefer re-hosting covers on Imgur
    imgur_client_id: Optional[str] = None

    # Loop
    poll_interval_seconds: float = 15
    reconnect_backoff_seconds: float = 5
    pause_threshold_seconds: float = 2.0
    # Applied to wall-clock time between real offset changes; the server lags slightly behind the player.
    playback_rate: float = 0.95
    request_timeout_seconds: float = 30

    # System
    log_level: str = "INFO"
    http_server_enabled: bool = False
    http_server_port: int = 8080
    http_server_token: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("audiobookshelf_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("imgur_client_id", "http_server_token")
    @classmethod
    def _blank_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


def load_settings(path: Union[str, Path]) -> Settings:
    """
    Reads the JSON config file. Values in the file win over environment variables.
    """
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config in {path}: {e}") from e
