"""Configuration loading utilities."""

import json
import os
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from chatsync.config.schema import Config

SERVER_URL_ENV = "CHATSYNC_SERVER_URL"


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".chatsync" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()

    config = Config()
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            config = Config.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Failed to load config from {}: {}", path, e)
            logger.warning("Using default configuration.")

    server_url = os.environ.get(SERVER_URL_ENV, "").strip()
    if server_url:
        config.server.api_url = server_url
        config.server.socket_url = server_url

    return config


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(by_alias=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
