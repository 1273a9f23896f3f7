"""Configuration module for chatsync."""

from chatsync.config.loader import load_config, get_config_path
from chatsync.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
