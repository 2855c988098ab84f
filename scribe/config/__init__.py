"""Configuration module for scribe."""

from scribe.config.loader import get_settings_path, load_config
from scribe.config.schema import Config

__all__ = ["Config", "load_config", "get_settings_path"]
