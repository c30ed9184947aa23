"""Configuration module for pawfeeds."""

from pawfeeds.config.loader import get_config_path, load_config
from pawfeeds.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
