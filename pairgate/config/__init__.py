"""Configuration module for pairgate."""

from pairgate.config.loader import load_config, get_config_path
from pairgate.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
