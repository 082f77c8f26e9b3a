"""Configuration loading."""

from .loader import DEFAULT_CONFIG_PATH, get_default_config, load_config, setup_logging

__all__ = ["DEFAULT_CONFIG_PATH", "get_default_config", "load_config", "setup_logging"]
