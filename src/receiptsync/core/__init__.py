"""Core utilities and configuration."""

from .config import Settings, get_settings
from .logging_config import LoggingConfig, setup_logging

__all__ = ["LoggingConfig", "Settings", "get_settings", "setup_logging"]
