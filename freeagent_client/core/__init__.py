"""Core client modules."""

from freeagent_client.core.config import Settings, settings
from freeagent_client.core.logging import LoggerAdapter, get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "LoggerAdapter",
    "get_logger",
    "setup_logging",
]
