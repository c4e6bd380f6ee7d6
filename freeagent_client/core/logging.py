"""Logging helpers for the client.

Every module logs through ``get_logger(__name__)`` under the
``freeagent_client`` hierarchy. The library never configures the root
logger; ``setup_logging`` is an opt-in console handler for scripts.
"""

import logging
import sys
from typing import Any, Optional

from freeagent_client.core.config import settings

ROOT_LOGGER_NAME = "freeagent_client"
CONSOLE_HANDLER_NAME = "freeagent_client.console"


def setup_logging(level: Optional[int] = None) -> logging.Logger:
    """Attach a console handler to the client's logger.

    Calling it again replaces the handler rather than adding a second one.
    Handlers installed by the host application are left in place.

    Args:
        level: Log level. Defaults to DEBUG when ``settings.debug`` is set,
            INFO otherwise.

    Returns:
        The ``freeagent_client`` logger
    """
    if level is None:
        level = logging.DEBUG if settings.debug else logging.INFO

    client_logger = logging.getLogger(ROOT_LOGGER_NAME)
    client_logger.setLevel(level)
    for handler in client_logger.handlers[:]:
        if handler.get_name() == CONSOLE_HANDLER_NAME:
            client_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.set_name(CONSOLE_HANDLER_NAME)
    console_handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    client_logger.addHandler(console_handler)

    # Request-level chatter from the HTTP stack
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return client_logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``freeagent_client`` hierarchy.

    Module names already inside the package (``__name__``) are used as is;
    anything else is nested under the package logger.
    """
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Appends ``key=value`` context to every message.

    Used per fetch session and per report run:
        LoggerAdapter(logger, {"endpoint": "contacts"}).info("Fetched page")
        # "Fetched page - endpoint=contacts"
    """

    def process(self, msg: str, kwargs: Any) -> tuple[str, Any]:
        extra = " - ".join(f"{k}={v}" for k, v in self.extra.items())
        return f"{msg} - {extra}" if extra else msg, kwargs
