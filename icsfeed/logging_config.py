"""
Central logging configuration for icsfeed.

Installs a colorized console handler and keeps third-party HTTP and event
loop loggers quiet so icsfeed's own diagnostics stay readable.
"""

import logging
import os
import sys
from typing import Optional

from colorlog import ColoredFormatter

# HH:MM:SS  LEVEL   logger.name: message
# Only the level is colorized.
LOG_FORMAT = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}

VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")

PACKAGE_LOGGERS = (
    "icsfeed",
    "icsfeed.ics",
    "icsfeed.sources",
    "icsfeed.core",
)


def configure_logging(level_name: Optional[str] = None, debug_mode: bool = False) -> None:
    """
    Configure console logging for icsfeed.

    Args:
        level_name: Root level name (case-insensitive); INFO when None or unknown
        debug_mode: Whether to enable debug logging for icsfeed modules

    Environment Variables:
        ICSFEED_DEBUG: Set to '1', 'true', 'yes' or 'on' to force debug logging
        ICSFEED_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("ICSFEED_DEBUG", "").lower() in ("1", "true", "yes", "on")
    env_log_level = os.getenv("ICSFEED_LOG_LEVEL", "").upper()
    final_debug = debug_mode or env_debug

    root_level = logging.DEBUG if final_debug else logging.INFO
    if level_name and level_name.upper() in VALID_LEVELS and not final_debug:
        root_level = getattr(logging, level_name.upper())
    if env_log_level in VALID_LEVELS:
        root_level = getattr(logging, env_log_level)

    root = logging.getLogger()
    # Only configure a handler if none is present to avoid duplicate output
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt="%H:%M:%S", log_colors=LOG_COLORS))
        root.addHandler(handler)
    root.setLevel(root_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    package_level = logging.DEBUG if final_debug else max(root_level, logging.INFO)
    for name in PACKAGE_LOGGERS:
        logging.getLogger(name).setLevel(package_level)

    logging.getLogger(__name__).debug(
        "Logging initialized at level %s", logging.getLevelName(root_level)
    )


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in ("icsfeed", *NOISY_LOGGERS):
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status
