"""
Logging setup shared by every quiztaker module.

One stdout handler sits on the "quiztaker" logger; modules get children of
it, so each record carries its module path and is written once.
"""

import logging
import sys

from quiztaker.config import settings

ROOT_LOGGER = "quiztaker"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Kept at WARNING unless LOG_LEVEL is DEBUG
CHATTY_LOGGERS = ("httpx", "httpcore")


def _level(name: str | None = None) -> int:
    return getattr(logging, (name or settings.log_level).upper(), logging.INFO)


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if root.handlers:
        return root

    root.setLevel(_level())
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)

    if root.level > logging.DEBUG:
        for chatty in CHATTY_LOGGERS:
            logging.getLogger(chatty).setLevel(logging.WARNING)
    return root


def setup_logger(name: str, level: str | None = None) -> logging.Logger:
    """
    Return a logger in the quiztaker hierarchy.

    Args:
        name: Logger name (usually __name__)
        level: Level for this logger only, e.g. "DEBUG" (default: LOG_LEVEL)

    Returns:
        Configured logger instance
    """
    _configure_root()
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(_level(level))
    return logger
