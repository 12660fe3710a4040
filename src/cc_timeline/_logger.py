"""Package logging.

Every module logs through ``get_logger(__name__)``, below one ``cc_timeline``
logger that owns the stderr handler. Its level comes from
``CC_TIMELINE_LOG_LEVEL`` (default WARNING); ``cc-timeline --verbose``
raises it to DEBUG.
"""

import logging
import os
import sys

LOGGER_NAME = "cc_timeline"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"


def parse_level(value: str | int) -> int:
    """Level number for a name like ``"debug"``; unknown names mean WARNING."""
    if isinstance(value, int):
        return value
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else logging.WARNING


def configure_logging(level: str | int | None = None) -> logging.Logger:
    """Set the package level and attach the stderr handler once.

    ``level`` wins over the environment.
    """
    root = logging.getLogger(LOGGER_NAME)
    if level is None:
        level = os.getenv("CC_TIMELINE_LOG_LEVEL", "WARNING")
    root.setLevel(parse_level(level))
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
        root.addHandler(handler)
    return root


def get_logger(name: str | None = None) -> logging.Logger:
    """Logger for a module of the package; ``None`` gives the package logger."""
    if name is None or name == LOGGER_NAME:
        return logging.getLogger(LOGGER_NAME)
    if not name.startswith(f"{LOGGER_NAME}."):
        name = f"{LOGGER_NAME}.{name}"
    return logging.getLogger(name)


configure_logging()
