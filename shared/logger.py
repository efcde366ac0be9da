"""Logging setup shared by the CLI tools."""

import logging
from typing import Union

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(message)s"
DATE_FORMAT = "[%X]"


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger.

    Args:
        name: Logger name, usually ``__name__``

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def setup_logger(name: str, level: Union[str, int] = "INFO") -> logging.Logger:
    """
    Configure logging for a tool.

    The handler is attached to the top-level package logger so that every
    module logger under it (``tools.build_planner.sizing`` and friends)
    shares the same output. Calling this more than once only updates the level.

    Args:
        name: Name of the calling module
        level: Log level name or number

    Returns:
        The configured package logger
    """
    root_name = name.split(".")[0]
    logger = logging.getLogger(root_name)

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(level)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False

    return logger
