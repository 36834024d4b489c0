"""Logging utilities for identikit.

All operations log warnings instead of raising exceptions for non-fatal errors.
"""

from __future__ import annotations

import logging
import sys

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from .config import LogSettings


class _LoggerHolder:
    """Holder for the global logger instance."""

    instance: logging.Logger | None = None


def get_logger() -> logging.Logger:
    """Get the identikit logger instance.

    Returns
    -------
    logging.Logger
        The identikit logger configured with a stream handler.
    """
    if _LoggerHolder.instance is None:
        logger = logging.getLogger("identikit")
        logger.setLevel(logging.WARNING)

        # Only add handler if none exists
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(logging.DEBUG)
            formatter = logging.Formatter("%(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        _LoggerHolder.instance = logger

    return _LoggerHolder.instance


def set_level(level: int | str) -> None:
    """Set the logging level.

    Parameters
    ----------
    level : int or str
        The logging level (e.g., logging.DEBUG, "DEBUG").
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    get_logger().setLevel(level)


def configure(settings: LogSettings) -> logging.Logger:
    """Apply level and format from log settings.

    Parameters
    ----------
    settings : LogSettings
        The logging section of the identikit settings.

    Returns
    -------
    logging.Logger
        The configured identikit logger.
    """
    logger = get_logger()
    set_level(settings.level)
    formatter = logging.Formatter(settings.format)
    for handler in logger.handlers:
        handler.setFormatter(formatter)
    return logger


def log_listener_error(listener: object, exc: BaseException) -> None:
    """Log an auth-state listener failure with standardized format.

    Parameters
    ----------
    listener : object
        The listener callable that raised.
    exc : BaseException
        The exception that was raised.
    """
    name = getattr(listener, "__qualname__", None) or repr(listener)
    get_logger().warning("Auth state listener %s failed: %s", name, exc, exc_info=exc)
