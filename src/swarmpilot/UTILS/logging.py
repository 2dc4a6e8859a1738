"""
Logging helpers with per-component message prefixes.

Usage:
    from ..UTILS.logging import get_logger

    logger = get_logger(__name__, prefix="Stack")
    logger.info("Deploying web")  # Output: [Stack] Deploying web
"""
import logging
import sys
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s %(message)s"


class StderrHandler(logging.StreamHandler):
    """Stream handler bound to whatever ``sys.stderr`` is when a record is emitted."""

    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value):
        pass


class PrefixedLogger(logging.LoggerAdapter):
    """Logger adapter that adds a prefix to all log messages."""

    def __init__(self, logger: logging.Logger, prefix: str):
        super().__init__(logger, {})
        self.prefix = f"[{prefix}]"

    def process(self, msg, kwargs):
        return f"{self.prefix} {msg}", kwargs


def get_logger(name: str, prefix: Optional[str] = None) -> Union[logging.Logger, PrefixedLogger]:
    """
    Get a logger with an optional prefix.

    Args:
        name: Logger name (typically __name__)
        prefix: Optional prefix added to every message (e.g. "Stack", "Engine")

    Returns:
        Logger instance, wrapped in a prefix adapter if a prefix is given
    """
    base_logger = logging.getLogger(name)
    if prefix:
        return PrefixedLogger(base_logger, prefix)
    return base_logger


def configure_logging(level: str = "INFO") -> None:
    """
    Installs a single stream handler on the package logger.

    Calling it again only adjusts the level.
    """
    package_logger = logging.getLogger("swarmpilot")
    package_logger.setLevel(level.upper())
    if not package_logger.handlers:
        handler = StderrHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(handler)
