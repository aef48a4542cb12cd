"""Logging helpers for the cache service."""

import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def setup_logging(level: str = "INFO", fmt: Optional[str] = None) -> None:
    """Configure the root ``llmcache`` logger once.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ...).
        fmt: Optional format string, defaults to LOG_FORMAT.
    """
    global _configured

    root = logging.getLogger("llmcache")
    root.setLevel(level.upper())

    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt or LOG_FORMAT))
    root.addHandler(handler)
    root.propagate = True
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a module logger."""
    return logging.getLogger(name)
