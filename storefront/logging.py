"""
Logging setup for the cart engine.

Usage:
    from storefront.logging import get_logger
    logger = get_logger(__name__)

    logger.info("Cart refreshed")

Handlers are attached once, on import, unless the host application has
already configured the root logger.
"""

import logging
import os
import sys
from functools import cache

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FORMAT_SIMPLE = "[%(levelname)s] %(name)s: %(message)s"

# Transport libraries log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def _level_from_env() -> int:
    name = os.environ.get("LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: int | None = None, force: bool = False) -> None:
    """
    Attach a stdout handler to the root logger.

    Args:
        level: Log level; LOG_LEVEL from the environment when omitted
        force: Replace handlers the host application already installed
    """
    root = logging.getLogger()
    if root.handlers and not force:
        return
    for existing in list(root.handlers):
        root.removeHandler(existing)

    level = _level_from_env() if level is None else level
    fmt = LOG_FORMAT_SIMPLE if os.environ.get("STOREFRONT_ENV") == "production" else LOG_FORMAT

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt))
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


configure_logging()


@cache
def get_logger(name: str) -> logging.Logger:
    """Logger for a module; names outside the package are nested under "storefront"."""
    if name != "storefront" and not name.startswith("storefront."):
        name = f"storefront.{name}"
    return logging.getLogger(name)


_CONTROL_ESCAPES = str.maketrans({"\n": "\\n", "\r": "\\r", "\t": "\\t", "\x00": None})


def sanitize_id_for_logging(id_value: object | None, max_length: int = 32) -> str:
    """
    Render an identifier (product id, line key) safe for a single log line.

    Control characters are escaped so a crafted id cannot forge entries;
    long values are cut to max_length.
    """
    if id_value is None or id_value == "":
        return "N/A"
    text = str(id_value).translate(_CONTROL_ESCAPES)
    return text if len(text) <= max_length else f"{text[:max_length]}..."


__all__ = [
    "LOG_FORMAT",
    "LOG_FORMAT_SIMPLE",
    "configure_logging",
    "get_logger",
    "sanitize_id_for_logging",
]
