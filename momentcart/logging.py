"""
Logging setup for the cart core.

Usage:
    from momentcart.logging import get_logger
    logger = get_logger(__name__)

    logger.info(f"Cart loaded ({summarize_cart_for_logging(state)})")

The root logger is configured lazily on the first ``get_logger`` call.
``MOMENTCART_LOG_LEVEL`` (falling back to ``LOG_LEVEL``) picks the level;
``MOMENTCART_ENV=production`` switches to the compact format.
"""

import logging
import os
import sys
from functools import cache
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FORMAT_SIMPLE = "%(levelname)s - %(name)s - %(message)s"

# Chatty transport loggers used by the Upstash REST client
_QUIET_LOGGERS = ("httpx", "httpcore")

_configured = False


def _resolve_level(level: Optional[str]) -> int:
    name = level or os.environ.get("MOMENTCART_LOG_LEVEL") or os.environ.get("LOG_LEVEL", "INFO")
    return getattr(logging, name.upper(), logging.INFO)


def configure_logging(level: Optional[str] = None, env: Optional[str] = None) -> None:
    """
    Attach a stdout handler to the root logger once.

    Leaves the root logger alone when the host application already
    installed handlers.
    """
    global _configured
    if _configured:
        return
    _configured = True

    root = logging.getLogger()
    if root.handlers:
        return

    resolved = _resolve_level(level)
    env = env or os.environ.get("MOMENTCART_ENV")

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(LOG_FORMAT_SIMPLE if env == "production" else LOG_FORMAT))

    root.setLevel(resolved)
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@cache
def get_logger(name: str) -> logging.Logger:
    """Module logger; configures logging on first use."""
    configure_logging()
    return logging.getLogger(name)


def _escape_log_injection(value: str) -> str:
    """Escape newlines and control characters (CWE-117)."""
    return (
        value.replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("\x00", "")
    )


def sanitize_id_for_logging(id_value: Optional[str]) -> str:
    """
    Short form of a cart, draft or transaction id.

    Generated ids start with a millisecond timestamp, so the random
    tail is what tells them apart.
    """
    if not id_value:
        return "N/A"
    safe_value = _escape_log_injection(str(id_value))
    return safe_value[-12:] if len(safe_value) > 12 else safe_value


def sanitize_string_for_logging(value: Optional[str], max_length: int = 50) -> str:
    """Escaped, truncated user text (draft names, team names)."""
    if not value:
        return "N/A"
    safe_value = _escape_log_injection(str(value))
    if len(safe_value) <= max_length:
        return safe_value
    return safe_value[:max_length] + "..."


def summarize_cart_for_logging(state) -> str:
    """One-line cart summary: item count, configured count and total."""
    configured = sum(1 for item in state.items if item.is_configured)
    return f"items={state.total_items} configured={configured} total={state.total_price}"


__all__ = [
    "LOG_FORMAT",
    "LOG_FORMAT_SIMPLE",
    "configure_logging",
    "get_logger",
    "sanitize_id_for_logging",
    "sanitize_string_for_logging",
    "summarize_cart_for_logging",
]
