"""Logging helpers for Mixboot."""
from __future__ import annotations

import logging

from typing import Optional, Union

_configured = False


def level_from_name(level: Union[int, str, None], default: int = logging.INFO) -> int:
    """Translate ``"DEBUG"``/``"info"``/``20`` style levels to an int."""

    if level is None:
        return default
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    return value if isinstance(value, int) else default


def _ensure_configured(level: int = logging.INFO) -> None:
    global _configured
    if not _configured:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        _configured = True


def get_logger(name: str, level: Optional[Union[int, str]] = None) -> logging.Logger:
    """Return a configured logger instance.

    The first call configures the root logger with a basic format. Subsequent
    calls simply return ``logging.getLogger(name)``. ``level`` can override the
    global logging level on the first call.
    """

    _ensure_configured(level_from_name(level))
    return logging.getLogger(name)
