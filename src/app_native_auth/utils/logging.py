"""Logging helpers shared by the core, the HTTP surface and the CLI."""

from __future__ import annotations

import logging
import os
import sys
from typing import Final, TextIO

_DEFAULT_FORMAT: Final[str] = "%(asctime)s %(levelname)s %(name)s %(message)s"


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """Return *value* with everything but the first *keep_chars* characters masked.

    >>> mask_sensitive("abcdef123456", 4)
    'abcd********'
    """
    if not value:
        return ""
    if len(value) <= keep_chars:
        return "*" * len(value)
    return value[:keep_chars] + "*" * (len(value) - keep_chars)


def setup_logging(level: int | str | None = None, stream: TextIO | None = None) -> logging.Logger:
    """Configure the ``app-native-auth`` logger hierarchy.

    The level defaults to ``APP_AUTH_LOG_LEVEL`` (``WARNING`` when unset).
    Calling this function twice does not add a second handler.
    """
    if level is None:
        level = os.getenv("APP_AUTH_LOG_LEVEL", "WARNING").strip().upper() or "WARNING"
    if isinstance(level, str):
        level = logging.getLevelName(level)
        if not isinstance(level, int):
            level = logging.WARNING

    logger = logging.getLogger("app-native-auth")
    logger.setLevel(level)
    if not any(getattr(h, "_app_native_auth", False) for h in logger.handlers):
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter(_DEFAULT_FORMAT))
        handler._app_native_auth = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger
