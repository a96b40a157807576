"""Utility functions related to environment variables."""

import logging
import os
from typing import Final

logger = logging.getLogger("app-native-auth.utils.environment")

ENV_PREFIX: Final[str] = "APP_AUTH_"


def env_str(key: str, *, prefix: str = ENV_PREFIX) -> str | None:
    """Return the stripped value of ``${prefix}${key}`` or ``None`` when blank."""
    value = os.getenv(f"{prefix}{key}")
    if value is None:
        return None
    value = value.strip()
    return value or None


def env_float(key: str, default: float, *, prefix: str = ENV_PREFIX) -> float:
    """
    Return ``${prefix}${key}`` parsed as a non-negative float.

    Unparseable or negative values fall back to *default* with a warning so a
    typo in the environment never prevents start-up.
    """
    raw = env_str(key, prefix=prefix)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring %s%s=%r: not a number", prefix, key, raw)
        return default
    if value < 0:
        logger.warning("Ignoring %s%s=%r: must not be negative", prefix, key, raw)
        return default
    return value


def env_int(key: str, default: int, *, prefix: str = ENV_PREFIX) -> int:
    return int(env_float(key, float(default), prefix=prefix))
