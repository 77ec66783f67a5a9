"""Utility functions for reading configuration from environment variables."""

import logging
import os
from typing import Final, Tuple

logger = logging.getLogger("token-issuer.utils.environment")

ENV_PREFIX: Final[str] = "TOKEN_ISSUER_"

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def env_get(key: str, default: str | None = None) -> str | None:
    """Return ``TOKEN_ISSUER_{key}`` or *default* when unset."""
    return os.getenv(ENV_PREFIX + key, default)


def env_flag(key: str, default: bool = False) -> bool:
    """
    Return the boolean value of ``TOKEN_ISSUER_{key}``.

    Any of ``true/1/yes/y/on`` (case-insensitive) enables the flag; any other
    value disables it.  When the variable is unset *default* is returned.
    """
    raw = env_get(key)
    if raw is None:
        return default
    return _truthy(raw)


def env_int(key: str, default: int) -> int:
    """Return ``TOKEN_ISSUER_{key}`` parsed as ``int``, falling back to *default*."""
    raw = env_get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s%s=%r", ENV_PREFIX, key, raw)
        return default


def env_float(key: str) -> float | None:
    """Return ``TOKEN_ISSUER_{key}`` parsed as ``float``, or ``None``."""
    raw = env_get(key)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s%s=%r", ENV_PREFIX, key, raw)
        return None


def env_list(key: str, default: tuple[str, ...] = ()) -> tuple[str, ...]:
    """Return the comma-separated list in ``TOKEN_ISSUER_{key}``."""
    raw = env_get(key)
    if raw is None:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())
