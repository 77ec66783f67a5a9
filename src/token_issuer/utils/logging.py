"""Logging helpers shared by the core and the HTTP layer."""

from __future__ import annotations


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """Mask a secret, keeping only its first *keep_chars* characters.

    >>> mask_sensitive("abcdef123456")
    'abcd********'
    """
    if not value:
        return ""
    if len(value) <= keep_chars * 2:
        return "*" * len(value)
    return value[:keep_chars] + "*" * (len(value) - keep_chars)
