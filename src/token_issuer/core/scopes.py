"""Scope-set helpers.

Scopes travel as comma-delimited strings.  Comparisons treat them as sets of
non-empty tokens, so order, duplicates and empty segments are irrelevant.
"""

from __future__ import annotations

from typing import Final

SCOPE_DELIMITER: Final[str] = ","


def parse_scope(scope: str | None) -> frozenset[str]:
    """Return the set of non-empty scope tokens in *scope*."""
    return frozenset(s for s in (scope or "").split(SCOPE_DELIMITER) if s)


def has_extra_scopes(granted: str | None, requested: str | None) -> bool:
    """Return *True* if *requested* contains a token absent from *granted*."""
    return not parse_scope(requested) <= parse_scope(granted)


def is_scope_subset(requested: str | None, granted: str | None) -> bool:
    """Return *True* if every token of *requested* was also *granted*."""
    return not has_extra_scopes(granted, requested)
