"""OAuth 2.0 grant types accepted by the token endpoint (RFC 6749 appendix A.10)."""

from __future__ import annotations

from enum import Enum
from typing import Iterable


class GrantType(str, Enum):
    """Wire values of the ``grant_type`` parameter."""

    AUTHORIZATION_CODE = "authorization_code"
    REFRESH_TOKEN = "refresh_token"
    PASSWORD = "password"
    CLIENT_CREDENTIALS = "client_credentials"

    @classmethod
    def from_wire(cls, value: str | None) -> "GrantType | None":
        """Return the member for *value*, or ``None`` if it is unknown."""
        try:
            return cls(value or "")
        except ValueError:
            return None


def parse_grant_types(values: Iterable[str]) -> frozenset[GrantType]:
    """Parse wire strings into an allow-list, rejecting unknown names."""
    allowed: set[GrantType] = set()
    for raw in values:
        raw = raw.strip()
        if not raw:
            continue
        grant_type = GrantType.from_wire(raw)
        if grant_type is None:
            raise ValueError(f"unknown grant type {raw!r}")
        allowed.add(grant_type)
    return frozenset(allowed)
