"""Token-string generation.

The algorithm is pluggable: :class:`~token_issuer.core.server.TokenServer`
accepts any object implementing :class:`TokenGenerator`.
"""

from __future__ import annotations

import secrets
from typing import Protocol, runtime_checkable

from token_issuer.core.models import AccessRequest


@runtime_checkable
class TokenGenerator(Protocol):
    """Produces access and refresh token strings for a validated request."""

    def generate_access_token(self, ar: AccessRequest) -> str: ...

    def generate_refresh_token(self, ar: AccessRequest) -> str: ...


class RandomTokenGenerator:
    """Opaque, URL-safe random tokens from :mod:`secrets`."""

    def __init__(self, nbytes: int = 32) -> None:
        if nbytes < 16:
            raise ValueError("tokens need at least 16 bytes of entropy")
        self.nbytes = nbytes

    def generate_access_token(self, ar: AccessRequest) -> str:  # noqa: ARG002
        return secrets.token_urlsafe(self.nbytes)

    def generate_refresh_token(self, ar: AccessRequest) -> str:  # noqa: ARG002
        return secrets.token_urlsafe(self.nbytes)
