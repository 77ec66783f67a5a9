"""Normalized token-endpoint response."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from token_issuer.core.errors import ErrorCode, OAuthError

# RFC 6749 §5.1: token responses must not be cached.
_NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


@dataclass(slots=True)
class Response:
    """Transport-independent result of a token request."""

    status_code: int = 200
    data: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=lambda: dict(_NO_STORE_HEADERS))
    error_code: ErrorCode | None = None

    @property
    def is_error(self) -> bool:
        return self.error_code is not None

    @classmethod
    def from_error(cls, err: OAuthError) -> "Response":
        """Build the error response for *err*; the cause is never included."""
        resp = cls(status_code=err.status_code, data=err.to_payload(), error_code=err.code)
        if err.code is ErrorCode.INVALID_CLIENT:
            resp.headers["WWW-Authenticate"] = 'Basic realm="token"'
        return resp
