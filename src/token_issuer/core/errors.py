"""Exception types raised by the token-issuance core.

Every failure leaving the pipeline is an :class:`OAuthError` carrying one of
the RFC 6749 §5.2 error codes.  The optional *cause* is kept for logging only;
:meth:`OAuthError.to_payload` is the boundary that decides what a caller may
see, and it never includes the cause.
"""

from __future__ import annotations

from enum import Enum
from typing import Final


class ErrorCode(str, Enum):
    """OAuth 2.0 error codes returned by the token endpoint."""

    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    UNAUTHORIZED_CLIENT = "unauthorized_client"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    INVALID_SCOPE = "invalid_scope"
    ACCESS_DENIED = "access_denied"
    SERVER_ERROR = "server_error"


_STATUS_CODES: Final[dict[ErrorCode, int]] = {
    ErrorCode.INVALID_CLIENT: 401,
    ErrorCode.ACCESS_DENIED: 403,
    ErrorCode.SERVER_ERROR: 500,
}

_GENERIC_SERVER_ERROR: Final[str] = (
    "The authorization server encountered an unexpected condition."
)


class OAuthError(Exception):
    """Data-carrying protocol error.

    Parameters
    ----------
    code:
        Wire-facing error code.
    description:
        Human readable description.  Exposed to callers for every code except
        ``server_error``, whose public description is always generic.
    cause:
        Optional underlying exception, preserved for diagnostics.
    """

    def __init__(
        self,
        code: ErrorCode,
        description: str = "",
        *,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(f"{code.value}: {description}" if description else code.value)
        self.code: ErrorCode = code
        self.description: str = description
        self.cause: BaseException | None = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def status_code(self) -> int:
        """HTTP status matching :attr:`code`."""
        return _STATUS_CODES.get(self.code, 400)

    @property
    def is_server_error(self) -> bool:
        return self.code is ErrorCode.SERVER_ERROR

    @property
    def public_description(self) -> str:
        if self.is_server_error:
            return _GENERIC_SERVER_ERROR
        return self.description

    def to_payload(self) -> dict[str, str]:
        """Return a JSON-serialisable payload **without causes or secrets**."""
        payload = {"error": self.code.value}
        if self.public_description:
            payload["error_description"] = self.public_description
        return payload


class RequestCancelledError(OAuthError):
    """Raised when the request context was cancelled or its deadline passed."""

    def __init__(self, description: str = "request cancelled") -> None:
        super().__init__(ErrorCode.SERVER_ERROR, description)


class NotFoundError(LookupError):
    """Raised by storages when a client, code or token does not exist."""


def wrap_error(code: ErrorCode, cause: BaseException, description: str) -> OAuthError:
    """Return an :class:`OAuthError` with *cause* attached.

    A server-error ``OAuthError`` is returned unchanged.  Any other exception,
    including an ``OAuthError`` with a different code, is wrapped under *code*.
    """
    if isinstance(cause, OAuthError) and cause.is_server_error:
        return cause
    return OAuthError(code, description, cause=cause)


def as_oauth_error(exc: BaseException) -> OAuthError:
    """Map any exception to an :class:`OAuthError` (``server_error`` by default)."""
    if isinstance(exc, OAuthError):
        return exc
    return OAuthError(ErrorCode.SERVER_ERROR, "unexpected error", cause=exc)
