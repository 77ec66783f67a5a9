"""Typed records used by the token-issuance pipeline.

Persistent records (clients, authorization codes, access and refresh tokens)
are immutable dataclasses.  :class:`AccessRequest` is the only mutable one:
it lives for a single request and the authorization gate may adjust it
(expiration, scope, user data) before tokens are minted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from token_issuer.core.grant_types import GrantType


@dataclass(frozen=True, slots=True)
class ClientData:
    """A registered OAuth client."""

    client_id: str
    secret: str = field(default="", repr=False)
    # One or more URIs joined by ``ServerConfig.redirect_uri_separator``.
    redirect_uri: str = ""
    user_data: Any = None

    def first_redirect_uri(self, separator: str = "") -> str:
        """Return the first registered redirect URI."""
        if not separator:
            return self.redirect_uri.strip()
        for uri in self.redirect_uri.split(separator):
            if uri.strip():
                return uri.strip()
        return ""


@dataclass(frozen=True, slots=True)
class AuthorizeData:
    """Authorization code issued by the authorization endpoint."""

    code: str
    client: ClientData
    expires_in: int
    created_at: float
    redirect_uri: str = ""
    scope: str = ""
    code_challenge: str = ""
    code_challenge_method: str = ""
    user_data: Any = None

    @property
    def expire_at(self) -> float:
        return self.created_at + self.expires_in

    def is_expired_at(self, now: float) -> bool:
        """Return *True* if the code is no longer usable at *now*."""
        return self.expire_at <= now


@dataclass(frozen=True, slots=True)
class AccessData:
    """A minted access token."""

    client: ClientData
    access_token: str
    expires_in: int
    created_at: float
    scope: str = ""
    redirect_uri: str = ""
    user_data: Any = None

    def __post_init__(self) -> None:
        if self.expires_in < 0:
            raise ValueError("expires_in must not be negative")

    @property
    def expire_at(self) -> float:
        return self.created_at + self.expires_in

    def is_expired_at(self, now: float) -> bool:
        return self.expire_at <= now


@dataclass(frozen=True, slots=True)
class RefreshTokenData:
    """A minted refresh token, persisted in its entirety."""

    client_id: str
    refresh_token: str
    created_at: float
    redirect_uri: str = ""
    scope: str = ""
    user_data: Any = None


@dataclass(frozen=True, slots=True)
class TokenRequest:
    """HTTP-agnostic view of an incoming token request.

    Built by the transport layer; *form* holds the decoded body parameters
    (or query parameters for an allowed GET).
    """

    method: str
    form: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)

    def get(self, name: str) -> str:
        """Return the form value *name*, or an empty string."""
        return self.form.get(name) or ""

    def header(self, name: str) -> str:
        """Case-insensitive header lookup."""
        value = self.headers.get(name)
        if value is None:
            lowered = name.lower()
            for key, candidate in self.headers.items():
                if key.lower() == lowered:
                    return candidate
            return ""
        return value


@dataclass(slots=True)
class AccessRequest:
    """A validated request for access tokens."""

    grant_type: GrantType
    client: ClientData | None = None
    code: str = ""
    code_verifier: str = ""
    authorize_data: AuthorizeData | None = None
    previous_refresh_token: RefreshTokenData | None = None
    redirect_uri: str = ""
    scope: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    assertion_type: str = ""
    assertion: str = ""
    # Token expiration in seconds; the gate may change it.
    expiration: int = 0
    generate_refresh: bool = False
    # Passed through to storage, never inspected.
    user_data: Any = None
    request: TokenRequest | None = field(default=None, repr=False)

    @property
    def client_id(self) -> str:
        return self.client.client_id if self.client else ""
