"""Immutable token-endpoint configuration."""

from __future__ import annotations

from dataclasses import dataclass, field

from token_issuer.core.grant_types import GrantType, parse_grant_types
from token_issuer.utils.environment import (
    env_flag,
    env_float,
    env_get,
    env_int,
    env_list,
)


@dataclass(frozen=True)
class ServerConfig:
    """Options recognised by :class:`~token_issuer.core.server.TokenServer`.

    The object is read-only and may be shared by concurrent requests.
    """

    # Grant types the token endpoint accepts.
    allowed_access_types: frozenset[GrantType] = field(
        default_factory=lambda: frozenset({GrantType.AUTHORIZATION_CODE})
    )
    # Accept GET in addition to POST.
    allow_get_access_request: bool = False
    # Accept client_id / client_secret as request parameters.
    allow_client_secret_in_params: bool = False
    # Access token lifetime in seconds.
    access_expiration: int = 3600
    token_type: str = "Bearer"
    # Delimiter between redirect URIs registered for one client; empty: single URI.
    redirect_uri_separator: str = ""
    # Per-request deadline in seconds; None disables it.
    request_timeout: float | None = None

    def __post_init__(self) -> None:
        if self.access_expiration < 0:
            raise ValueError("access_expiration must not be negative")
        # Accept any iterable of GrantType / wire strings for convenience.
        object.__setattr__(
            self,
            "allowed_access_types",
            frozenset(GrantType(g) for g in self.allowed_access_types),
        )

    def allows(self, grant_type: GrantType | None) -> bool:
        return grant_type is not None and grant_type in self.allowed_access_types

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create a configuration from ``TOKEN_ISSUER_*`` environment variables.

        Returns:
            ServerConfig with unset variables left at their defaults.

        Raises:
            ValueError: If ``TOKEN_ISSUER_ALLOWED_GRANT_TYPES`` names an
                unknown grant type.
        """
        defaults = cls()
        grant_types = env_list("ALLOWED_GRANT_TYPES")
        return cls(
            allowed_access_types=(
                parse_grant_types(grant_types)
                if grant_types
                else defaults.allowed_access_types
            ),
            allow_get_access_request=env_flag("ALLOW_GET"),
            allow_client_secret_in_params=env_flag("ALLOW_SECRET_IN_PARAMS"),
            access_expiration=env_int("ACCESS_EXPIRATION", defaults.access_expiration),
            token_type=env_get("TOKEN_TYPE") or defaults.token_type,
            redirect_uri_separator=env_get("REDIRECT_URI_SEPARATOR", "") or "",
            request_timeout=env_float("REQUEST_TIMEOUT"),
        )
