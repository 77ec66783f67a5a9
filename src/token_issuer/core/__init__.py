"""Token-issuance core package.

This namespace hosts the **HTTP-agnostic** OAuth 2.0 token endpoint logic:
grant dispatch, the four grant handlers, PKCE verification and token minting.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
context
    Per-request cancellation and deadlines.
grant_types
    The ``grant_type`` vocabulary.
pkce
    Proof-Key for Code Exchange helpers.
scopes
    Comma-delimited scope-set comparison.
models
    Dataclasses for clients, codes, tokens and access requests.
errors
    RFC 6749 error taxonomy.
store
    Storage contract plus in-memory and on-disk backends.
generator
    Pluggable token-string generation.
client_auth
    Client credential extraction and verification.
grants
    The grant handlers.
server
    :class:`TokenServer`, the pipeline entry point.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, default_clock, fixed_clock  # noqa: F401
from .config import ServerConfig  # noqa: F401
from .context import RequestContext  # noqa: F401
from .errors import (  # noqa: F401
    ErrorCode,
    NotFoundError,
    OAuthError,
    RequestCancelledError,
)
from .generator import RandomTokenGenerator, TokenGenerator  # noqa: F401
from .grant_types import GrantType  # noqa: F401
from .log_utils import get_token_logger  # noqa: F401
from .models import (  # noqa: F401
    AccessData,
    AccessRequest,
    AuthorizeData,
    ClientData,
    RefreshTokenData,
    TokenRequest,
)
from .pkce import PKCE_PLAIN, PKCE_S256, code_challenge_s256, generate_code_verifier  # noqa: F401
from .response import Response  # noqa: F401
from .scopes import has_extra_scopes, is_scope_subset  # noqa: F401
from .server import AccessRequestAuthorizer, TokenServer  # noqa: F401
from .store import DiskStorage, MemoryStorage, Storage  # noqa: F401

__all__ = [
    # clock / context
    "Clock",
    "default_clock",
    "fixed_clock",
    "RequestContext",
    # configuration
    "ServerConfig",
    "GrantType",
    # errors
    "ErrorCode",
    "NotFoundError",
    "OAuthError",
    "RequestCancelledError",
    # models
    "AccessData",
    "AccessRequest",
    "AuthorizeData",
    "ClientData",
    "RefreshTokenData",
    "TokenRequest",
    "Response",
    # pkce / scopes
    "PKCE_PLAIN",
    "PKCE_S256",
    "code_challenge_s256",
    "generate_code_verifier",
    "has_extra_scopes",
    "is_scope_subset",
    # collaborators
    "Storage",
    "MemoryStorage",
    "DiskStorage",
    "TokenGenerator",
    "RandomTokenGenerator",
    "AccessRequestAuthorizer",
    "TokenServer",
    # logging helpers
    "get_token_logger",
]
