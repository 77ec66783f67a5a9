"""Grant handlers for the token endpoint.

Each handler turns a :class:`~token_issuer.core.models.TokenRequest` into a
validated :class:`~token_issuer.core.models.AccessRequest` or raises an
:class:`~token_issuer.core.errors.OAuthError`.  Handlers only read from
storage; deleting consumed codes and rotated refresh tokens happens in
:meth:`TokenServer.finish_access_request` once tokens were issued.
"""

from __future__ import annotations

import logging
from typing import Callable, Final

from token_issuer.core.client_auth import get_client_auth, get_client_data
from token_issuer.core.clock import Clock
from token_issuer.core.config import ServerConfig
from token_issuer.core.context import RequestContext
from token_issuer.core.errors import ErrorCode, OAuthError, wrap_error
from token_issuer.core.grant_types import GrantType
from token_issuer.core.models import AccessRequest, TokenRequest
from token_issuer.core.pkce import verify_code_verifier
from token_issuer.core.scopes import has_extra_scopes
from token_issuer.core.store import Storage

_LOG = logging.getLogger("token-issuer.core.grants")

GrantHandler = Callable[
    [RequestContext, TokenRequest, ServerConfig, Storage, Clock], AccessRequest
]


def handle_authorization_code(
    ctx: RequestContext,
    request: TokenRequest,
    config: ServerConfig,
    storage: Storage,
    clock: Clock,
) -> AccessRequest:
    """Exchange an authorization code (RFC 6749 §4.1.3, RFC 7636 §4.6)."""
    auth = get_client_auth(request, config.allow_client_secret_in_params)

    ar = AccessRequest(
        grant_type=GrantType.AUTHORIZATION_CODE,
        code=request.get("code"),
        code_verifier=request.get("code_verifier"),
        generate_refresh=True,
        expiration=config.access_expiration,
        request=request,
    )

    if not ar.code:
        raise OAuthError(ErrorCode.INVALID_GRANT, "no authorization code provided")

    ar.client = get_client_data(ctx, auth, storage)

    ctx.raise_if_cancelled()
    try:
        authorize_data = storage.get_authorize_data(ctx, ar.code)
    except Exception as exc:
        raise wrap_error(
            ErrorCode.INVALID_GRANT, exc, "could not load data for authorization code"
        )

    if authorize_data.client.client_id != ar.client.client_id:
        raise OAuthError(ErrorCode.INVALID_GRANT, "invalid client id for authorization code")

    if authorize_data.is_expired_at(clock()):
        raise OAuthError(ErrorCode.INVALID_GRANT, "authorization code expired")

    if authorize_data.code_challenge:
        verify_code_verifier(
            ar.code_verifier,
            authorize_data.code_challenge,
            authorize_data.code_challenge_method,
        )

    # RFC 6749 §4.1.3: a redirect_uri sent here must match the authorize request.
    redirect_uri = request.get("redirect_uri")
    if redirect_uri and redirect_uri != authorize_data.redirect_uri:
        raise OAuthError(ErrorCode.INVALID_GRANT, "redirect_uri does not match")

    ar.authorize_data = authorize_data
    ar.redirect_uri = authorize_data.redirect_uri
    ar.scope = authorize_data.scope
    ar.user_data = authorize_data.user_data
    return ar


def handle_refresh_token(
    ctx: RequestContext,
    request: TokenRequest,
    config: ServerConfig,
    storage: Storage,
    clock: Clock,  # noqa: ARG001
) -> AccessRequest:
    """Rotate a refresh token (RFC 6749 §6)."""
    auth = get_client_auth(request, config.allow_client_secret_in_params)

    ar = AccessRequest(
        grant_type=GrantType.REFRESH_TOKEN,
        code=request.get("refresh_token"),
        scope=request.get("scope"),
        generate_refresh=True,
        expiration=config.access_expiration,
        request=request,
    )

    if not ar.code:
        raise OAuthError(ErrorCode.INVALID_GRANT, "no refresh token provided")

    ar.client = get_client_data(ctx, auth, storage)

    ctx.raise_if_cancelled()
    try:
        previous = storage.get_refresh_token_data(ctx, ar.code)
    except Exception as exc:
        raise wrap_error(
            ErrorCode.INVALID_GRANT, exc, "failed to get refresh token data from storage"
        )

    if previous.client_id != ar.client.client_id:
        raise OAuthError(
            ErrorCode.INVALID_CLIENT, "request client id must be the same from previous token"
        )

    ar.previous_refresh_token = previous
    # Inherited as-is; not re-validated against the client's registered URIs.
    ar.redirect_uri = previous.redirect_uri
    ar.user_data = previous.user_data
    if not ar.scope:
        ar.scope = previous.scope

    if has_extra_scopes(previous.scope, ar.scope):
        _LOG.info(
            "Refresh for client_id=%s asked for scope beyond the original grant",
            ar.client.client_id,
        )
        raise OAuthError(
            ErrorCode.ACCESS_DENIED,
            "the requested scope must not include any scope not originally granted "
            "by the resource owner",
        )
    return ar


def handle_password(
    ctx: RequestContext,
    request: TokenRequest,
    config: ServerConfig,
    storage: Storage,
    clock: Clock,  # noqa: ARG001
) -> AccessRequest:
    """Resource-owner password credentials (RFC 6749 §4.3).

    The credentials are *not* checked here; the authorization gate decides.
    """
    auth = get_client_auth(request, config.allow_client_secret_in_params)

    ar = AccessRequest(
        grant_type=GrantType.PASSWORD,
        username=request.get("username"),
        password=request.get("password"),
        scope=request.get("scope"),
        generate_refresh=True,
        expiration=config.access_expiration,
        request=request,
    )

    if not ar.username:
        raise OAuthError(ErrorCode.INVALID_GRANT, "username field not set")
    if not ar.password:
        raise OAuthError(ErrorCode.INVALID_GRANT, "password field not set")

    ar.client = get_client_data(ctx, auth, storage)
    ar.redirect_uri = ar.client.first_redirect_uri(config.redirect_uri_separator)
    return ar


def handle_client_credentials(
    ctx: RequestContext,
    request: TokenRequest,
    config: ServerConfig,
    storage: Storage,
    clock: Clock,  # noqa: ARG001
) -> AccessRequest:
    """Client credentials (RFC 6749 §4.4); never issues a refresh token."""
    auth = get_client_auth(request, config.allow_client_secret_in_params)

    ar = AccessRequest(
        grant_type=GrantType.CLIENT_CREDENTIALS,
        scope=request.get("scope"),
        generate_refresh=False,
        expiration=config.access_expiration,
        request=request,
    )

    ar.client = get_client_data(ctx, auth, storage)
    ar.redirect_uri = ar.client.first_redirect_uri(config.redirect_uri_separator)
    return ar


GRANT_HANDLERS: Final[dict[GrantType, GrantHandler]] = {
    GrantType.AUTHORIZATION_CODE: handle_authorization_code,
    GrantType.REFRESH_TOKEN: handle_refresh_token,
    GrantType.PASSWORD: handle_password,
    GrantType.CLIENT_CREDENTIALS: handle_client_credentials,
}
