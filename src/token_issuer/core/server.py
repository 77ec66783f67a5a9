"""TokenServer – the access-token request pipeline.

The server is stateless: it holds an immutable :class:`ServerConfig` and the
injected collaborators (storage, token generator, clock) and can be shared by
any number of concurrent requests.

Pipeline
--------
1. :meth:`TokenServer.generate_access_request` checks the HTTP method and
   dispatches on ``grant_type`` to a handler in :mod:`token_issuer.core.grants`.
2. The caller-supplied authorization gate decides whether to issue tokens.
3. :meth:`TokenServer.finish_access_request` mints, persists and cleans up.

:meth:`TokenServer.handle_access_request` chains the three steps and always
returns a :class:`Response`.  Callers that need to suspend at step 2 (e.g. to
ask a remote policy service) may call the two halves themselves.

SECURITY NOTE
-------------
No tokens, codes, verifiers, passwords or client secrets are logged.
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol, runtime_checkable

from token_issuer.core.clock import Clock, default_clock
from token_issuer.core.config import ServerConfig
from token_issuer.core.context import RequestContext
from token_issuer.core.errors import (
    ErrorCode,
    OAuthError,
    as_oauth_error,
    wrap_error,
)
from token_issuer.core.generator import RandomTokenGenerator, TokenGenerator
from token_issuer.core.grant_types import GrantType
from token_issuer.core.grants import GRANT_HANDLERS
from token_issuer.core.log_utils import get_token_logger
from token_issuer.core.models import (
    AccessData,
    AccessRequest,
    RefreshTokenData,
    TokenRequest,
)
from token_issuer.core.response import Response
from token_issuer.core.store import Storage
from token_issuer.utils.logging import mask_sensitive

_LOG = logging.getLogger("token-issuer.core.server")


@runtime_checkable
class AccessRequestAuthorizer(Protocol):
    """Authorization gate consulted before tokens are minted.

    Return ``False`` to deny (``access_denied``).  Raising is treated as a
    server error, not a denial.
    """

    def __call__(self, ctx: RequestContext, ar: AccessRequest) -> bool: ...


class TokenServer:
    """OAuth 2.0 token endpoint logic (RFC 6749 §3.2, RFC 7636)."""

    def __init__(
        self,
        storage: Storage,
        config: ServerConfig | None = None,
        *,
        generator: TokenGenerator | None = None,
        clock: Clock = default_clock,
    ) -> None:
        self.storage = storage
        self.config = config or ServerConfig()
        self.generator: TokenGenerator = generator or RandomTokenGenerator()
        self.clock = clock

    def close(self) -> None:
        """Release the storage backend."""
        self.storage.close()

    # ------------------------------------------------------------------ #
    # Entry point                                                        #
    # ------------------------------------------------------------------ #
    def handle_access_request(
        self,
        ctx: RequestContext,
        request: TokenRequest,
        authorizer: AccessRequestAuthorizer | Callable[[RequestContext, AccessRequest], bool],
    ) -> Response:
        """Run the whole pipeline; errors become error responses."""
        log = get_token_logger(
            base_logger_name="token-issuer.core.server",
            grant_type=request.get("grant_type") or None,
            correlation_id=ctx.correlation_id,
        )
        try:
            ar = self.generate_access_request(ctx, request)
            self.authorize(ctx, ar, authorizer)
            resp = self.finish_access_request(ctx, ar)
        except Exception as exc:
            err = as_oauth_error(exc)
            if err.is_server_error:
                log.error("Token request failed: %s", err, exc_info=err.cause or err)
            else:
                log.info("Token request rejected: %s", err)
            return Response.from_error(err)

        log.info(
            "Issued access token to client_id=%s (expires in %ss, refresh=%s)",
            ar.client_id,
            resp.data["expires_in"],
            "refresh_token" in resp.data,
        )
        return resp

    # ------------------------------------------------------------------ #
    # Dispatch                                                           #
    # ------------------------------------------------------------------ #
    def generate_access_request(
        self, ctx: RequestContext, request: TokenRequest
    ) -> AccessRequest:
        """Validate *request* and return the resulting :class:`AccessRequest`.

        Raises
        ------
        OAuthError
            For any protocol violation or collaborator failure.
        """
        method = request.method.upper()
        if method == "GET":
            if not self.config.allow_get_access_request:
                raise OAuthError(
                    ErrorCode.INVALID_REQUEST, "GET method not allowed for access requests"
                )
        elif method != "POST":
            raise OAuthError(ErrorCode.INVALID_REQUEST, "access requests must POST verb")

        grant_type = GrantType.from_wire(request.get("grant_type"))
        if not self.config.allows(grant_type):
            raise OAuthError(ErrorCode.UNSUPPORTED_GRANT_TYPE, "unsupported grant type")

        ctx.raise_if_cancelled()
        handler = GRANT_HANDLERS[grant_type]
        return handler(ctx, request, self.config, self.storage, self.clock)

    # ------------------------------------------------------------------ #
    # Authorization gate                                                 #
    # ------------------------------------------------------------------ #
    def authorize(
        self,
        ctx: RequestContext,
        ar: AccessRequest,
        authorizer: AccessRequestAuthorizer | Callable[[RequestContext, AccessRequest], bool],
    ) -> None:
        """Consult the gate; raise ``access_denied`` or ``server_error``."""
        ctx.raise_if_cancelled()
        try:
            allowed = authorizer(ctx, ar)
        except Exception as exc:
            raise wrap_error(ErrorCode.SERVER_ERROR, exc, "authorization check failed")
        if not allowed:
            raise OAuthError(ErrorCode.ACCESS_DENIED, "access denied")

    # ------------------------------------------------------------------ #
    # Minting & finalization                                             #
    # ------------------------------------------------------------------ #
    def finish_access_request(self, ctx: RequestContext, ar: AccessRequest) -> Response:
        """Mint and persist tokens for an authorized *ar*.

        Refresh-token failures abort the whole request, so a response either
        carries a complete token pair or an error.
        """
        if ar.client is None:
            raise OAuthError(ErrorCode.SERVER_ERROR, "access request has no client")

        now = self.clock()
        ctx.raise_if_cancelled()
        try:
            access_token = self.generator.generate_access_token(ar)
        except Exception as exc:
            raise wrap_error(ErrorCode.SERVER_ERROR, exc, "failed to generate access token")

        access = AccessData(
            client=ar.client,
            access_token=access_token,
            expires_in=ar.expiration,
            created_at=now,
            scope=ar.scope,
            redirect_uri=ar.redirect_uri,
            user_data=ar.user_data,
        )

        refresh: RefreshTokenData | None = None
        # Client credentials have no resource-owner session to refresh.
        if ar.generate_refresh and ar.grant_type is not GrantType.CLIENT_CREDENTIALS:
            try:
                refresh_token = self.generator.generate_refresh_token(ar)
            except Exception as exc:
                raise wrap_error(
                    ErrorCode.SERVER_ERROR, exc, "failed to generate refresh token"
                )
            refresh = RefreshTokenData(
                client_id=ar.client.client_id,
                refresh_token=refresh_token,
                created_at=now,
                redirect_uri=ar.redirect_uri,
                scope=ar.scope,
                user_data=ar.user_data,
            )
            ctx.raise_if_cancelled()
            try:
                self.storage.save_refresh_token_data(ctx, refresh)
            except Exception as exc:
                raise wrap_error(
                    ErrorCode.SERVER_ERROR, exc, "could not save new refresh token data"
                )

        try:
            ctx.raise_if_cancelled()
            self.storage.save_access_data(ctx, access)
        except Exception as exc:
            if refresh is not None:
                # Best-effort: do not leave a refresh token without its access token.
                self._discard(
                    self.storage.delete_refresh_token_data,
                    ctx,
                    refresh.refresh_token,
                    "new refresh token",
                )
            raise wrap_error(ErrorCode.SERVER_ERROR, exc, "failed to save access data")

        # Best-effort cleanup: the tokens are already issued.
        if ar.authorize_data is not None:
            self._discard(
                self.storage.delete_authorize_data,
                ctx,
                ar.authorize_data.code,
                "authorization code",
            )
        if ar.previous_refresh_token is not None:
            self._discard(
                self.storage.delete_refresh_token_data,
                ctx,
                ar.previous_refresh_token.refresh_token,
                "previous refresh token",
            )

        resp = Response()
        resp.data["access_token"] = access.access_token
        resp.data["token_type"] = self.config.token_type
        resp.data["expires_in"] = access.expires_in
        if refresh is not None:
            resp.data["refresh_token"] = refresh.refresh_token
        if ar.scope:
            resp.data["scope"] = ar.scope
        return resp

    @staticmethod
    def _discard(
        delete: Callable[[RequestContext, str], None],
        ctx: RequestContext,
        key: str,
        what: str,
    ) -> None:
        """Attempt a deletion and discard the outcome, logging failures."""
        try:
            delete(ctx, key)
        except Exception as exc:  # noqa: BLE001
            _LOG.warning("Could not delete %s %s: %s", what, mask_sensitive(key), exc)
