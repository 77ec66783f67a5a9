"""Token endpoint route for Starlette applications.

The handler is thin:

1. Turn the Starlette ``Request`` into a :class:`TokenRequest`.
2. Delegate the protocol work to :class:`TokenServer` in a worker thread,
   since storages and the authorization gate may block.
3. Render the resulting :class:`Response` as JSON.

SECURITY NOTE
-------------
• No request parameters are logged; they carry codes, tokens and passwords.
• Correlation IDs, if present in ``request.state.correlation_id``, are passed
  to the pipeline so its logs can be joined with access logs.
"""

from __future__ import annotations

import logging

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from token_issuer.core.context import RequestContext
from token_issuer.core.models import TokenRequest
from token_issuer.core.response import Response
from token_issuer.core.server import AccessRequestAuthorizer, TokenServer

_LOG = logging.getLogger("token-issuer.servers.token")

# Every method reaches the pipeline, which answers invalid_request itself.
_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


async def to_token_request(request: Request) -> TokenRequest:
    """Read form (or query, for GET) parameters from a Starlette request."""
    if request.method == "GET":
        params = request.query_params
    else:
        params = await request.form()
    form = {k: v for k, v in params.items() if isinstance(v, str)}
    return TokenRequest(
        method=request.method,
        form=form,
        headers=dict(request.headers),
    )


def render(resp: Response) -> JSONResponse:
    return JSONResponse(resp.data, status_code=resp.status_code, headers=resp.headers)


def token_route(
    server: TokenServer,
    authorizer: AccessRequestAuthorizer,
    *,
    path: str = "/token",
) -> Route:
    """Return the token endpoint ``Route`` bound to *server* and *authorizer*."""
    async def _token(request: Request) -> JSONResponse:  # noqa: D401
        correlation_id = getattr(request.state, "correlation_id", None)
        ctx = RequestContext.with_timeout(
            server.config.request_timeout,
            clock=server.clock,
            correlation_id=correlation_id,
        )
        token_request = await to_token_request(request)
        try:
            resp = await run_in_threadpool(
                server.handle_access_request, ctx, token_request, authorizer
            )
        finally:
            # Stop pending storage / gate work if the client went away.
            ctx.cancel()

        _LOG.info(
            "Token request status=%s correlation_id=%s",
            resp.status_code,
            correlation_id or "-",
        )
        return render(resp)

    return Route(path, _token, methods=_METHODS)
