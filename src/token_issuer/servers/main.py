"""Starlette application exposing the token endpoint."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from token_issuer.core.server import AccessRequestAuthorizer, TokenServer

from .correlation import CorrelationIdMiddleware
from .token import token_route

logger = logging.getLogger("token-issuer.servers.main")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def create_app(
    server: TokenServer,
    authorizer: AccessRequestAuthorizer,
    *,
    path: str = "/token",
) -> Starlette:
    """Build the ASGI app serving *server* at *path*."""

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        allowed = sorted(g.value for g in server.config.allowed_access_types)
        logger.info("Token endpoint at %s accepting grant types: %s", path, ", ".join(allowed))
        try:
            yield
        finally:
            server.close()
            logger.info("Token endpoint storage closed")

    return Starlette(
        routes=[
            Route("/healthz", health_check, methods=["GET"]),
            token_route(server, authorizer, path=path),
        ],
        middleware=[Middleware(CorrelationIdMiddleware)],
        lifespan=lifespan,
    )
