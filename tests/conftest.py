"""Shared fixtures for token-issuer tests."""

from __future__ import annotations

import pytest

from tests.helpers import CLIENT, NOW, OTHER_CLIENT
from token_issuer.core.clock import fixed_clock
from token_issuer.core.config import ServerConfig
from token_issuer.core.context import RequestContext
from token_issuer.core.grant_types import GrantType
from token_issuer.core.server import TokenServer
from token_issuer.core.store import MemoryStorage


@pytest.fixture()
def storage() -> MemoryStorage:
    store = MemoryStorage(clock=fixed_clock(NOW))
    store.set_client(CLIENT)
    store.set_client(OTHER_CLIENT)
    return store


@pytest.fixture()
def config() -> ServerConfig:
    return ServerConfig(
        allowed_access_types=frozenset(GrantType),
        redirect_uri_separator=" ",
    )


@pytest.fixture()
def server(storage: MemoryStorage, config: ServerConfig) -> TokenServer:
    return TokenServer(storage, config, clock=fixed_clock(NOW))


@pytest.fixture()
def ctx() -> RequestContext:
    return RequestContext(clock=fixed_clock(NOW))


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"
