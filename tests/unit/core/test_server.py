"""Unit tests for the full TokenServer pipeline.

Coverage:
* Authorization-code exchange mints a pair, deletes the code, never re-accepts it
* Refresh rotation issues a new token and invalidates the old one
* Client credentials never returns a refresh token
* Gate denial vs. gate failure
* Persistence / generator failures surface as server_error without tokens
* Best-effort cleanup failures do not fail the request
* Cancellation and deadlines
"""

from __future__ import annotations

import itertools
import logging
import threading

import pytest

from tests.helpers import CLIENT, NOW, RFC_CHALLENGE, RFC_VERIFIER, basic_auth
from token_issuer.core.clock import fixed_clock
from token_issuer.core.context import RequestContext
from token_issuer.core.errors import ErrorCode, OAuthError
from token_issuer.core.generator import RandomTokenGenerator, TokenGenerator
from token_issuer.core.grant_types import GrantType
from token_issuer.core.models import AccessRequest, AuthorizeData, TokenRequest
from token_issuer.core.server import TokenServer
from token_issuer.core.store import MemoryStorage


# --------------------------------------------------------------------------- #
# Helpers                                                                     #
# --------------------------------------------------------------------------- #
class CountingGenerator:
    """Deterministic generator producing at-1, rt-2, ..."""

    def __init__(self) -> None:
        self._seq = itertools.count(1)

    def generate_access_token(self, ar: AccessRequest) -> str:
        return f"at-{next(self._seq)}"

    def generate_refresh_token(self, ar: AccessRequest) -> str:
        return f"rt-{next(self._seq)}"


def allow(ctx: RequestContext, ar: AccessRequest) -> bool:
    return True


def deny(ctx: RequestContext, ar: AccessRequest) -> bool:
    return False


def _post(form: dict[str, str]) -> TokenRequest:
    return TokenRequest(method="POST", form=form, headers=basic_auth())


@pytest.fixture()
def counted(storage: MemoryStorage, config) -> TokenServer:
    return TokenServer(storage, config, generator=CountingGenerator(), clock=fixed_clock(NOW))


def _seed_code(storage: MemoryStorage, ctx: RequestContext, **kwargs) -> AuthorizeData:
    data = AuthorizeData(
        code=kwargs.pop("code", "code-1"),
        client=CLIENT,
        expires_in=250,
        created_at=NOW - 5,
        redirect_uri="https://app.example/cb",
        scope=kwargs.pop("scope", "read,write"),
        user_data={"user": "alice"},
        **kwargs,
    )
    storage.save_authorize_data(ctx, data)
    return data


# --------------------------------------------------------------------------- #
# Authorization code                                                          #
# --------------------------------------------------------------------------- #
def test_code_exchange_issues_pair_and_consumes_code(
    counted: TokenServer, storage: MemoryStorage, ctx: RequestContext
) -> None:
    _seed_code(storage, ctx, code="code-1")
    _seed_code(storage, ctx, code="code-2")

    resp = counted.handle_access_request(
        ctx, _post({"grant_type": "authorization_code", "code": "code-1"}), allow
    )

    assert resp.status_code == 200 and not resp.is_error
    assert resp.data == {
        "access_token": "at-1",
        "token_type": "Bearer",
        "expires_in": 3600,
        "refresh_token": "rt-2",
        "scope": "read,write",
    }
    assert resp.headers["Cache-Control"] == "no-store"

    access = storage.get_access_data(ctx, "at-1")
    assert access.client == CLIENT
    assert access.created_at == NOW
    assert access.user_data == {"user": "alice"}
    assert access.redirect_uri == "https://app.example/cb"
    refresh = storage.get_refresh_token_data(ctx, "rt-2")
    assert refresh.client_id == CLIENT.client_id and refresh.scope == "read,write"

    # exactly that code is gone
    assert "code-1" not in storage.codes
    assert "code-2" in storage.codes

    again = counted.handle_access_request(
        ctx, _post({"grant_type": "authorization_code", "code": "code-1"}), allow
    )
    assert again.error_code is ErrorCode.INVALID_GRANT
    assert again.data["error"] == "invalid_grant"


def test_pkce_exchange_end_to_end(counted: TokenServer, storage: MemoryStorage, ctx: RequestContext) -> None:
    _seed_code(storage, ctx, code_challenge=RFC_CHALLENGE, code_challenge_method="S256")
    resp = counted.handle_access_request(
        ctx,
        _post({"grant_type": "authorization_code", "code": "code-1", "code_verifier": RFC_VERIFIER}),
        allow,
    )
    assert resp.status_code == 200
    assert "refresh_token" in resp.data


def test_scope_omitted_when_empty(counted: TokenServer, storage: MemoryStorage, ctx: RequestContext) -> None:
    _seed_code(storage, ctx, scope="")
    resp = counted.handle_access_request(
        ctx, _post({"grant_type": "authorization_code", "code": "code-1"}), allow
    )
    assert "scope" not in resp.data


# --------------------------------------------------------------------------- #
# Refresh rotation                                                            #
# --------------------------------------------------------------------------- #
def test_refresh_rotation(counted: TokenServer, storage: MemoryStorage, ctx: RequestContext) -> None:
    _seed_code(storage, ctx, scope="a,b,c")
    first = counted.handle_access_request(
        ctx, _post({"grant_type": "authorization_code", "code": "code-1"}), allow
    )
    old_rt = first.data["refresh_token"]

    second = counted.handle_access_request(
        ctx,
        _post({"grant_type": "refresh_token", "refresh_token": old_rt, "scope": "a,b"}),
        allow,
    )
    assert second.status_code == 200
    new_rt = second.data["refresh_token"]
    assert new_rt != old_rt
    assert second.data["scope"] == "a,b"
    assert old_rt not in storage.refresh
    rotated = storage.get_refresh_token_data(ctx, new_rt)
    assert rotated.scope == "a,b"
    # inherited from the code grant
    assert rotated.redirect_uri == "https://app.example/cb"
    assert rotated.user_data == {"user": "alice"}

    reuse = counted.handle_access_request(
        ctx, _post({"grant_type": "refresh_token", "refresh_token": old_rt}), allow
    )
    assert reuse.error_code is ErrorCode.INVALID_GRANT


# --------------------------------------------------------------------------- #
# Client credentials / password                                               #
# --------------------------------------------------------------------------- #
def test_client_credentials_has_no_refresh_token_even_if_gate_asks(
    counted: TokenServer, storage: MemoryStorage, ctx: RequestContext
) -> None:
    def flip(ctx: RequestContext, ar: AccessRequest) -> bool:
        ar.generate_refresh = True
        return True

    resp = counted.handle_access_request(
        ctx, _post({"grant_type": "client_credentials", "scope": "svc"}), flip
    )
    assert resp.status_code == 200
    assert "refresh_token" not in resp.data
    assert storage.refresh == {}


def test_password_grant_gate_checks_credentials(counted: TokenServer, ctx: RequestContext) -> None:
    def check_password(ctx: RequestContext, ar: AccessRequest) -> bool:
        return (ar.username, ar.password) == ("alice", "correct horse")

    ok = counted.handle_access_request(
        ctx,
        _post({"grant_type": "password", "username": "alice", "password": "correct horse"}),
        check_password,
    )
    assert ok.status_code == 200 and "refresh_token" in ok.data

    bad = counted.handle_access_request(
        ctx,
        _post({"grant_type": "password", "username": "alice", "password": "wrong"}),
        check_password,
    )
    assert bad.error_code is ErrorCode.ACCESS_DENIED
    assert bad.status_code == 403


def test_gate_can_shorten_expiration(counted: TokenServer, ctx: RequestContext) -> None:
    def short(ctx: RequestContext, ar: AccessRequest) -> bool:
        ar.expiration = 60
        return True

    resp = counted.handle_access_request(ctx, _post({"grant_type": "client_credentials"}), short)
    assert resp.data["expires_in"] == 60


# --------------------------------------------------------------------------- #
# Gate outcomes                                                               #
# --------------------------------------------------------------------------- #
def test_gate_denial_is_access_denied(counted: TokenServer, storage: MemoryStorage, ctx: RequestContext) -> None:
    _seed_code(storage, ctx)
    resp = counted.handle_access_request(
        ctx, _post({"grant_type": "authorization_code", "code": "code-1"}), deny
    )
    assert resp.error_code is ErrorCode.ACCESS_DENIED
    assert storage.access == {}
    assert "code-1" in storage.codes


def test_gate_error_is_server_error(
    counted: TokenServer, ctx: RequestContext, caplog: pytest.LogCaptureFixture
) -> None:
    def broken(ctx: RequestContext, ar: AccessRequest) -> bool:
        raise ConnectionError("policy backend at 10.0.0.7 unreachable")

    with caplog.at_level(logging.ERROR, logger="token-issuer.core.server"):
        resp = counted.handle_access_request(ctx, _post({"grant_type": "client_credentials"}), broken)

    assert resp.status_code == 500
    assert resp.data["error"] == "server_error"
    # cause is logged, never returned
    assert "10.0.0.7" not in resp.data["error_description"]
    assert "10.0.0.7" in caplog.text


# --------------------------------------------------------------------------- #
# Failures during minting                                                     #
# --------------------------------------------------------------------------- #
def test_refresh_persistence_failure_issues_nothing(
    counted: TokenServer,
    storage: MemoryStorage,
    ctx: RequestContext,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _seed_code(storage, ctx)

    def boom(ctx: RequestContext, data) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(storage, "save_refresh_token_data", boom)
    resp = counted.handle_access_request(
        ctx, _post({"grant_type": "authorization_code", "code": "code-1"}), allow
    )
    assert resp.error_code is ErrorCode.SERVER_ERROR
    assert "access_token" not in resp.data
    assert storage.access == {}
    # the code survives; a retry is possible once the lease lapses
    assert "code-1" in storage.codes


def test_access_persistence_failure_discards_new_refresh_token(
    counted: TokenServer,
    storage: MemoryStorage,
    ctx: RequestContext,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _seed_code(storage, ctx)

    def boom(ctx: RequestContext, data) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(storage, "save_access_data", boom)
    with pytest.raises(OAuthError) as exc:
        ar = counted.generate_access_request(
            ctx, _post({"grant_type": "authorization_code", "code": "code-1"})
        )
        counted.finish_access_request(ctx, ar)
    assert exc.value.code is ErrorCode.SERVER_ERROR
    assert isinstance(exc.value.cause, OSError)
    assert storage.refresh == {}


def test_generator_failure_is_server_error(storage: MemoryStorage, config, ctx: RequestContext) -> None:
    class Broken(CountingGenerator):
        def generate_refresh_token(self, ar: AccessRequest) -> str:
            raise RuntimeError("entropy pool empty")

    server = TokenServer(storage, config, generator=Broken(), clock=fixed_clock(NOW))
    resp = server.handle_access_request(
        ctx, _post({"grant_type": "password", "username": "a", "password": "b"}), allow
    )
    assert resp.error_code is ErrorCode.SERVER_ERROR
    assert storage.access == {} and storage.refresh == {}


def test_cleanup_failure_does_not_fail_request(
    counted: TokenServer,
    storage: MemoryStorage,
    ctx: RequestContext,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    _seed_code(storage, ctx)

    def boom(ctx: RequestContext, code: str) -> None:
        raise OSError("replica read-only")

    monkeypatch.setattr(storage, "delete_authorize_data", boom)
    with caplog.at_level(logging.WARNING, logger="token-issuer.core.server"):
        resp = counted.handle_access_request(
            ctx, _post({"grant_type": "authorization_code", "code": "code-1"}), allow
        )
    assert resp.status_code == 200
    assert "Could not delete authorization code" in caplog.text


# --------------------------------------------------------------------------- #
# Cancellation                                                                #
# --------------------------------------------------------------------------- #
def test_cancelled_context_fails_without_calling_gate(counted: TokenServer, storage: MemoryStorage) -> None:
    calls: list[AccessRequest] = []

    def record(ctx: RequestContext, ar: AccessRequest) -> bool:
        calls.append(ar)
        return True

    ctx = RequestContext(clock=fixed_clock(NOW))
    ctx.cancel()
    resp = counted.handle_access_request(ctx, _post({"grant_type": "client_credentials"}), record)
    assert resp.error_code is ErrorCode.SERVER_ERROR
    assert calls == []
    assert storage.access == {}


def test_gate_cancelling_stops_minting(counted: TokenServer, storage: MemoryStorage, ctx: RequestContext) -> None:
    def slow_gate(ctx: RequestContext, ar: AccessRequest) -> bool:
        ctx.cancel()  # e.g. caller hung up while the gate was waiting
        return True

    resp = counted.handle_access_request(ctx, _post({"grant_type": "client_credentials"}), slow_gate)
    assert resp.error_code is ErrorCode.SERVER_ERROR
    assert storage.access == {}


def test_deadline_exceeded() -> None:
    ctx = RequestContext.with_timeout(5, clock=fixed_clock(NOW))
    assert not ctx.cancelled
    ctx._clock = fixed_clock(NOW + 5)  # type: ignore[attr-defined]
    assert ctx.cancelled
    with pytest.raises(OAuthError) as exc:
        ctx.raise_if_cancelled()
    assert exc.value.code is ErrorCode.SERVER_ERROR


def test_close_releases_storage(counted: TokenServer, storage: MemoryStorage, ctx: RequestContext) -> None:
    _seed_code(storage, ctx)
    counted.close()
    assert len(storage.codes) == 0


def test_random_generator_mints_distinct_opaque_tokens() -> None:
    gen = RandomTokenGenerator()
    ar = AccessRequest(grant_type=GrantType.PASSWORD, client=CLIENT)
    tokens = {gen.generate_access_token(ar), gen.generate_refresh_token(ar)}
    assert len(tokens) == 2
    assert all(len(t) >= 43 for t in tokens)
    assert isinstance(gen, TokenGenerator)
    with pytest.raises(ValueError):
        RandomTokenGenerator(nbytes=8)


def test_gate_oauth_error_becomes_server_error(counted: TokenServer, ctx: RequestContext) -> None:
    def picky(ctx: RequestContext, ar: AccessRequest) -> bool:
        raise OAuthError(ErrorCode.INVALID_SCOPE, "scope not allowed for this user")

    resp = counted.handle_access_request(ctx, _post({"grant_type": "client_credentials"}), picky)
    assert resp.error_code is ErrorCode.SERVER_ERROR
    assert resp.status_code == 500


def test_gate_can_block_until_cancelled(counted: TokenServer, storage: MemoryStorage) -> None:
    ctx = RequestContext(clock=fixed_clock(NOW))
    assert ctx.wait(0) is False

    def waiting_gate(ctx: RequestContext, ar: AccessRequest) -> bool:
        # approval never arrives; the caller hangs up instead
        return not ctx.wait(5)

    threading.Timer(0.05, ctx.cancel).start()
    resp = counted.handle_access_request(ctx, _post({"grant_type": "client_credentials"}), waiting_gate)
    assert resp.error_code is ErrorCode.ACCESS_DENIED
    assert storage.access == {}
