"""Persistence contract for the token pipeline plus two reference backends.

The engine only talks to :class:`Storage`.  Two implementations ship with the
package:

* :class:`MemoryStorage` – process-local dictionaries guarded by a lock,
  suitable for tests and single-process deployments.
* :class:`DiskStorage` – JSON files, one per record.

Single-use guarantees
---------------------
The engine issues separate *get* and *delete* calls for authorization codes
and refresh tokens, with token minting in between.  Both backends therefore
take an exclusive lease on the key inside ``get_authorize_data`` and
``get_refresh_token_data``: while the lease is held, a second lookup of the
same key raises :class:`NotFoundError`.  The lease ends when the key is
deleted, or after *lease_ttl* seconds so that a request which failed after
the lookup does not burn the code or token for good.

* :class:`MemoryStorage` keeps leases in a dict under its lock.
* :class:`DiskStorage` creates a ``.lease`` file with ``os.O_EXCL``.

Environment variables
---------------------
TOKEN_ISSUER_STORAGE_DIR
    Base directory for :class:`DiskStorage`.
    Defaults to ``~/.token-issuer/store`` when unset.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict
from hashlib import sha256
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from cachetools import TLRUCache

from token_issuer.core.clock import Clock, default_clock
from token_issuer.core.context import RequestContext
from token_issuer.core.errors import NotFoundError
from token_issuer.core.models import (
    AccessData,
    AuthorizeData,
    ClientData,
    RefreshTokenData,
)
from token_issuer.utils.environment import env_get

_LOG = logging.getLogger("token-issuer.core.store")

DEFAULT_LEASE_TTL = 30.0

# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #


@runtime_checkable
class Storage(Protocol):
    """Persistence contract consumed by the token pipeline.

    Lookups raise :class:`~token_issuer.core.errors.NotFoundError` for unknown
    keys.  Deletions are idempotent.  Code and refresh-token lookups must not
    hand the same key to two requests at once (see module docstring).
    """

    # ----- lifecycle ------------------------------------------------------- #
    def close(self) -> None: ...

    # ----- clients --------------------------------------------------------- #
    def get_client_data(self, ctx: RequestContext, client_id: str) -> ClientData: ...

    # ----- authorization codes -------------------------------------------- #
    def save_authorize_data(self, ctx: RequestContext, data: AuthorizeData) -> None: ...
    def get_authorize_data(self, ctx: RequestContext, code: str) -> AuthorizeData: ...
    def delete_authorize_data(self, ctx: RequestContext, code: str) -> None: ...

    # ----- access tokens --------------------------------------------------- #
    def save_access_data(self, ctx: RequestContext, data: AccessData) -> None: ...

    # ----- refresh tokens -------------------------------------------------- #
    def get_refresh_token_data(self, ctx: RequestContext, token: str) -> RefreshTokenData: ...
    def save_refresh_token_data(self, ctx: RequestContext, data: RefreshTokenData) -> None: ...
    def delete_refresh_token_data(self, ctx: RequestContext, token: str) -> None: ...


# --------------------------------------------------------------------------- #
# In-memory implementation                                                    #
# --------------------------------------------------------------------------- #


def _code_expiry(_code: str, data: AuthorizeData, _now: float) -> float:
    return data.expire_at


class MemoryStorage(Storage):
    """Thread-safe in-memory implementation of :class:`Storage`.

    Authorization codes live in a :class:`cachetools.TLRUCache` timed by
    *clock*, so each code is evicted exactly when its own
    ``created_at + expires_in`` passes.  Once *max_codes* live codes are
    outstanding the least recently used one is evicted.
    """

    def __init__(
        self,
        *,
        clock: Clock = default_clock,
        max_codes: int = 10_000,
        lease_ttl: float = DEFAULT_LEASE_TTL,
    ) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self.lease_ttl = lease_ttl
        self.clients: dict[str, ClientData] = {}
        self.codes: TLRUCache = TLRUCache(maxsize=max_codes, ttu=_code_expiry, timer=clock)
        self.access: dict[str, AccessData] = {}
        self.refresh: dict[str, RefreshTokenData] = {}
        self._leases: dict[tuple[str, str], float] = {}

    def close(self) -> None:
        with self._lock:
            self.codes.clear()
            self.access.clear()
            self.refresh.clear()
            self._leases.clear()

    def _take_lease(self, kind: str, key: str) -> None:
        """Lease *key*; the caller holds ``self._lock``."""
        now = self._clock()
        held_until = self._leases.get((kind, key))
        if held_until is not None and now < held_until:
            raise NotFoundError(f"{kind} is being exchanged by another request")
        self._leases[(kind, key)] = now + self.lease_ttl

    def set_client(self, client: ClientData) -> None:
        with self._lock:
            self.clients[client.client_id] = client

    def get_client_data(self, ctx: RequestContext, client_id: str) -> ClientData:
        ctx.raise_if_cancelled()
        with self._lock:
            try:
                return self.clients[client_id]
            except KeyError:
                raise NotFoundError(f"client {client_id!r} not found") from None

    def save_authorize_data(self, ctx: RequestContext, data: AuthorizeData) -> None:
        ctx.raise_if_cancelled()
        with self._lock:
            self.codes[data.code] = data

    def get_authorize_data(self, ctx: RequestContext, code: str) -> AuthorizeData:
        ctx.raise_if_cancelled()
        with self._lock:
            data = self.codes.get(code)
            if data is None:
                raise NotFoundError("authorization code not found")
            self._take_lease("authorization code", code)
            return data

    def delete_authorize_data(self, ctx: RequestContext, code: str) -> None:  # noqa: ARG002
        with self._lock:
            self.codes.pop(code, None)
            self._leases.pop(("authorization code", code), None)

    def save_access_data(self, ctx: RequestContext, data: AccessData) -> None:
        ctx.raise_if_cancelled()
        with self._lock:
            self.access[data.access_token] = data

    def get_access_data(self, ctx: RequestContext, token: str) -> AccessData:
        ctx.raise_if_cancelled()
        with self._lock:
            try:
                return self.access[token]
            except KeyError:
                raise NotFoundError("access token not found") from None

    def get_refresh_token_data(self, ctx: RequestContext, token: str) -> RefreshTokenData:
        ctx.raise_if_cancelled()
        with self._lock:
            try:
                data = self.refresh[token]
            except KeyError:
                raise NotFoundError("refresh token not found") from None
            self._take_lease("refresh token", token)
            return data

    def save_refresh_token_data(self, ctx: RequestContext, data: RefreshTokenData) -> None:
        ctx.raise_if_cancelled()
        with self._lock:
            self.refresh[data.refresh_token] = data

    def delete_refresh_token_data(self, ctx: RequestContext, token: str) -> None:  # noqa: ARG002
        with self._lock:
            self.refresh.pop(token, None)
            self._leases.pop(("refresh token", token), None)


# --------------------------------------------------------------------------- #
# Disk implementation                                                         #
# --------------------------------------------------------------------------- #


def _hash(text: str, length: int = 64) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


def _read(path: Path) -> dict[str, Any] | None:
    try:
        with path.open(encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError:
        return None


def _remove(path: Path) -> None:
    """Atomically claim *path* by renaming it, then unlink the claimed copy."""
    claimed = path.with_suffix(path.suffix + f".del-{threading.get_ident()}")
    try:
        os.replace(path, claimed)
    except FileNotFoundError:
        return  # already gone, or another deleter won
    claimed.unlink(missing_ok=True)


def _lease_path(path: Path) -> Path:
    return path.with_suffix(".lease")


def _lease_expiry(lease: Path) -> float | None:
    """Return the lease deadline, ``None`` if there is no lease file."""
    try:
        with lease.open(encoding="utf-8") as fh:
            return float(json.load(fh)["expires_at"])
    except FileNotFoundError:
        return None
    except (ValueError, KeyError, TypeError):
        # Created but not written yet: the holder is live.
        return float("inf")


class DiskStorage(Storage):
    """JSON-file implementation of :class:`Storage`.

    Codes and tokens are secrets, so file names are their SHA-256 digests.
    Records referencing a client store only its id; the client is joined back
    in on load.  ``user_data`` must be JSON-serialisable.
    """

    def __init__(
        self,
        base_dir: str | os.PathLike | None = None,
        *,
        clock: Clock = default_clock,
        lease_ttl: float = DEFAULT_LEASE_TTL,
    ) -> None:
        self.base_dir = Path(
            base_dir
            or env_get("STORAGE_DIR")
            or Path.home() / ".token-issuer" / "store"
        ).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self.lease_ttl = lease_ttl
        self._closed = False

    def close(self) -> None:
        self._closed = True

    def _check(self, ctx: RequestContext) -> None:
        if self._closed:
            raise RuntimeError("storage is closed")
        ctx.raise_if_cancelled()

    # ---------------- paths ---------------------------------------------- #
    def _client_path(self, client_id: str) -> Path:
        return self.base_dir / "clients" / f"{_hash(client_id, 32)}.json"

    def _code_path(self, code: str) -> Path:
        return self.base_dir / "codes" / f"{_hash(code)}.json"

    def _access_path(self, token: str) -> Path:
        return self.base_dir / "access" / f"{_hash(token)}.json"

    def _refresh_path(self, token: str) -> Path:
        return self.base_dir / "refresh" / f"{_hash(token)}.json"

    # ---------------- leases --------------------------------------------- #
    def _take_lease(self, path: Path) -> None:
        """Create the ``O_EXCL`` lease file next to *path*."""
        lease = _lease_path(path)
        lease.parent.mkdir(parents=True, exist_ok=True)
        now = self._clock()
        for _ in range(2):
            try:
                fd = os.open(lease, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                expires_at = _lease_expiry(lease)
                if expires_at is not None and now < expires_at:
                    raise NotFoundError("record is being exchanged by another request") from None
                _remove(lease)  # stale
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump({"expires_at": now + self.lease_ttl}, fh)
            return
        raise NotFoundError("record is being exchanged by another request")

    def _leased_read(self, path: Path) -> dict[str, Any] | None:
        """Lease *path*, then read it; the lease is dropped if it is absent."""
        if not path.exists():
            return None
        self._take_lease(path)
        data = _read(path)
        if data is None:
            _remove(_lease_path(path))
        return data

    @staticmethod
    def _delete_leased(path: Path) -> None:
        # Record first: a lookup racing the delete must not find it unleased.
        _remove(path)
        _remove(_lease_path(path))

    # ---------------- clients -------------------------------------------- #
    def set_client(self, client: ClientData) -> None:
        _atomic_write(self._client_path(client.client_id), asdict(client))

    def get_client_data(self, ctx: RequestContext, client_id: str) -> ClientData:
        self._check(ctx)
        data = _read(self._client_path(client_id))
        if data is None:
            raise NotFoundError(f"client {client_id!r} not found")
        return ClientData(**data)

    def _with_client(self, ctx: RequestContext, data: dict[str, Any]) -> dict[str, Any]:
        record = dict(data)
        record["client"] = self.get_client_data(ctx, record.pop("client_id"))
        return record

    @staticmethod
    def _without_client(record: AuthorizeData | AccessData) -> dict[str, Any]:
        data = asdict(record)
        data.pop("client")
        data["client_id"] = record.client.client_id
        return data

    # ---------------- authorization codes -------------------------------- #
    def save_authorize_data(self, ctx: RequestContext, data: AuthorizeData) -> None:
        self._check(ctx)
        _atomic_write(self._code_path(data.code), self._without_client(data))

    def get_authorize_data(self, ctx: RequestContext, code: str) -> AuthorizeData:
        self._check(ctx)
        data = self._leased_read(self._code_path(code))
        if data is None:
            raise NotFoundError("authorization code not found")
        return AuthorizeData(**self._with_client(ctx, data))

    def delete_authorize_data(self, ctx: RequestContext, code: str) -> None:  # noqa: ARG002
        self._delete_leased(self._code_path(code))

    # ---------------- access tokens -------------------------------------- #
    def save_access_data(self, ctx: RequestContext, data: AccessData) -> None:
        self._check(ctx)
        _atomic_write(self._access_path(data.access_token), self._without_client(data))

    def get_access_data(self, ctx: RequestContext, token: str) -> AccessData:
        self._check(ctx)
        data = _read(self._access_path(token))
        if data is None:
            raise NotFoundError("access token not found")
        return AccessData(**self._with_client(ctx, data))

    # ---------------- refresh tokens ------------------------------------- #
    def get_refresh_token_data(self, ctx: RequestContext, token: str) -> RefreshTokenData:
        self._check(ctx)
        data = self._leased_read(self._refresh_path(token))
        if data is None:
            raise NotFoundError("refresh token not found")
        return RefreshTokenData(**data)

    def save_refresh_token_data(self, ctx: RequestContext, data: RefreshTokenData) -> None:
        self._check(ctx)
        _atomic_write(self._refresh_path(data.refresh_token), asdict(data))

    def delete_refresh_token_data(self, ctx: RequestContext, token: str) -> None:  # noqa: ARG002
        self._delete_leased(self._refresh_path(token))

    # ---------------- maintenance ---------------------------------------- #
    def cleanup_expired_codes(self, now: float) -> int:
        """Remove authorization codes expired at *now*; return how many."""
        codedir = self.base_dir / "codes"
        if not codedir.exists():
            return 0
        removed = 0
        for p in codedir.glob("*.json"):
            data = _read(p)
            if data is None:
                continue
            expire_at = float(data.get("created_at", 0)) + int(data.get("expires_in", 0))
            if expire_at <= now:
                self._delete_leased(p)
                removed += 1
        _LOG.debug("Removed %d expired authorization codes", removed)
        return removed
