"""Structured logging helpers for the token pipeline.

This module purposefully restricts **which** contextual attributes are attached
to log records in order to avoid accidentally leaking secrets.  The helper
ONLY injects the following *non-sensitive* fields:

- ``grant_type``     – Wire value of the requested grant
- ``client_id``      – Identifier of the authenticating client
- ``correlation_id`` – Request correlation id set by the HTTP layer

Tokens, authorization codes, code verifiers, passwords and client secrets are
never attached.

Usage
-----
>>> from token_issuer.core.log_utils import get_token_logger
>>> log = get_token_logger(grant_type="refresh_token", client_id="app-1")
>>> log.info("Issued access token")
INFO token-issuer.core grant_type=refresh_token client_id=app-1 ...

The adapter is a thin wrapper around :class:`logging.LoggerAdapter`.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


class _TokenLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted request context into log records."""

    extra_keys = ("grant_type", "client_id", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if extra and extra.get(k) is not None:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # merge but do not overwrite call-site provided extras
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        if self.extra:
            context = " ".join(f"{k}={v}" for k, v in self.extra.items())
            msg = f"{msg} [{context}]"
        return msg, kwargs


def get_token_logger(
    *,
    base_logger_name: str = "token-issuer.core",
    grant_type: str | None = None,
    client_id: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with request context."""
    logger = logging.getLogger(base_logger_name)
    return _TokenLoggerAdapter(
        logger,
        {
            "grant_type": grant_type,
            "client_id": client_id,
            "correlation_id": correlation_id,
        },
    )
