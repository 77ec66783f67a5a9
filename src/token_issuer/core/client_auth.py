"""Client authentication for the token endpoint (RFC 6749 §2.3.1).

Credentials come from the HTTP Basic ``Authorization`` header or, when the
server allows it, from the ``client_id`` / ``client_secret`` parameters.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import logging
from dataclasses import dataclass, field
from urllib.parse import unquote_plus

from token_issuer.core.context import RequestContext
from token_issuer.core.errors import ErrorCode, NotFoundError, OAuthError, wrap_error
from token_issuer.core.models import ClientData, TokenRequest
from token_issuer.core.store import Storage

_LOG = logging.getLogger("token-issuer.core.client_auth")


@dataclass(frozen=True, slots=True)
class ClientCredentials:
    client_id: str
    secret: str = field(default="", repr=False)


def _parse_basic_auth(header: str) -> ClientCredentials | None:
    """Decode a ``Basic`` authorization header, or return ``None`` if absent."""
    if not header:
        return None
    scheme, _, param = header.partition(" ")
    if scheme.lower() != "basic":
        return None
    try:
        decoded = base64.b64decode(param.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise OAuthError(
            ErrorCode.INVALID_REQUEST, "malformed basic authorization header"
        ) from None
    client_id, sep, secret = decoded.partition(":")
    if not sep:
        raise OAuthError(ErrorCode.INVALID_REQUEST, "malformed basic authorization header")
    # RFC 6749 §2.3.1: both parts are form-urlencoded before base64 encoding.
    return ClientCredentials(unquote_plus(client_id), unquote_plus(secret))


def get_client_auth(request: TokenRequest, allow_secret_in_params: bool) -> ClientCredentials:
    """Extract client credentials from *request*.

    Raises
    ------
    OAuthError
        ``invalid_request`` if no usable credentials were sent.
    """
    if allow_secret_in_params:
        client_id = request.get("client_id")
        if client_id:
            return ClientCredentials(client_id, request.get("client_secret"))

    creds = _parse_basic_auth(request.header("Authorization"))
    if creds is None or not creds.client_id:
        raise OAuthError(ErrorCode.INVALID_REQUEST, "client authentication not sent")
    return creds


def get_client_data(
    ctx: RequestContext, creds: ClientCredentials, storage: Storage
) -> ClientData:
    """Load the client named in *creds* and check its secret.

    Raises
    ------
    OAuthError
        ``invalid_client`` for an unknown client or wrong secret,
        ``server_error`` if the storage fails.
    """
    ctx.raise_if_cancelled()
    try:
        client = storage.get_client_data(ctx, creds.client_id)
    except NotFoundError as exc:
        raise wrap_error(ErrorCode.INVALID_CLIENT, exc, "client not found")
    except Exception as exc:
        raise wrap_error(ErrorCode.SERVER_ERROR, exc, "error finding client")

    if not hmac.compare_digest(
        client.secret.encode("utf-8"), creds.secret.encode("utf-8")
    ):
        _LOG.info("Client secret mismatch for client_id=%s", creds.client_id)
        raise OAuthError(ErrorCode.INVALID_CLIENT, "client authentication failed")
    return client
