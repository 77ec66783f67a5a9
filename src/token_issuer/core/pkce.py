"""PKCE (Proof Key for Code Exchange) helpers.

RFC 7636 defines PKCE to bind an authorization code to the client that
requested it.  The client sends a *code challenge* derived from a secret
*code verifier* to the authorization endpoint and later proves possession of
the verifier at the token endpoint.

Both the ``plain`` and ``S256`` transformations are supported on the server
side; the generator helpers are used by tests and by clients embedding this
package.

This module intentionally performs **no logging** of verifiers or challenges.
"""

from __future__ import annotations

import base64
import hmac
import re
import secrets
from hashlib import sha256
from typing import Final

from token_issuer.core.errors import ErrorCode, OAuthError

PKCE_PLAIN: Final[str] = "plain"
PKCE_S256: Final[str] = "S256"

# RFC-7636 §4.1 mandates the verifier length between 43 and 128 characters.
_VERIFIER_LEN: Final[int] = 64
_ALLOWED_CHARS: Final[str] = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789"
    "-._~"
)
_VERIFIER_RE: Final[re.Pattern[str]] = re.compile(r"[A-Za-z0-9\-._~]{43,128}")


def generate_code_verifier(length: int = _VERIFIER_LEN) -> str:
    """Generate a high-entropy code verifier of *length* characters (43-128)."""
    if not 43 <= length <= 128:
        raise ValueError("code verifier length must be 43-128 characters")
    return "".join(secrets.choice(_ALLOWED_CHARS) for _ in range(length))


def code_challenge_s256(verifier: str) -> str:
    """Compute the *S256* PKCE code challenge for a given verifier.

    Returns
    -------
    str
        Base64url-encoded SHA-256 hash without padding.
    """
    digest = sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def is_valid_verifier(verifier: str) -> bool:
    """Return *True* if *verifier* matches the RFC 7636 §4.1 character set."""
    return _VERIFIER_RE.fullmatch(verifier or "") is not None


def transform_verifier(verifier: str, method: str | None) -> str:
    """Apply the ``code_challenge_method`` transform to *verifier*.

    Raises
    ------
    OAuthError
        ``invalid_request`` for an unsupported transform.
    """
    if not method or method == PKCE_PLAIN:
        return verifier
    if method == PKCE_S256:
        return code_challenge_s256(verifier)
    raise OAuthError(
        ErrorCode.INVALID_REQUEST,
        "code_challenge_method transform algorithm not supported (rfc7636)",
    )


def verify_code_verifier(verifier: str, challenge: str, method: str | None) -> None:
    """Check *verifier* against a stored *challenge*.

    Parameters
    ----------
    verifier:
        ``code_verifier`` sent to the token endpoint.
    challenge:
        ``code_challenge`` stored with the authorization code.
    method:
        Stored ``code_challenge_method``; empty means ``plain``.

    Raises
    ------
    OAuthError
        ``invalid_request`` for a malformed verifier or unknown method,
        ``invalid_grant`` when the transformed verifier differs from the
        challenge.
    """
    if not is_valid_verifier(verifier):
        raise OAuthError(ErrorCode.INVALID_REQUEST, "code_verifier invalid (rfc7636)")

    transformed = transform_verifier(verifier, method)
    if not hmac.compare_digest(transformed.encode("utf-8"), challenge.encode("utf-8")):
        raise OAuthError(
            ErrorCode.INVALID_GRANT,
            "code_verifier failed comparison with code_challenge",
        )
