"""Constants and helpers shared by the test modules."""

from __future__ import annotations

import base64

from token_issuer.core.models import ClientData

NOW = 1_700_000_000.0

CLIENT = ClientData(
    client_id="app-1",
    secret="s3cret",
    redirect_uri="https://app.example/cb https://app.example/alt",
)
OTHER_CLIENT = ClientData(client_id="app-2", secret="other", redirect_uri="https://two.example/cb")

# RFC 7636 appendix B
RFC_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
RFC_CHALLENGE = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def basic_auth(client_id: str = CLIENT.client_id, secret: str = CLIENT.secret) -> dict[str, str]:
    """Return an ``Authorization: Basic`` header for *client_id*."""
    raw = f"{client_id}:{secret}".encode()
    return {"Authorization": "Basic " + base64.b64encode(raw).decode("ascii")}
