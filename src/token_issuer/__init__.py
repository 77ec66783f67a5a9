"""OAuth 2.0 token issuance (RFC 6749 / RFC 7636) for Python services."""

from token_issuer.core import *  # noqa: F401,F403
from token_issuer.core import __all__  # noqa: F401

__version__ = "0.1.0"
