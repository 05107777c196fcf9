"""Bearer token authentication."""

from __future__ import annotations

import hmac
import logging
import secrets
from typing import Iterable, Optional

from .errors import AuthenticationError
from .models import CapabilityToken

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


def generate_token() -> str:
    """Generate a new random token secret."""
    return secrets.token_urlsafe(32)


class Authenticator:
    """Maps presented credentials to configured capability tokens."""

    def __init__(self, tokens: Iterable[CapabilityToken]):
        self.tokens = list(tokens)

    def authenticate(self, credential: Optional[str]) -> CapabilityToken:
        """Return the token matching `credential` ("Bearer <secret>" or the bare secret).

        Raises:
            AuthenticationError: If no tokens are configured, or the credential
                is missing or unknown.
        """
        if not self.tokens:
            raise AuthenticationError("No access tokens are configured for this vault")
        if not credential or not credential.strip():
            raise AuthenticationError("Missing access token")

        secret = credential.strip()
        if secret.lower().startswith(BEARER_PREFIX):
            secret = secret[len(BEARER_PREFIX):].strip()

        match = None
        for token in self.tokens:
            # no early exit
            if hmac.compare_digest(token.value.encode(), secret.encode()) and match is None:
                match = token
        if match is None:
            logger.warning("Rejected unknown access token")
            raise AuthenticationError("Invalid access token")

        logger.info("Authenticated token %s (tier %s)", match.name, match.tier.value)
        return match
