from __future__ import annotations

import asyncio
import logging

import jwt
from jwt import PyJWKClient

from live_presence.application.dto.principal import Principal
from live_presence.infrastructure.auth.claims import decode_options, principal_from_claims

logger = logging.getLogger(__name__)


class JWKSVerifier:
    """Verify JWTs using the auth provider's JWKS endpoint."""

    def __init__(self, jwks_url: str, audience: str | None = None) -> None:
        self._jwks_url = jwks_url
        self._audience = audience
        self._jwk_client = PyJWKClient(jwks_url)

    async def verify(self, token: str) -> Principal:
        # PyJWKClient fetches keys with blocking I/O
        signing_key = await asyncio.to_thread(self._jwk_client.get_signing_key_from_jwt, token)
        payload = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256", "ES256"],
            **decode_options(self._audience),
        )
        return principal_from_claims(payload)
