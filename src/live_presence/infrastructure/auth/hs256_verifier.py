from __future__ import annotations

import jwt

from live_presence.application.dto.principal import Principal
from live_presence.infrastructure.auth.claims import decode_options, principal_from_claims


class HS256Verifier:
    """Verify JWTs signed with the project's shared HS256 secret."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        audience: str | None = None,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._audience = audience

    async def verify(self, token: str) -> Principal:
        payload = jwt.decode(
            token,
            self._secret,
            algorithms=[self._algorithm],
            **decode_options(self._audience),
        )
        return principal_from_claims(payload)
