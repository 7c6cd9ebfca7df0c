"""FastAPI dependency injection helpers."""
from __future__ import annotations

from typing import Annotated

from fastapi import Depends
from starlette.requests import HTTPConnection

from live_presence.application.ports.auth import TokenVerifier
from live_presence.config import settings
from live_presence.infrastructure.auth.hs256_verifier import HS256Verifier
from live_presence.infrastructure.auth.jwks_verifier import JWKSVerifier
from live_presence.services.channel_session import ChannelSession


def _get_verifier() -> TokenVerifier:
    if settings.JWT_VERIFY_MODE == "jwks":
        assert settings.JWKS_URL, "JWKS_URL must be set when JWT_VERIFY_MODE=jwks"
        return JWKSVerifier(settings.JWKS_URL, audience=settings.JWT_AUDIENCE)
    return HS256Verifier(settings.JWT_SECRET, settings.JWT_ALGORITHM, audience=settings.JWT_AUDIENCE)


_verifier: TokenVerifier | None = None


def get_verifier() -> TokenVerifier:
    global _verifier  # noqa: PLW0603
    if _verifier is None:
        _verifier = _get_verifier()
    return _verifier


def get_channel_session(conn: HTTPConnection) -> ChannelSession:
    return conn.app.state.channel_session


ChannelSessionDep = Annotated[ChannelSession, Depends(get_channel_session)]
