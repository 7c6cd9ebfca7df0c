from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from live_presence.api.middleware.correlation_id import CorrelationIdMiddleware
from live_presence.api.v1.routers import health, rooms, ws
from live_presence.application.exceptions import RoomUnavailableError
from live_presence.application.ports.realtime import RealtimeTransport
from live_presence.config import settings
from live_presence.infrastructure.db.repositories.profile import ProfileReaderRepo
from live_presence.infrastructure.db.repositories.user_role import UserRoleReaderRepo
from live_presence.infrastructure.db.session import AsyncSessionLocal, engine
from live_presence.infrastructure.realtime.memory import InMemoryTransport
from live_presence.infrastructure.realtime.redis_transport import RedisTransport
from live_presence.services.channel_session import ChannelSession

logger = logging.getLogger(__name__)


def _build_transport(redis: aioredis.Redis) -> RealtimeTransport:
    if settings.REALTIME_BACKEND == "memory":
        logger.warning("Using in-memory realtime transport; presence is process-local")
        return InMemoryTransport()
    return RedisTransport(
        redis,
        prefix=settings.REALTIME_KEY_PREFIX,
        presence_ttl=settings.REALTIME_PRESENCE_TTL_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""
    app.state.redis = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
    )
    logger.info("Redis connection pool created")

    app.state.channel_session = ChannelSession(
        _build_transport(app.state.redis),
        ProfileReaderRepo(AsyncSessionLocal),
        UserRoleReaderRepo(AsyncSessionLocal),
        echo_self=settings.CHAT_ECHO_SELF,
    )

    yield

    await app.state.channel_session.close()
    await app.state.redis.aclose()
    await engine.dispose()
    logger.info("Redis connection pool closed")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Live Presence Service",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(rooms.router)
    app.include_router(ws.router)

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RoomUnavailableError)
    async def _unavailable(_req: Request, exc: RoomUnavailableError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": exc.detail})
