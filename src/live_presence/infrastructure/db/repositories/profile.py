from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from live_presence.domain.entities.profile import Profile
from live_presence.infrastructure.db.mappers import profile as mapper
from live_presence.infrastructure.db.models.profile import ProfileModel
from live_presence.infrastructure.db.repositories._ids import parse_user_id


class ProfileReaderRepo:
    """Implements application.ports.identity.ProfileStore."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_profile(self, user_id: str) -> Profile | None:
        uid = parse_user_id(user_id)
        if uid is None:
            return None
        stmt = select(ProfileModel).where(ProfileModel.user_id == uid).limit(1)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model is not None else None
