from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from live_presence.infrastructure.db.models.user_role import UserRoleModel
from live_presence.infrastructure.db.repositories._ids import parse_user_id

ADMIN_ROLE = "admin"


class UserRoleReaderRepo:
    """Implements application.ports.identity.PrivilegeChecker."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def is_admin(self, user_id: str) -> bool:
        uid = parse_user_id(user_id)
        if uid is None:
            return False
        stmt = (
            select(UserRoleModel.id)
            .where(
                UserRoleModel.user_id == uid,
                UserRoleModel.role == ADMIN_ROLE,
            )
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none() is not None
