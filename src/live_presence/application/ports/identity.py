"""Identity collaborators consulted once per join."""
from __future__ import annotations

from typing import Protocol

from live_presence.domain.entities.profile import Profile


class ProfileStore(Protocol):
    async def get_profile(self, user_id: str) -> Profile | None: ...


class PrivilegeChecker(Protocol):
    async def is_admin(self, user_id: str) -> bool: ...
