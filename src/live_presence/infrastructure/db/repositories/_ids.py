from __future__ import annotations

from uuid import UUID


def parse_user_id(user_id: str) -> UUID | None:
    """Hosted-auth user ids are UUIDs; anything else has no rows."""
    try:
        return UUID(user_id)
    except ValueError:
        return None
