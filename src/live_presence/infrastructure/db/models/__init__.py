"""Import all models so Alembic can discover them via Base.metadata."""
from live_presence.infrastructure.db.models.profile import ProfileModel
from live_presence.infrastructure.db.models.user_role import UserRoleModel

__all__ = [
    "ProfileModel",
    "UserRoleModel",
]
