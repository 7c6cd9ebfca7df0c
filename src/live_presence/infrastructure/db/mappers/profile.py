from __future__ import annotations

from live_presence.domain.entities.profile import Profile
from live_presence.infrastructure.db.models.profile import ProfileModel


def model_to_entity(model: ProfileModel) -> Profile:
    return Profile(
        user_id=str(model.user_id),
        display_name=model.display_name,
        avatar_url=model.avatar_url,
    )
