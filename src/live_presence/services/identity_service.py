from __future__ import annotations

import uuid

from live_presence.application.dto.principal import Principal
from live_presence.application.ports.clock import Clock
from live_presence.application.ports.identity import PrivilegeChecker, ProfileStore
from live_presence.domain.entities.participant import ParticipantDescriptor
from live_presence.domain.value_objects.limits import (
    ANONYMOUS_DISPLAY_NAME,
    ANONYMOUS_KEY_PREFIX,
)


def anonymous_descriptor(clock: Clock) -> ParticipantDescriptor:
    return ParticipantDescriptor(
        participant_key=f"{ANONYMOUS_KEY_PREFIX}{uuid.uuid4()}",
        display_name=ANONYMOUS_DISPLAY_NAME,
        is_privileged=False,
        joined_at=clock.now(),
    )


async def resolve_descriptor(
    principal: Principal | None,
    profiles: ProfileStore,
    privileges: PrivilegeChecker,
    clock: Clock,
) -> ParticipantDescriptor:
    """Build the join record for ``principal``.

    Profile and privilege are looked up once here and cached in the
    descriptor for the rest of the session.
    """
    if principal is None:
        return anonymous_descriptor(clock)

    profile = await profiles.get_profile(principal.user_id)
    display_name = profile.display_name if profile is not None else None
    if not display_name and principal.email:
        display_name = principal.email.split("@", 1)[0]

    return ParticipantDescriptor(
        participant_key=principal.participant_key,
        display_name=display_name or ANONYMOUS_DISPLAY_NAME,
        is_privileged=await privileges.is_admin(principal.user_id),
        joined_at=clock.now(),
        avatar_url=profile.avatar_url if profile is not None else None,
    )
