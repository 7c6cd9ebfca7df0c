from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class ParticipantDescriptor:
    """Presence record a client registers when it joins a room.

    Lives only in the transport's presence table for the lifetime of the
    connection; never persisted.
    """

    participant_key: str
    display_name: str
    is_privileged: bool
    joined_at: datetime
    avatar_url: str | None = None
