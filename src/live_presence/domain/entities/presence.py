from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Iterator, Mapping

from live_presence.domain.entities.participant import ParticipantDescriptor


@dataclass(frozen=True, slots=True)
class PresenceSnapshot:
    """Full membership of one room as of a single sync event.

    A snapshot always replaces the previous one wholesale; ``revision`` orders
    snapshots of the same room.
    """

    room_id: str
    participants: Mapping[str, ParticipantDescriptor] = field(
        default_factory=lambda: MappingProxyType({})
    )
    revision: int = 0
    synced_at: datetime | None = None

    @classmethod
    def build(
        cls,
        room_id: str,
        participants: Mapping[str, ParticipantDescriptor],
        *,
        revision: int,
        synced_at: datetime | None = None,
    ) -> PresenceSnapshot:
        return cls(
            room_id=room_id,
            participants=MappingProxyType(dict(participants)),
            revision=revision,
            synced_at=synced_at,
        )

    @classmethod
    def empty(cls, room_id: str) -> PresenceSnapshot:
        return cls(room_id=room_id)

    def __len__(self) -> int:
        return len(self.participants)

    def __contains__(self, participant_key: object) -> bool:
        return participant_key in self.participants

    def __iter__(self) -> Iterator[ParticipantDescriptor]:
        return iter(self.participants.values())

    @property
    def count(self) -> int:
        return len(self.participants)

    @property
    def privileged_count(self) -> int:
        return sum(1 for d in self.participants.values() if d.is_privileged)

    def get(self, participant_key: str) -> ParticipantDescriptor | None:
        return self.participants.get(participant_key)
