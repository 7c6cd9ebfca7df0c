"""Read-only projection of room membership, rebuilt from full-state syncs."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping

from pydantic import ValidationError as PayloadError

from live_presence.application.dto.realtime import ParticipantPayload
from live_presence.domain.entities.participant import ParticipantDescriptor
from live_presence.domain.entities.presence import PresenceSnapshot

logger = logging.getLogger(__name__)


def snapshot_from_state(
    room_id: str,
    revision: int,
    state: Mapping[str, Mapping[str, Any]],
    *,
    synced_at: datetime | None = None,
) -> PresenceSnapshot:
    """Build a typed snapshot from a raw presence table.

    The table key is the participant key; entries that do not parse are
    skipped.
    """
    participants: dict[str, ParticipantDescriptor] = {}
    for key, meta in state.items():
        try:
            payload = ParticipantPayload.model_validate({**meta, "participant_key": key})
        except PayloadError:
            logger.warning("Skipping malformed presence entry %s in room %s", key, room_id)
            continue
        participants[key] = payload.to_entity()
    return PresenceSnapshot.build(
        room_id, participants, revision=revision, synced_at=synced_at,
    )


class PresenceRegistry:
    """Last known snapshot per room.

    Only the owning ``ChannelSession`` calls ``apply`` / ``forget``; everyone
    else reads.
    """

    def __init__(self) -> None:
        self._snapshots: dict[str, PresenceSnapshot] = {}

    def current_snapshot(self, room_id: str) -> PresenceSnapshot:
        snapshot = self._snapshots.get(room_id)
        if snapshot is None:
            return PresenceSnapshot.empty(room_id)
        return snapshot

    def count(self, room_id: str) -> int:
        return self.current_snapshot(room_id).count

    def privileged_count(self, room_id: str) -> int:
        return self.current_snapshot(room_id).privileged_count

    def rooms(self) -> list[str]:
        return list(self._snapshots)

    def apply(self, snapshot: PresenceSnapshot) -> bool:
        """Replace the room's snapshot unless ``snapshot`` is not newer."""
        current = self._snapshots.get(snapshot.room_id)
        if current is not None and snapshot.revision <= current.revision:
            logger.debug(
                "Ignoring stale presence sync for %s (rev %d <= %d)",
                snapshot.room_id, snapshot.revision, current.revision,
            )
            return False
        self._snapshots[snapshot.room_id] = snapshot
        return True

    def forget(self, room_id: str) -> None:
        self._snapshots.pop(room_id, None)
