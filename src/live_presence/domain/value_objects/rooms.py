from __future__ import annotations

from live_presence.domain.value_objects.enums import RoomKind
from live_presence.domain.value_objects.ids import RoomId


def room_id_for(stream_id: str, kind: RoomKind = RoomKind.CHAT) -> RoomId:
    """Derive the broadcast room for one live-stream session."""
    return RoomId(f"{kind.value}_{stream_id}")
