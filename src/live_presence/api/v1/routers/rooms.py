from __future__ import annotations

from fastapi import APIRouter

from live_presence.api.deps import ChannelSessionDep
from live_presence.api.v1.schemas.presence import PresenceResponse
from live_presence.domain.value_objects.enums import RoomKind
from live_presence.domain.value_objects.rooms import room_id_for

router = APIRouter(prefix="/api/v1", tags=["presence"])


@router.get("/rooms/{room_id}/presence", response_model=PresenceResponse)
async def room_presence(room_id: str, session: ChannelSessionDep) -> PresenceResponse:
    snapshot = await session.peek(room_id)
    return PresenceResponse.from_snapshot(snapshot)


@router.get("/streams/{stream_id}/viewers", response_model=PresenceResponse)
async def stream_viewers(stream_id: str, session: ChannelSessionDep) -> PresenceResponse:
    snapshot = await session.peek(room_id_for(stream_id, RoomKind.VIEWERS))
    return PresenceResponse.from_snapshot(snapshot)
