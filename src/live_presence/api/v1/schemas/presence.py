from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from live_presence.domain.entities.message import ChatMessage
from live_presence.domain.entities.participant import ParticipantDescriptor
from live_presence.domain.entities.presence import PresenceSnapshot


class ParticipantResponse(BaseModel):
    participant_key: str
    display_name: str
    is_privileged: bool
    joined_at: datetime
    avatar_url: str | None = None

    model_config = {"from_attributes": True}


class PresenceResponse(BaseModel):
    room_id: str
    revision: int
    count: int
    privileged_count: int
    participants: list[ParticipantResponse]

    @classmethod
    def from_snapshot(cls, snapshot: PresenceSnapshot) -> PresenceResponse:
        ordered: list[ParticipantDescriptor] = sorted(snapshot, key=lambda d: d.joined_at)
        return cls(
            room_id=snapshot.room_id,
            revision=snapshot.revision,
            count=snapshot.count,
            privileged_count=snapshot.privileged_count,
            participants=[ParticipantResponse.model_validate(d) for d in ordered],
        )


class ChatMessageResponse(BaseModel):
    message_id: UUID
    room_id: str
    sender_key: str
    sender_display_name: str
    sender_is_privileged: bool
    sender_avatar_url: str | None = None
    body: str
    sent_at: datetime

    model_config = {"from_attributes": True}

    @classmethod
    def from_entity(cls, message: ChatMessage) -> ChatMessageResponse:
        return cls.model_validate(message)
