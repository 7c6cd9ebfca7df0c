"""Typed wire payloads carried by the realtime transport.

Unknown keys in incoming payloads are dropped rather than passed through.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from live_presence.domain.entities.message import ChatMessage
from live_presence.domain.entities.participant import ParticipantDescriptor
from live_presence.domain.value_objects.limits import MAX_CHAT_BODY_LENGTH


class ParticipantPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    participant_key: str
    display_name: str
    is_privileged: bool = False
    joined_at: datetime
    avatar_url: str | None = None

    @classmethod
    def from_entity(cls, descriptor: ParticipantDescriptor) -> ParticipantPayload:
        return cls(
            participant_key=descriptor.participant_key,
            display_name=descriptor.display_name,
            is_privileged=descriptor.is_privileged,
            joined_at=descriptor.joined_at,
            avatar_url=descriptor.avatar_url,
        )

    def to_entity(self) -> ParticipantDescriptor:
        return ParticipantDescriptor(
            participant_key=self.participant_key,
            display_name=self.display_name,
            is_privileged=self.is_privileged,
            joined_at=self.joined_at,
            avatar_url=self.avatar_url,
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ChatMessagePayload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    message_id: UUID
    room_id: str
    sender_key: str
    sender_display_name: str
    sender_is_privileged: bool = False
    body: str = Field(min_length=1, max_length=MAX_CHAT_BODY_LENGTH)
    sent_at: datetime
    sender_avatar_url: str | None = None

    @classmethod
    def from_entity(cls, message: ChatMessage) -> ChatMessagePayload:
        return cls(
            message_id=message.message_id,
            room_id=message.room_id,
            sender_key=message.sender_key,
            sender_display_name=message.sender_display_name,
            sender_is_privileged=message.sender_is_privileged,
            body=message.body,
            sent_at=message.sent_at,
            sender_avatar_url=message.sender_avatar_url,
        )

    def to_entity(self) -> ChatMessage:
        return ChatMessage(
            message_id=self.message_id,
            room_id=self.room_id,
            sender_key=self.sender_key,
            sender_display_name=self.sender_display_name,
            sender_is_privileged=self.sender_is_privileged,
            body=self.body,
            sent_at=self.sent_at,
            sender_avatar_url=self.sender_avatar_url,
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
