"""Chat message validation and identity stamping.

Identity fields of a message are always copied from the sender's registered
join record; nothing in an outgoing request can set them.
"""
from __future__ import annotations

import dataclasses
import uuid
from typing import Any

from live_presence.application.dto.realtime import ChatMessagePayload
from live_presence.application.exceptions import ValidationError
from live_presence.application.ports.clock import Clock
from live_presence.domain.entities.message import ChatMessage
from live_presence.domain.entities.participant import ParticipantDescriptor
from live_presence.domain.value_objects.limits import MAX_CHAT_BODY_LENGTH


def validate_body(body: object) -> str:
    """Return the trimmed body or raise ``ValidationError``."""
    if not isinstance(body, str):
        raise ValidationError("Message body must be a string")
    text = body.strip()
    if not text:
        raise ValidationError("Message body must not be empty")
    if len(text) > MAX_CHAT_BODY_LENGTH:
        raise ValidationError(
            f"Message body exceeds {MAX_CHAT_BODY_LENGTH} characters ({len(text)})"
        )
    return text


def build_chat_message(
    room_id: str,
    sender: ParticipantDescriptor,
    body: str,
    clock: Clock,
) -> ChatMessage:
    return ChatMessage(
        message_id=uuid.uuid4(),
        room_id=room_id,
        sender_key=sender.participant_key,
        sender_display_name=sender.display_name,
        sender_is_privileged=sender.is_privileged,
        body=validate_body(body),
        sent_at=clock.now(),
        sender_avatar_url=sender.avatar_url,
    )


def restamp_identity(message: ChatMessage, trusted: ParticipantDescriptor) -> ChatMessage:
    """Overwrite sender identity with the locally known join record."""
    if trusted.participant_key != message.sender_key:
        return message
    return dataclasses.replace(
        message,
        sender_display_name=trusted.display_name,
        sender_is_privileged=trusted.is_privileged,
        sender_avatar_url=trusted.avatar_url,
    )


def message_to_payload(message: ChatMessage) -> dict[str, Any]:
    return ChatMessagePayload.from_entity(message).to_wire()


def message_from_payload(payload: dict[str, Any]) -> ChatMessage:
    """Parse an incoming broadcast payload.

    Raises ``pydantic.ValidationError`` on malformed input.
    """
    return ChatMessagePayload.model_validate(payload).to_entity()
