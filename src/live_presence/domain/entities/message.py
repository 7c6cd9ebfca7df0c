from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class ChatMessage:
    message_id: UUID
    room_id: str
    sender_key: str
    sender_display_name: str
    sender_is_privileged: bool
    body: str
    sent_at: datetime
    sender_avatar_url: str | None = None
