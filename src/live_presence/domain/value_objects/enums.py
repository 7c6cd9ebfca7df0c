from __future__ import annotations

from enum import StrEnum


class SessionState(StrEnum):
    UNJOINED = "unjoined"
    JOINING = "joining"
    JOINED = "joined"
    LEFT = "left"


class RoomKind(StrEnum):
    CHAT = "stream"
    VIEWERS = "viewers"


class BroadcastEvent(StrEnum):
    CHAT_MESSAGE = "chat_message"
