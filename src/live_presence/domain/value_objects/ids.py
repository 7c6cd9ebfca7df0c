from __future__ import annotations

from typing import NewType
from uuid import UUID

RoomId = NewType("RoomId", str)
MessageId = NewType("MessageId", UUID)
