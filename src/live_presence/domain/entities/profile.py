from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Profile:
    user_id: str
    display_name: str | None
    avatar_url: str | None
