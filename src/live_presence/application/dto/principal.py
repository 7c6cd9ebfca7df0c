from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller identity extracted from JWT."""

    user_id: str
    email: str | None = None
    roles: list[str] = field(default_factory=list)

    @property
    def participant_key(self) -> str:
        """Stable presence key: one entry per user per room."""
        return self.user_id
