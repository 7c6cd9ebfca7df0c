from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class ValidationError(AppError):
    """Input rejected locally, before anything reaches the transport."""


class NotJoinedError(AppError):
    """The handle never joined its room, or has already left it."""


class RoomUnavailableError(AppError):
    """The realtime transport could not be reached. Callers own the retry policy."""
