"""Room-scoped pub/sub primitive with built-in presence.

A channel joins one topic. Presence mutations (``track`` / ``untrack``) make
the transport publish the *full* presence table of the topic, tagged with a
revision that increases with every mutation. Broadcasts are fire-and-forget.
Every callback of one channel is awaited on a single task, in arrival order.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol

PresenceState = dict[str, dict[str, Any]]

OnPresence = Callable[[int, PresenceState], Awaitable[None]]
OnBroadcast = Callable[[str, dict[str, Any]], Awaitable[None]]
OnClose = Callable[[], Awaitable[None]]


class TransportError(Exception):
    """Connection-level failure of the realtime transport."""


class RealtimeChannel(Protocol):
    topic: str

    async def subscribe(
        self,
        on_presence: OnPresence,
        on_broadcast: OnBroadcast,
        on_close: OnClose,
    ) -> None: ...

    async def track(self, key: str, meta: dict[str, Any]) -> None: ...

    async def untrack(self, key: str) -> None: ...

    async def send(self, event: str, payload: dict[str, Any], *, echo: bool = True) -> None: ...

    async def unsubscribe(self) -> None: ...


class RealtimeTransport(Protocol):
    def channel(self, topic: str) -> RealtimeChannel: ...

    async def presence_state(self, topic: str) -> tuple[int, PresenceState]: ...
