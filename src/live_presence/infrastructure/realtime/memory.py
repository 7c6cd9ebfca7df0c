"""Process-local realtime hub.

Every channel owns a queue drained by one dispatcher task, so callbacks of a
channel never overlap and run in the order events were produced.
"""
from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from functools import partial
from typing import Any, Awaitable, Callable

from live_presence.application.ports.realtime import (
    OnBroadcast,
    OnClose,
    OnPresence,
    PresenceState,
    TransportError,
)

logger = logging.getLogger(__name__)

_Delivery = Callable[[], Awaitable[None]]


class _Topic:
    def __init__(self, name: str) -> None:
        self.name = name
        self.channels: list[InMemoryChannel] = []
        # key -> (owning conn_id, meta)
        self.presence: dict[str, tuple[str, dict[str, Any]]] = {}
        self.revision = 0

    def state(self) -> PresenceState:
        return {key: copy.deepcopy(meta) for key, (_conn, meta) in self.presence.items()}

    @property
    def is_empty(self) -> bool:
        return not self.channels and not self.presence


class InMemoryTransport:
    """Implements application.ports.realtime.RealtimeTransport."""

    def __init__(self) -> None:
        self._topics: dict[str, _Topic] = {}
        self.available = True

    def channel(self, topic: str) -> InMemoryChannel:
        return InMemoryChannel(self, topic)

    async def presence_state(self, topic: str) -> tuple[int, PresenceState]:
        self._check_available()
        t = self._topics.get(topic)
        if t is None:
            return 0, {}
        return t.revision, t.state()

    async def drop(self, channel: InMemoryChannel) -> None:
        """Simulate the connection of ``channel`` going away."""
        if not channel.is_subscribed:
            return
        await channel._shutdown()
        self._detach(channel)
        logger.info("Dropped realtime connection %s on %s", channel.conn_id, channel.topic)
        if channel._on_close is not None:
            await channel._on_close()

    async def drain(self) -> None:
        """Wait until every queued delivery has been processed."""
        while True:
            busy = [
                ch for t in list(self._topics.values()) for ch in t.channels if ch.pending
            ]
            if not busy:
                return
            for ch in busy:
                await ch._queue.join()

    def _check_available(self) -> None:
        if not self.available:
            raise TransportError("realtime transport unavailable")

    def _attach(self, channel: InMemoryChannel) -> None:
        topic = self._topics.setdefault(channel.topic, _Topic(channel.topic))
        topic.channels.append(channel)

    def _detach(self, channel: InMemoryChannel) -> None:
        topic = self._topics.get(channel.topic)
        if topic is None:
            return
        if channel in topic.channels:
            topic.channels.remove(channel)
        owned = [key for key, (conn, _meta) in topic.presence.items() if conn == channel.conn_id]
        for key in owned:
            del topic.presence[key]
        if owned:
            self._sync(topic)
        if topic.is_empty:
            del self._topics[topic.name]

    def _set_presence(self, channel: InMemoryChannel, key: str, meta: dict[str, Any]) -> None:
        topic = self._topics[channel.topic]
        topic.presence[key] = (channel.conn_id, copy.deepcopy(meta))
        self._sync(topic)

    def _remove_presence(self, channel: InMemoryChannel, key: str) -> None:
        topic = self._topics[channel.topic]
        entry = topic.presence.get(key)
        if entry is None or entry[0] != channel.conn_id:
            return
        del topic.presence[key]
        self._sync(topic)

    def _sync(self, topic: _Topic) -> None:
        topic.revision += 1
        revision = topic.revision
        for ch in topic.channels:
            ch._enqueue(partial(ch._deliver_presence, revision, topic.state()))

    def _fanout(
        self,
        sender: InMemoryChannel,
        event: str,
        payload: dict[str, Any],
        echo: bool,
    ) -> None:
        topic = self._topics[sender.topic]
        for ch in topic.channels:
            if ch is sender and not echo:
                continue
            ch._enqueue(partial(ch._deliver_broadcast, event, copy.deepcopy(payload)))


class InMemoryChannel:
    """Implements application.ports.realtime.RealtimeChannel."""

    def __init__(self, hub: InMemoryTransport, topic: str) -> None:
        self.topic = topic
        self.conn_id = uuid.uuid4().hex
        self._hub = hub
        self._queue: asyncio.Queue[_Delivery | None] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._subscribed = False
        self._pending = 0
        self._on_presence: OnPresence | None = None
        self._on_broadcast: OnBroadcast | None = None
        self._on_close: OnClose | None = None

    @property
    def is_subscribed(self) -> bool:
        return self._subscribed

    @property
    def pending(self) -> int:
        return self._pending

    async def subscribe(
        self,
        on_presence: OnPresence,
        on_broadcast: OnBroadcast,
        on_close: OnClose,
    ) -> None:
        self._hub._check_available()
        if self._subscribed or self._task is not None:
            raise TransportError(f"channel {self.topic} already subscribed")
        self._on_presence = on_presence
        self._on_broadcast = on_broadcast
        self._on_close = on_close
        self._task = asyncio.create_task(
            self._dispatch(), name=f"realtime-{self.topic}-{self.conn_id[:8]}",
        )
        self._subscribed = True
        self._hub._attach(self)

    async def track(self, key: str, meta: dict[str, Any]) -> None:
        self._require_subscribed()
        self._hub._set_presence(self, key, meta)

    async def untrack(self, key: str) -> None:
        self._require_subscribed()
        self._hub._remove_presence(self, key)

    async def send(self, event: str, payload: dict[str, Any], *, echo: bool = True) -> None:
        self._require_subscribed()
        self._hub._fanout(self, event, payload, echo)

    async def unsubscribe(self) -> None:
        if not self._subscribed:
            return
        await self._shutdown()
        self._hub._detach(self)

    def _require_subscribed(self) -> None:
        self._hub._check_available()
        if not self._subscribed:
            raise TransportError(f"channel {self.topic} is not subscribed")

    def _enqueue(self, delivery: _Delivery) -> None:
        if not self._subscribed:
            return
        self._pending += 1
        self._queue.put_nowait(delivery)

    async def _shutdown(self) -> None:
        self._subscribed = False
        task, self._task = self._task, None
        if task is None:
            return
        self._queue.put_nowait(None)
        if task is not asyncio.current_task():
            await task

    async def _deliver_presence(self, revision: int, state: PresenceState) -> None:
        if self._on_presence is not None:
            await self._on_presence(revision, state)

    async def _deliver_broadcast(self, event: str, payload: dict[str, Any]) -> None:
        if self._on_broadcast is not None:
            await self._on_broadcast(event, payload)

    async def _dispatch(self) -> None:
        while True:
            delivery = await self._queue.get()
            try:
                if delivery is None:
                    return
                if self._subscribed:
                    await delivery()
            except Exception:
                logger.exception("Error dispatching realtime event on %s", self.topic)
            finally:
                if delivery is not None:
                    self._pending -= 1
                self._queue.task_done()
