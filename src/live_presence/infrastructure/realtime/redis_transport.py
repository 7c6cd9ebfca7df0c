"""Redis-backed realtime transport.

Layout per topic (``<prefix>`` defaults to ``realtime``)::

    <prefix>:<topic>:presence   hash   participant key -> meta JSON
    <prefix>:<topic>:rev        string presence revision counter
    <prefix>:<topic>:owner      hash   participant key -> connection id
    <prefix>:<topic>:seen       hash   participant key -> last keepalive (ms)
    <prefix>:<topic>            pub/sub channel for presence and broadcast frames

Presence mutations run as Lua scripts so the revision and the full table
returned with it are read atomically. Each subscribed channel refreshes the
``seen`` stamp of the keys it owns every ``presence_ttl / 3`` seconds. Entries
not refreshed within ``presence_ttl`` are swept by the next script that runs in
the room, so a process that dies without leaving drops out like a leave.
The client must be created with ``decode_responses=True``.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from live_presence.application.ports.realtime import (
    OnBroadcast,
    OnClose,
    OnPresence,
    PresenceState,
    TransportError,
)
from live_presence.infrastructure.realtime.serializer import (
    deserialize_envelope,
    encode_json,
    serialize_envelope,
)

logger = logging.getLogger(__name__)

# KEYS: presence, rev, owner, seen
_SWEEP_LUA = """
local function sweep(cutoff)
  local removed = 0
  local stamps = redis.call('HGETALL', KEYS[4])
  for i = 1, #stamps, 2 do
    if tonumber(stamps[i + 1]) < cutoff then
      redis.call('HDEL', KEYS[4], stamps[i])
      redis.call('HDEL', KEYS[3], stamps[i])
      removed = removed + redis.call('HDEL', KEYS[1], stamps[i])
    end
  end
  return removed
end
"""

# ARGV: key, meta, conn, now, cutoff
_TRACK_LUA = _SWEEP_LUA + """
sweep(tonumber(ARGV[5]))
redis.call('HSET', KEYS[1], ARGV[1], ARGV[2])
redis.call('HSET', KEYS[3], ARGV[1], ARGV[3])
redis.call('HSET', KEYS[4], ARGV[1], ARGV[4])
local rev = redis.call('INCR', KEYS[2])
return {rev, redis.call('HGETALL', KEYS[1])}
"""

# ARGV: key, conn, cutoff. Only the connection that tracked a key may remove it.
_UNTRACK_LUA = _SWEEP_LUA + """
local removed = sweep(tonumber(ARGV[3]))
if redis.call('HGET', KEYS[3], ARGV[1]) == ARGV[2] then
  redis.call('HDEL', KEYS[1], ARGV[1])
  redis.call('HDEL', KEYS[3], ARGV[1])
  redis.call('HDEL', KEYS[4], ARGV[1])
  removed = removed + 1
end
if removed == 0 then
  return false
end
local rev = redis.call('INCR', KEYS[2])
return {rev, redis.call('HGETALL', KEYS[1])}
"""

# ARGV: conn, now, cutoff, key...
_REFRESH_LUA = _SWEEP_LUA + """
for i = 4, #ARGV do
  if redis.call('HGET', KEYS[3], ARGV[i]) == ARGV[1] then
    redis.call('HSET', KEYS[4], ARGV[i], ARGV[2])
  end
end
if sweep(tonumber(ARGV[3])) == 0 then
  return false
end
local rev = redis.call('INCR', KEYS[2])
return {rev, redis.call('HGETALL', KEYS[1])}
"""

PRESENCE_FRAME = "presence"
BROADCAST_FRAME = "broadcast"


def _decode_state(raw: dict[str, str] | list[str]) -> PresenceState:
    if isinstance(raw, dict):
        items = list(raw.items())
    else:
        items = list(zip(raw[::2], raw[1::2]))
    state: PresenceState = {}
    for key, entry in items:
        try:
            meta = json.loads(entry)
        except (ValueError, TypeError):
            meta = None
        if not isinstance(meta, dict):
            logger.warning("Skipping undecodable presence entry %s", key)
            continue
        state[key] = meta
    return state


class RedisTransport:
    """Implements application.ports.realtime.RealtimeTransport."""

    def __init__(
        self,
        redis: aioredis.Redis,
        *,
        prefix: str = "realtime",
        presence_ttl: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self._prefix = prefix
        self._clock = clock
        self.presence_ttl = presence_ttl
        self._track_script = redis.register_script(_TRACK_LUA)
        self._untrack_script = redis.register_script(_UNTRACK_LUA)
        self._refresh_script = redis.register_script(_REFRESH_LUA)

    def channel(self, topic: str) -> RedisChannel:
        return RedisChannel(self, topic)

    async def presence_state(self, topic: str) -> tuple[int, PresenceState]:
        """Read-only view; expired entries are hidden but not swept."""
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.get(self.revision_key(topic))
                pipe.hgetall(self.presence_key(topic))
                pipe.hgetall(self.seen_key(topic))
                revision, raw, seen = await pipe.execute()
        except RedisError as exc:
            raise TransportError(str(exc)) from exc
        cutoff = self.cutoff_ms()
        live = {key: entry for key, entry in raw.items() if int(seen.get(key, 0)) >= cutoff}
        return int(revision or 0), _decode_state(live)

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def cutoff_ms(self) -> int:
        return self.now_ms() - int(self.presence_ttl * 1000)

    def script_keys(self, topic: str) -> list[str]:
        return [
            self.presence_key(topic),
            self.revision_key(topic),
            self.owner_key(topic),
            self.seen_key(topic),
        ]

    def presence_key(self, topic: str) -> str:
        return f"{self._prefix}:{topic}:presence"

    def revision_key(self, topic: str) -> str:
        return f"{self._prefix}:{topic}:rev"

    def owner_key(self, topic: str) -> str:
        return f"{self._prefix}:{topic}:owner"

    def seen_key(self, topic: str) -> str:
        return f"{self._prefix}:{topic}:seen"

    def pubsub_channel(self, topic: str) -> str:
        return f"{self._prefix}:{topic}"


class RedisChannel:
    """Implements application.ports.realtime.RealtimeChannel."""

    def __init__(self, transport: RedisTransport, topic: str) -> None:
        self.topic = topic
        self.conn_id = uuid.uuid4().hex
        self._transport = transport
        self._redis = transport._redis
        self._pubsub: Any = None
        self._task: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._closed = False
        self._tracked: set[str] = set()
        self._on_presence: OnPresence | None = None
        self._on_broadcast: OnBroadcast | None = None
        self._on_close: OnClose | None = None

    @property
    def is_subscribed(self) -> bool:
        return self._task is not None and not self._closed

    async def subscribe(
        self,
        on_presence: OnPresence,
        on_broadcast: OnBroadcast,
        on_close: OnClose,
    ) -> None:
        if self._task is not None or self._closed:
            raise TransportError(f"channel {self.topic} already subscribed")
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(self._transport.pubsub_channel(self.topic))
        except RedisError as exc:
            await pubsub.aclose()
            raise TransportError(str(exc)) from exc
        self._pubsub = pubsub
        self._on_presence = on_presence
        self._on_broadcast = on_broadcast
        self._on_close = on_close
        name = f"{self.topic}-{self.conn_id[:8]}"
        self._task = asyncio.create_task(self._listen(), name=f"redis-realtime-{name}")
        self._keepalive_task = asyncio.create_task(
            self._keepalive(), name=f"redis-keepalive-{name}",
        )
        logger.debug("Realtime channel subscribed: topic=%s conn=%s", self.topic, self.conn_id)

    async def track(self, key: str, meta: dict[str, Any]) -> None:
        self._require_subscribed()
        try:
            result = await self._transport._track_script(
                keys=self._transport.script_keys(self.topic),
                args=[
                    key,
                    encode_json(meta),
                    self.conn_id,
                    self._transport.now_ms(),
                    self._transport.cutoff_ms(),
                ],
            )
            # Owned from here on, so unsubscribe removes it even if publishing fails.
            self._tracked.add(key)
            await self._publish_presence(result)
        except RedisError as exc:
            raise TransportError(str(exc)) from exc

    async def untrack(self, key: str) -> None:
        self._require_subscribed()
        self._tracked.discard(key)
        try:
            await self._run_untrack(key)
        except RedisError as exc:
            raise TransportError(str(exc)) from exc

    async def refresh(self) -> None:
        """Renew the keepalive of owned keys and sweep expired entries."""
        self._require_subscribed()
        try:
            result = await self._transport._refresh_script(
                keys=self._transport.script_keys(self.topic),
                args=[
                    self.conn_id,
                    self._transport.now_ms(),
                    self._transport.cutoff_ms(),
                    *sorted(self._tracked),
                ],
            )
            if result is not None:
                await self._publish_presence(result)
        except RedisError as exc:
            raise TransportError(str(exc)) from exc

    async def send(self, event: str, payload: dict[str, Any], *, echo: bool = True) -> None:
        self._require_subscribed()
        frame = serialize_envelope(
            BROADCAST_FRAME,
            {"event": event, "payload": payload, "origin": self.conn_id, "echo": echo},
        )
        try:
            await self._redis.publish(self._transport.pubsub_channel(self.topic), frame)
        except RedisError as exc:
            raise TransportError(str(exc)) from exc

    async def unsubscribe(self) -> None:
        if self._task is None:
            return
        self._closed = True
        await self._stop_keepalive()
        await self._untrack_owned()
        task, self._task = self._task, None
        if task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.debug("Realtime channel unsubscribed: topic=%s conn=%s", self.topic, self.conn_id)

    def _require_subscribed(self) -> None:
        if not self.is_subscribed:
            raise TransportError(f"channel {self.topic} is not subscribed")

    async def _run_untrack(self, key: str) -> None:
        result = await self._transport._untrack_script(
            keys=self._transport.script_keys(self.topic),
            args=[key, self.conn_id, self._transport.cutoff_ms()],
        )
        if result is not None:
            await self._publish_presence(result)

    async def _publish_presence(self, result: list[Any]) -> None:
        revision, raw = result
        frame = serialize_envelope(
            PRESENCE_FRAME, {"revision": int(revision), "state": _decode_state(raw)},
        )
        await self._redis.publish(self._transport.pubsub_channel(self.topic), frame)

    async def _untrack_owned(self) -> None:
        for key in list(self._tracked):
            self._tracked.discard(key)
            try:
                await self._run_untrack(key)
            except RedisError:
                # the entry expires once its keepalive stamp is older than presence_ttl
                logger.warning("Could not untrack %s on %s", key, self.topic, exc_info=True)

    async def _stop_keepalive(self) -> None:
        task, self._keepalive_task = self._keepalive_task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _keepalive(self) -> None:
        interval = self._transport.presence_ttl / 3
        while True:
            await asyncio.sleep(interval)
            try:
                await self.refresh()
            except TransportError:
                logger.warning("Presence keepalive failed on %s", self.topic, exc_info=True)

    async def _listen(self) -> None:
        lost = False
        try:
            async for message in self._pubsub.listen():
                if self._closed:
                    break
                if message["type"] != "message":
                    continue
                try:
                    kind, data = deserialize_envelope(message["data"])
                    await self._dispatch(kind, data)
                except Exception:
                    logger.exception("Error processing realtime frame on %s", self.topic)
                if self._closed:
                    break
        except RedisError:
            logger.warning("Realtime connection lost on %s", self.topic, exc_info=True)
            lost = True
        finally:
            try:
                await self._pubsub.unsubscribe()
                await self._pubsub.aclose()
            except RedisError:
                logger.debug("Pub/Sub close failed on %s", self.topic, exc_info=True)

        if lost and not self._closed:
            self._closed = True
            self._task = None
            await self._stop_keepalive()
            await self._untrack_owned()
            if self._on_close is not None:
                await self._on_close()

    async def _dispatch(self, kind: str, data: dict[str, Any]) -> None:
        if kind == PRESENCE_FRAME:
            if self._on_presence is not None:
                await self._on_presence(int(data["revision"]), data["state"])
        elif kind == BROADCAST_FRAME:
            if data.get("origin") == self.conn_id and not data.get("echo", True):
                return
            if self._on_broadcast is not None:
                await self._on_broadcast(data["event"], data["payload"])
        else:
            logger.debug("Ignoring realtime frame of type %s on %s", kind, self.topic)
