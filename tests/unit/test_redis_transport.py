from __future__ import annotations

import asyncio

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from live_presence.application.exceptions import RoomUnavailableError
from live_presence.application.ports.realtime import TransportError
from live_presence.infrastructure.realtime.redis_transport import RedisTransport
from tests.conftest import make_descriptor, make_session

TTL = 30.0


class ManualClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Listener:
    def __init__(self) -> None:
        self.presence: list[tuple[int, dict]] = []
        self.broadcasts: list[tuple[str, dict]] = []
        self.closed = 0

    async def on_presence(self, revision, state) -> None:
        self.presence.append((revision, state))

    async def on_broadcast(self, event, payload) -> None:
        self.broadcasts.append((event, payload))

    async def on_close(self) -> None:
        self.closed += 1


class LostPubSub:
    async def subscribe(self, *channels) -> None:
        pass

    async def listen(self):
        raise RedisConnectionError("connection lost")
        yield  # pragma: no cover

    async def unsubscribe(self) -> None:
        pass

    async def aclose(self) -> None:
        pass


async def _eventually(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


async def _open(transport: RedisTransport, topic: str = "room"):
    listener = Listener()
    channel = transport.channel(topic)
    await channel.subscribe(listener.on_presence, listener.on_broadcast, listener.on_close)
    return channel, listener


async def _crash(channel) -> None:
    """Stop a channel's tasks without untracking, like a killed process."""
    for task in (channel._task, channel._keepalive_task):
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


@pytest.fixture
def redis():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def transport(redis, clock) -> RedisTransport:
    return RedisTransport(redis, prefix="test", presence_ttl=TTL, clock=clock)


@pytest.mark.asyncio
async def test_track_syncs_full_state_with_increasing_revisions(transport):
    a, la = await _open(transport)
    b, lb = await _open(transport)

    await a.track("u1", {"display_name": "Alice"})
    await b.track("u2", {"display_name": "Bob"})
    await _eventually(lambda: len(la.presence) == 2)

    assert [rev for rev, _ in la.presence] == [1, 2]
    assert la.presence[-1] == (2, {"u1": {"display_name": "Alice"}, "u2": {"display_name": "Bob"}})
    assert await transport.presence_state("room") == la.presence[-1]

    await a.unsubscribe()
    await b.unsubscribe()


@pytest.mark.asyncio
async def test_untrack_only_removes_entries_the_connection_owns(transport):
    old, _ = await _open(transport)
    new, _ = await _open(transport)

    await old.track("u1", {"v": 1})
    await new.track("u1", {"v": 2})
    await old.untrack("u1")
    await old.unsubscribe()

    assert await transport.presence_state("room") == (2, {"u1": {"v": 2}})

    await new.unsubscribe()
    assert await transport.presence_state("room") == (3, {})


@pytest.mark.asyncio
async def test_send_honours_echo(transport):
    a, la = await _open(transport)
    b, lb = await _open(transport)

    await a.send("chat_message", {"n": 1}, echo=False)
    await a.send("chat_message", {"n": 2})
    await _eventually(lambda: len(lb.broadcasts) == 2 and len(la.broadcasts) == 1)

    assert lb.broadcasts == [("chat_message", {"n": 1}), ("chat_message", {"n": 2})]
    assert la.broadcasts == [("chat_message", {"n": 2})]

    await a.unsubscribe()
    await b.unsubscribe()


@pytest.mark.asyncio
async def test_unsubscribed_channel_rejects_calls(transport):
    a, _ = await _open(transport)
    await a.unsubscribe()

    with pytest.raises(TransportError):
        await a.send("chat_message", {})
    with pytest.raises(TransportError):
        await a.track("u1", {})


@pytest.mark.asyncio
async def test_failed_join_leaves_no_presence(transport, redis, monkeypatch):
    async def failing_publish(*args, **kwargs):
        raise RedisConnectionError("publish failed")

    monkeypatch.setattr(redis, "publish", failing_publish)
    session = make_session(transport)

    with pytest.raises(RoomUnavailableError):
        await session.join("stream-42", "u1", make_descriptor("u1", "Alice"))

    revision, state = await transport.presence_state("stream-42")
    assert state == {}
    assert session.count("stream-42") == 0


@pytest.mark.asyncio
async def test_expired_entries_are_hidden_from_reads(transport, clock):
    a, _ = await _open(transport)
    await a.track("u1", {"display_name": "Alice"})
    await _crash(a)

    clock.advance(TTL - 1)
    assert (await transport.presence_state("room"))[1] == {"u1": {"display_name": "Alice"}}

    clock.advance(2)
    assert (await transport.presence_state("room"))[1] == {}


@pytest.mark.asyncio
async def test_refresh_sweeps_entries_of_dead_connections(transport, clock):
    dead, _ = await _open(transport)
    live, listener = await _open(transport)
    await dead.track("u1", {"display_name": "Alice"})
    await live.track("u2", {"display_name": "Bob"})
    await _crash(dead)

    clock.advance(TTL + 1)
    await live.refresh()

    await _eventually(lambda: bool(listener.presence) and listener.presence[-1][0] == 3)
    assert listener.presence[-1] == (3, {"u2": {"display_name": "Bob"}})
    assert await transport.presence_state("room") == (3, {"u2": {"display_name": "Bob"}})

    await live.unsubscribe()


@pytest.mark.asyncio
async def test_refresh_keeps_owned_entries_alive(transport, clock):
    a, _ = await _open(transport)
    await a.track("u1", {"display_name": "Alice"})

    for _ in range(3):
        clock.advance(TTL / 2)
        await a.refresh()

    assert await transport.presence_state("room") == (1, {"u1": {"display_name": "Alice"}})

    await a.unsubscribe()


@pytest.mark.asyncio
async def test_track_sweeps_expired_entries(transport, clock):
    dead, _ = await _open(transport)
    await dead.track("u1", {})
    await _crash(dead)

    clock.advance(TTL + 1)
    fresh, _ = await _open(transport)
    await fresh.track("u2", {})

    assert await transport.presence_state("room") == (2, {"u2": {}})

    await fresh.unsubscribe()


@pytest.mark.asyncio
async def test_lost_connection_reports_close(transport, redis, monkeypatch):
    monkeypatch.setattr(redis, "pubsub", lambda: LostPubSub())
    channel, listener = await _open(transport)

    await _eventually(lambda: listener.closed == 1)

    assert not channel.is_subscribed
    with pytest.raises(TransportError):
        await channel.send("chat_message", {})
