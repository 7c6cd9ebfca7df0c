from __future__ import annotations

import pytest

from live_presence.application.ports.realtime import TransportError
from live_presence.infrastructure.realtime.memory import InMemoryTransport


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


async def _open(transport: InMemoryTransport, topic: str = "room"):
    listener = Listener()
    channel = transport.channel(topic)
    await channel.subscribe(listener.on_presence, listener.on_broadcast, listener.on_close)
    return channel, listener


@pytest.mark.asyncio
async def test_track_syncs_full_state_with_increasing_revisions():
    transport = InMemoryTransport()
    a, la = await _open(transport)
    b, lb = await _open(transport)

    await a.track("u1", {"display_name": "Alice"})
    await b.track("u2", {"display_name": "Bob"})
    await transport.drain()

    assert [rev for rev, _ in la.presence] == [1, 2]
    assert lb.presence[-1] == (2, {"u1": {"display_name": "Alice"}, "u2": {"display_name": "Bob"}})
    assert await transport.presence_state("room") == lb.presence[-1]

    await a.unsubscribe()
    await b.unsubscribe()


@pytest.mark.asyncio
async def test_untrack_only_removes_entries_the_connection_owns():
    transport = InMemoryTransport()
    old, _ = await _open(transport)
    new, listener = await _open(transport)

    await old.track("u1", {"v": 1})
    await new.track("u1", {"v": 2})
    await old.untrack("u1")
    await old.unsubscribe()
    await transport.drain()

    revision, state = await transport.presence_state("room")
    assert state == {"u1": {"v": 2}}
    assert revision == 2
    assert listener.presence[-1] == (2, {"u1": {"v": 2}})

    await new.unsubscribe()


@pytest.mark.asyncio
async def test_send_fans_out_and_honours_echo():
    transport = InMemoryTransport()
    a, la = await _open(transport)
    b, lb = await _open(transport)
    other, lo = await _open(transport, "other-room")

    await a.send("chat_message", {"n": 1})
    await a.send("chat_message", {"n": 2}, echo=False)
    await transport.drain()

    assert la.broadcasts == [("chat_message", {"n": 1})]
    assert lb.broadcasts == [("chat_message", {"n": 1}), ("chat_message", {"n": 2})]
    assert lo.broadcasts == []

    for ch in (a, b, other):
        await ch.unsubscribe()


@pytest.mark.asyncio
async def test_payloads_are_copied_per_receiver():
    transport = InMemoryTransport()
    a, _ = await _open(transport)
    b, lb = await _open(transport)
    payload = {"body": "hi"}

    await a.send("chat_message", payload)
    payload["body"] = "changed"
    await transport.drain()

    assert lb.broadcasts == [("chat_message", {"body": "hi"})]

    await a.unsubscribe()
    await b.unsubscribe()


@pytest.mark.asyncio
async def test_drop_removes_presence_and_reports_close():
    transport = InMemoryTransport()
    a, la = await _open(transport)
    b, lb = await _open(transport)
    await a.track("u1", {})
    await b.track("u2", {})

    await transport.drop(a)
    await transport.drain()

    assert la.closed == 1
    assert not a.is_subscribed
    assert lb.presence[-1] == (3, {"u2": {}})
    with pytest.raises(TransportError):
        await a.send("chat_message", {})

    await b.unsubscribe()


@pytest.mark.asyncio
async def test_unavailable_transport_rejects_calls():
    transport = InMemoryTransport()
    transport.available = False

    with pytest.raises(TransportError):
        await _open(transport)
    with pytest.raises(TransportError):
        await transport.presence_state("room")


@pytest.mark.asyncio
async def test_unsubscribed_channel_receives_nothing():
    transport = InMemoryTransport()
    a, _ = await _open(transport)
    b, lb = await _open(transport)

    await b.unsubscribe()
    await a.send("chat_message", {"n": 1})
    await a.track("u1", {})
    await transport.drain()

    assert lb.broadcasts == []
    assert lb.presence == []

    await a.unsubscribe()


@pytest.mark.asyncio
async def test_empty_topic_is_discarded():
    transport = InMemoryTransport()
    a, _ = await _open(transport)
    await a.track("u1", {})
    await a.unsubscribe()

    assert await transport.presence_state("room") == (0, {})


@pytest.mark.asyncio
async def test_double_subscribe_is_rejected():
    transport = InMemoryTransport()
    a, listener = await _open(transport)

    with pytest.raises(TransportError):
        await a.subscribe(listener.on_presence, listener.on_broadcast, listener.on_close)

    await a.unsubscribe()
