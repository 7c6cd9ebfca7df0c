from __future__ import annotations

from live_presence.application.dto.realtime import ParticipantPayload
from live_presence.services.presence_registry import PresenceRegistry, snapshot_from_state
from tests.conftest import make_descriptor


def _state(*descriptors):
    return {d.participant_key: ParticipantPayload.from_entity(d).to_wire() for d in descriptors}


def test_empty_room_yields_empty_snapshot():
    registry = PresenceRegistry()

    snapshot = registry.current_snapshot("stream-1")

    assert snapshot.room_id == "stream-1"
    assert snapshot.count == 0
    assert registry.count("stream-1") == 0
    assert registry.privileged_count("stream-1") == 0


def test_apply_replaces_whole_snapshot():
    registry = PresenceRegistry()
    alice = make_descriptor("u1", "Alice")
    bob = make_descriptor("u2", "Bob", privileged=True)

    registry.apply(snapshot_from_state("r", 1, _state(alice, bob)))
    registry.apply(snapshot_from_state("r", 2, _state(bob)))

    snapshot = registry.current_snapshot("r")
    assert list(snapshot.participants) == ["u2"]
    assert registry.count("r") == 1
    assert registry.privileged_count("r") == 1


def test_stale_revision_is_ignored():
    registry = PresenceRegistry()
    alice = make_descriptor("u1", "Alice")
    bob = make_descriptor("u2", "Bob")

    assert registry.apply(snapshot_from_state("r", 5, _state(alice, bob))) is True
    assert registry.apply(snapshot_from_state("r", 4, _state(alice))) is False
    assert registry.apply(snapshot_from_state("r", 5, _state())) is False

    assert registry.count("r") == 2


def test_rooms_are_independent():
    registry = PresenceRegistry()
    registry.apply(snapshot_from_state("a", 3, _state(make_descriptor("u1", "Alice"))))
    registry.apply(snapshot_from_state("b", 1, _state()))

    assert registry.count("a") == 1
    assert registry.count("b") == 0
    assert sorted(registry.rooms()) == ["a", "b"]

    registry.forget("a")
    assert registry.count("a") == 0
    assert registry.rooms() == ["b"]


def test_snapshot_from_state_uses_table_key_and_skips_garbage():
    alice = make_descriptor("u1", "Alice")
    state = {
        "u1": {**ParticipantPayload.from_entity(alice).to_wire(), "participant_key": "spoofed", "extra": 1},
        "u2": {"display_name": "No timestamp"},
    }

    snapshot = snapshot_from_state("r", 1, state)

    assert list(snapshot.participants) == ["u1"]
    assert snapshot.get("u1") == alice
