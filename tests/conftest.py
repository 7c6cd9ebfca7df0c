"""Shared test fixtures."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest

from live_presence.application.dto.principal import Principal
from live_presence.domain.entities.participant import ParticipantDescriptor
from live_presence.domain.entities.profile import Profile
from live_presence.infrastructure.realtime.memory import InMemoryTransport
from live_presence.services.channel_session import ChannelSession

ALICE_ID = "0b6c9a52-3f4e-4d1a-9a61-6a1f1f0c0001"
BOB_ID = "0b6c9a52-3f4e-4d1a-9a61-6a1f1f0c0002"


class FakeClock:
    """Advances one second on every read."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        self._now += timedelta(seconds=1)
        return self._now


@dataclass
class FakeProfileStore:
    _profiles: dict[str, Profile] = field(default_factory=dict)
    calls: int = 0

    def add(self, user_id: str, display_name: str | None, avatar_url: str | None = None) -> None:
        self._profiles[user_id] = Profile(user_id=user_id, display_name=display_name, avatar_url=avatar_url)

    async def get_profile(self, user_id: str) -> Profile | None:
        self.calls += 1
        return self._profiles.get(user_id)


@dataclass
class FakePrivilegeChecker:
    admins: set[str] = field(default_factory=set)
    calls: int = 0

    async def is_admin(self, user_id: str) -> bool:
        self.calls += 1
        return user_id in self.admins


def make_descriptor(
    key: str,
    name: str,
    *,
    privileged: bool = False,
    joined_at: datetime | None = None,
) -> ParticipantDescriptor:
    return ParticipantDescriptor(
        participant_key=key,
        display_name=name,
        is_privileged=privileged,
        joined_at=joined_at or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc),
    )


def make_session(
    transport: InMemoryTransport,
    profiles: FakeProfileStore | None = None,
    privileges: FakePrivilegeChecker | None = None,
    **kwargs,
) -> ChannelSession:
    return ChannelSession(
        transport,
        profiles or FakeProfileStore(),
        privileges or FakePrivilegeChecker(),
        clock=FakeClock(),
        **kwargs,
    )


class Recorder:
    """Async callback collecting everything it is called with."""

    def __init__(self) -> None:
        self.items: list = []

    async def __call__(self, item) -> None:
        self.items.append(item)

    @property
    def last(self):
        return self.items[-1]


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def profiles() -> FakeProfileStore:
    store = FakeProfileStore()
    store.add(ALICE_ID, "Alice", "https://cdn.example/alice.png")
    store.add(BOB_ID, "Bob")
    return store


@pytest.fixture
def privileges() -> FakePrivilegeChecker:
    return FakePrivilegeChecker(admins={BOB_ID})


@pytest.fixture
def alice() -> Principal:
    return Principal(user_id=ALICE_ID, email="alice@example.com", roles=["authenticated"])


@pytest.fixture
def bob() -> Principal:
    return Principal(user_id=BOB_ID, email="bob@example.com", roles=["authenticated"])
