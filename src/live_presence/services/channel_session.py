"""Channel session: join / leave, presence sync and chat fan-out for rooms.

A ``SessionHandle`` is one participant's membership of one room and walks
``UNJOINED -> JOINING -> JOINED -> LEFT``. ``LEFT`` is terminal; joining again
produces a new handle. Chat is best effort: no acks, no retries, no history,
and only per-sender ordering.
"""
from __future__ import annotations

import logging
import uuid
from functools import partial
from typing import Any, Awaitable, Callable

from pydantic import ValidationError as PayloadError

from live_presence.application.dto.principal import Principal
from live_presence.application.dto.realtime import ParticipantPayload
from live_presence.application.exceptions import (
    NotJoinedError,
    RoomUnavailableError,
    ValidationError,
)
from live_presence.application.ports.clock import Clock, SystemClock
from live_presence.application.ports.identity import PrivilegeChecker, ProfileStore
from live_presence.application.ports.realtime import (
    PresenceState,
    RealtimeChannel,
    RealtimeTransport,
    TransportError,
)
from live_presence.domain.entities.message import ChatMessage
from live_presence.domain.entities.participant import ParticipantDescriptor
from live_presence.domain.entities.presence import PresenceSnapshot
from live_presence.domain.value_objects.enums import BroadcastEvent, SessionState
from live_presence.domain.value_objects.ids import MessageId
from live_presence.services import identity_service
from live_presence.services.chat_formatting import (
    build_chat_message,
    message_from_payload,
    message_to_payload,
    restamp_identity,
)
from live_presence.services.presence_registry import PresenceRegistry, snapshot_from_state

logger = logging.getLogger(__name__)

PresenceCallback = Callable[[PresenceSnapshot], Awaitable[None]]
ChatCallback = Callable[[ChatMessage], Awaitable[None]]

_LIVE_STATES = (SessionState.JOINING, SessionState.JOINED)


class SessionHandle:
    def __init__(
        self,
        room_id: str,
        descriptor: ParticipantDescriptor,
        channel: RealtimeChannel,
    ) -> None:
        self.id = uuid.uuid4()
        self.room_id = room_id
        self.descriptor = descriptor
        self.state = SessionState.UNJOINED
        self._channel = channel
        self._presence_callbacks: list[PresenceCallback] = []
        self._chat_callbacks: list[ChatCallback] = []
        self._last_revision = 0

    @property
    def participant_key(self) -> str:
        return self.descriptor.participant_key

    @property
    def is_joined(self) -> bool:
        return self.state is SessionState.JOINED

    def __repr__(self) -> str:
        return (
            f"SessionHandle(room_id={self.room_id!r}, "
            f"participant_key={self.participant_key!r}, state={self.state.value})"
        )


class ChannelSession:
    """Mediates every handle this process holds, across any number of rooms.

    Owns the ``PresenceRegistry`` it feeds from sync events.
    """

    def __init__(
        self,
        transport: RealtimeTransport,
        profiles: ProfileStore,
        privileges: PrivilegeChecker,
        *,
        clock: Clock | None = None,
        registry: PresenceRegistry | None = None,
        echo_self: bool = True,
    ) -> None:
        self._transport = transport
        self._profiles = profiles
        self._privileges = privileges
        self._clock = clock or SystemClock()
        self._registry = registry or PresenceRegistry()
        self._echo_self = echo_self
        self._handles: dict[tuple[str, str], SessionHandle] = {}

    @property
    def registry(self) -> PresenceRegistry:
        return self._registry

    # -- lifecycle -----------------------------------------------------------

    async def join(
        self,
        room_id: str,
        participant_key: str,
        descriptor: ParticipantDescriptor,
        *,
        on_presence_sync: PresenceCallback | None = None,
        on_chat_message: ChatCallback | None = None,
    ) -> SessionHandle:
        """Register presence in ``room_id`` and start receiving its events.

        Callbacks passed here are in place before the first sync can arrive.
        Rejoining with a key this session already holds replaces the earlier
        descriptor and retires the earlier handle.
        """
        if descriptor.participant_key != participant_key:
            raise ValidationError("participant_key does not match the descriptor")

        handle = SessionHandle(room_id, descriptor, self._transport.channel(room_id))
        if on_presence_sync is not None:
            handle._presence_callbacks.append(on_presence_sync)
        if on_chat_message is not None:
            handle._chat_callbacks.append(on_chat_message)

        handle.state = SessionState.JOINING
        try:
            await handle._channel.subscribe(
                partial(self._on_presence, handle),
                partial(self._on_broadcast, handle),
                partial(self._on_transport_closed, handle),
            )
            await handle._channel.track(
                participant_key, ParticipantPayload.from_entity(descriptor).to_wire(),
            )
        except TransportError as exc:
            handle.state = SessionState.UNJOINED
            self._forget(handle)
            await self._close_channel(handle)
            raise RoomUnavailableError(f"Room {room_id} is unavailable: {exc}") from exc

        handle.state = SessionState.JOINED
        previous = self._handles.get((room_id, participant_key))
        self._handles[(room_id, participant_key)] = handle
        if previous is not None and previous.state in _LIVE_STATES:
            logger.debug("Retiring superseded handle %r", previous)
            previous.state = SessionState.LEFT
            await self._close_channel(previous)

        logger.info("Joined room=%s key=%s", room_id, participant_key)
        return handle

    async def join_as(
        self,
        room_id: str,
        principal: Principal | None,
        *,
        on_presence_sync: PresenceCallback | None = None,
        on_chat_message: ChatCallback | None = None,
    ) -> SessionHandle:
        """Join with a descriptor resolved from the identity providers.

        ``principal=None`` joins as an anonymous viewer.
        """
        descriptor = await identity_service.resolve_descriptor(
            principal, self._profiles, self._privileges, self._clock,
        )
        return await self.join(
            room_id,
            descriptor.participant_key,
            descriptor,
            on_presence_sync=on_presence_sync,
            on_chat_message=on_chat_message,
        )

    async def leave(self, handle: SessionHandle) -> None:
        """Deregister presence; no-op unless the handle is joined."""
        if handle.state is not SessionState.JOINED:
            return
        handle.state = SessionState.LEFT
        self._forget(handle)
        try:
            await handle._channel.untrack(handle.participant_key)
        except TransportError:
            logger.warning(
                "Could not untrack %s from %s", handle.participant_key, handle.room_id,
                exc_info=True,
            )
        await self._close_channel(handle)
        logger.info("Left room=%s key=%s", handle.room_id, handle.participant_key)

    async def close(self) -> None:
        """Leave every room this session is still joined to."""
        for handle in list(self._handles.values()):
            await self.leave(handle)

    # -- chat ----------------------------------------------------------------

    async def broadcast_chat(self, handle: SessionHandle, body: str) -> MessageId:
        """Fan a chat message out to the room; returns its message id.

        Returns once the transport accepted the send, not on delivery.
        """
        if handle.state is not SessionState.JOINED:
            raise NotJoinedError("Join the room before sending chat messages")
        message = build_chat_message(handle.room_id, handle.descriptor, body, self._clock)
        try:
            await handle._channel.send(
                BroadcastEvent.CHAT_MESSAGE,
                message_to_payload(message),
                echo=self._echo_self,
            )
        except TransportError as exc:
            raise RoomUnavailableError(f"Could not send to {handle.room_id}: {exc}") from exc
        return MessageId(message.message_id)

    # -- observers -----------------------------------------------------------

    def on_presence_sync(self, handle: SessionHandle, callback: PresenceCallback) -> None:
        self._assert_live(handle)
        handle._presence_callbacks.append(callback)

    def on_chat_message(self, handle: SessionHandle, callback: ChatCallback) -> None:
        self._assert_live(handle)
        handle._chat_callbacks.append(callback)

    # -- presence reads --------------------------------------------------------

    def current_snapshot(self, room_id: str) -> PresenceSnapshot:
        return self._registry.current_snapshot(room_id)

    def count(self, room_id: str) -> int:
        return self._registry.count(room_id)

    def privileged_count(self, room_id: str) -> int:
        return self._registry.privileged_count(room_id)

    def snapshot_for(self, handle: SessionHandle) -> PresenceSnapshot:
        self._assert_live(handle)
        return self._registry.current_snapshot(handle.room_id)

    async def peek(self, room_id: str) -> PresenceSnapshot:
        """Membership of a room, joined here or not."""
        if any(room == room_id for room, _key in self._handles):
            return self._registry.current_snapshot(room_id)
        try:
            revision, state = await self._transport.presence_state(room_id)
        except TransportError as exc:
            raise RoomUnavailableError(f"Room {room_id} is unavailable: {exc}") from exc
        return snapshot_from_state(room_id, revision, state, synced_at=self._clock.now())

    # -- transport callbacks -------------------------------------------------

    async def _on_presence(
        self,
        handle: SessionHandle,
        revision: int,
        state: PresenceState,
    ) -> None:
        if handle.state not in _LIVE_STATES:
            return
        snapshot = snapshot_from_state(
            handle.room_id, revision, state, synced_at=self._clock.now(),
        )
        self._registry.apply(snapshot)
        if revision <= handle._last_revision:
            return
        handle._last_revision = revision
        for callback in list(handle._presence_callbacks):
            if handle.state not in _LIVE_STATES:
                return
            try:
                await callback(snapshot)
            except Exception:
                logger.exception("Presence callback failed for %r", handle)

    async def _on_broadcast(
        self,
        handle: SessionHandle,
        event: str,
        payload: dict[str, Any],
    ) -> None:
        if handle.state not in _LIVE_STATES:
            return
        if event != BroadcastEvent.CHAT_MESSAGE:
            logger.debug("Ignoring broadcast event %s in %s", event, handle.room_id)
            return
        try:
            message = message_from_payload(payload)
        except PayloadError:
            logger.warning("Dropping malformed chat payload in %s", handle.room_id)
            return
        if message.room_id != handle.room_id:
            logger.warning(
                "Dropping chat message for %s delivered to %s", message.room_id, handle.room_id,
            )
            return

        trusted = self._registry.current_snapshot(handle.room_id).get(message.sender_key)
        if trusted is not None:
            message = restamp_identity(message, trusted)

        for callback in list(handle._chat_callbacks):
            if handle.state not in _LIVE_STATES:
                return
            try:
                await callback(message)
            except Exception:
                logger.exception("Chat callback failed for %r", handle)

    async def _on_transport_closed(self, handle: SessionHandle) -> None:
        if handle.state not in _LIVE_STATES:
            return
        logger.warning("Transport closed for %r", handle)
        handle.state = SessionState.LEFT
        self._forget(handle)

    # -- internals -----------------------------------------------------------

    def _assert_live(self, handle: SessionHandle) -> None:
        if handle.state not in _LIVE_STATES:
            raise NotJoinedError(f"Handle is {handle.state.value}")

    def _forget(self, handle: SessionHandle) -> None:
        key = (handle.room_id, handle.participant_key)
        if self._handles.get(key) is handle:
            del self._handles[key]
        if not any(room == handle.room_id for room, _key in self._handles):
            self._registry.forget(handle.room_id)

    async def _close_channel(self, handle: SessionHandle) -> None:
        try:
            await handle._channel.unsubscribe()
        except TransportError:
            logger.debug("Unsubscribe failed for %r", handle, exc_info=True)
