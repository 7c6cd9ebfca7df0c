from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from live_presence.api.deps import ChannelSessionDep, get_verifier
from live_presence.api.v1.schemas.presence import ChatMessageResponse, PresenceResponse
from live_presence.application.dto.principal import Principal
from live_presence.application.exceptions import (
    NotJoinedError,
    RoomUnavailableError,
    ValidationError,
)
from live_presence.config import settings
from live_presence.domain.entities.message import ChatMessage
from live_presence.domain.entities.presence import PresenceSnapshot
from live_presence.domain.value_objects.enums import RoomKind
from live_presence.domain.value_objects.rooms import room_id_for
from live_presence.infrastructure.ws.protocol import WsInbound, WsOutbound
from live_presence.services.channel_session import ChannelSession, SessionHandle

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

WS_AUTH_FAILED = 4001
WS_TRY_AGAIN_LATER = 1013


async def _authenticate(token: str | None) -> Principal | None:
    if not token:
        return None
    try:
        verifier = get_verifier()
        return await verifier.verify(token)
    except Exception:
        logger.debug("WS auth failed", exc_info=True)
        return None


async def _send(ws: WebSocket, event_type: str, data: dict[str, Any]) -> None:
    await ws.send_text(WsOutbound(type=event_type, data=data).model_dump_json())


@router.websocket("/ws/streams/{stream_id}/chat")
async def ws_stream_chat(
    websocket: WebSocket,
    stream_id: str,
    session: ChannelSessionDep,
    token: str | None = Query(None),
) -> None:
    principal = await _authenticate(token)
    if principal is None:
        await websocket.close(code=WS_AUTH_FAILED, reason="Authentication failed")
        return
    await _serve_room(websocket, session, room_id_for(stream_id, RoomKind.CHAT), principal, chat=True)


@router.websocket("/ws/streams/{stream_id}/viewers")
async def ws_stream_viewers(
    websocket: WebSocket,
    stream_id: str,
    session: ChannelSessionDep,
    token: str | None = Query(None),
) -> None:
    principal = await _authenticate(token)
    if principal is None and (token or not settings.ALLOW_ANONYMOUS_VIEWERS):
        await websocket.close(code=WS_AUTH_FAILED, reason="Authentication failed")
        return
    await _serve_room(websocket, session, room_id_for(stream_id, RoomKind.VIEWERS), principal, chat=False)


async def _serve_room(
    ws: WebSocket,
    session: ChannelSession,
    room_id: str,
    principal: Principal | None,
    *,
    chat: bool,
) -> None:
    await ws.accept()

    async def push_presence(snapshot: PresenceSnapshot) -> None:
        await _send(ws, "presence.sync", PresenceResponse.from_snapshot(snapshot).model_dump(mode="json"))

    async def push_chat(message: ChatMessage) -> None:
        await _send(ws, "chat.message", ChatMessageResponse.from_entity(message).model_dump(mode="json"))

    try:
        handle = await session.join_as(
            room_id,
            principal,
            on_presence_sync=push_presence,
            on_chat_message=push_chat if chat else None,
        )
    except RoomUnavailableError as exc:
        await _reject_join(ws, exc.detail)
        return
    except Exception:
        logger.exception("Could not resolve participant for %s", room_id)
        await _reject_join(ws, "Participant identity is unavailable")
        return

    await _send(ws, "joined", {
        "room_id": room_id,
        "participant_key": handle.participant_key,
        "display_name": handle.descriptor.display_name,
        "is_privileged": handle.descriptor.is_privileged,
    })

    heartbeat_task = asyncio.create_task(
        _heartbeat(ws), name=f"ws-heartbeat-{handle.participant_key}",
    )
    try:
        await _read_loop(ws, session, handle, chat=chat)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WS error for %s in %s", handle.participant_key, room_id)
    finally:
        heartbeat_task.cancel()
        await session.leave(handle)


async def _reject_join(ws: WebSocket, detail: str) -> None:
    await _send(ws, "error", {"code": "room_unavailable", "detail": detail, "retryable": True})
    await ws.close(code=WS_TRY_AGAIN_LATER)


async def _heartbeat(ws: WebSocket) -> None:
    interval = settings.WS_HEARTBEAT_SECONDS
    try:
        while True:
            await asyncio.sleep(interval)
            await _send(ws, "pong", {})
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.debug("WS heartbeat stopped", exc_info=True)


async def _read_loop(
    ws: WebSocket,
    session: ChannelSession,
    handle: SessionHandle,
    *,
    chat: bool,
) -> None:
    while True:
        raw = await ws.receive_text()
        try:
            msg = WsInbound.model_validate_json(raw)
        except Exception:
            await _send(ws, "error", {"code": "invalid_payload"})
            continue

        if msg.type == "ping":
            await _send(ws, "pong", {})

        elif msg.type == "chat.send" and chat:
            await _handle_chat_send(ws, session, handle, msg.data)

        else:
            await _send(ws, "error", {"code": "unknown_type", "type": msg.type})


async def _handle_chat_send(
    ws: WebSocket,
    session: ChannelSession,
    handle: SessionHandle,
    data: dict[str, Any],
) -> None:
    # Only the body is read from the client; identity comes from the handle.
    body = data.get("body")
    client_msg_id = data.get("client_msg_id")
    try:
        message_id = await session.broadcast_chat(handle, body)  # type: ignore[arg-type]
    except ValidationError as exc:
        await _send(ws, "error", {
            "code": "validation_error",
            "detail": exc.detail,
            "body": body,
            "client_msg_id": client_msg_id,
        })
        return
    except RoomUnavailableError as exc:
        await _send(ws, "error", {
            "code": "send_failed",
            "detail": exc.detail,
            "body": body,
            "client_msg_id": client_msg_id,
            "retryable": True,
        })
        return
    except NotJoinedError as exc:
        await _send(ws, "error", {"code": "not_joined", "detail": exc.detail, "body": body})
        raise WebSocketDisconnect(code=1000) from exc

    await _send(ws, "chat.sent", {"message_id": str(message_id), "client_msg_id": client_msg_id})
