"""WebSocket endpoints for room fan-out and presence."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, WebSocket, status
from fastapi.exceptions import HTTPException
from fastapi.websockets import WebSocketDisconnect, WebSocketState

from parley.realtime import get_room_manager, get_typing_manager, safe_send_json

from app.api.deps import get_user_from_token
from app.config import get_settings
from app.database import get_db_session
from app.models import PresenceStatus, User
from app.services import ChatError, presence_registry
from app.services.presence import record_presence
from app.services.relationships import friend_ids
from app.services.rooms import require_member

router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

room_manager = get_room_manager()
typing_manager = get_typing_manager()

T = TypeVar("T")


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            idle = now - last_activity >= interval
            quiet = last_ping_sent is None or now - last_ping_sent >= interval
            if interval <= 0 or (idle and quiet):
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


async def _resolve_user(websocket: WebSocket) -> User | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing token")
        return None

    try:
        with get_db_session() as db:
            return get_user_from_token(token, db)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return None


async def _send_error(websocket: WebSocket, detail: str) -> None:
    await safe_send_json(websocket, {"type": "error", "detail": detail})


def _parse_frame(raw_message: str) -> dict[str, Any] | None:
    if raw_message.strip().lower() == "ping":
        return {"type": "ping"}
    try:
        payload = json.loads(raw_message)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


@router.websocket("/rooms/{room_id}")
async def websocket_room(websocket: WebSocket, room_id: int) -> None:
    """Subscribe to a room channel and relay typing indicators."""

    user = await _resolve_user(websocket)
    if user is None:
        return

    try:
        with get_db_session() as db:
            require_member(db, room_id, user.id)
    except ChatError as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.detail)
        return

    user_id = user.id
    await websocket.accept()
    subscribers = await room_manager.subscribe(room_id, websocket, user_id=user_id)
    logger.debug("User %s subscribed to room %s (%d local sockets)", user_id, room_id, subscribers)
    await safe_send_json(
        websocket,
        {
            "type": "subscribed",
            "room_id": room_id,
            "typing": await typing_manager.typing_users(room_id),
        },
    )

    try:
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            # Closed server side when the user left or was removed from the room.
            if websocket.application_state != WebSocketState.CONNECTED:
                break
            payload = _parse_frame(raw_message)
            if payload is None:
                await _send_error(websocket, "Invalid payload")
                continue

            event = payload.get("type")
            if event == "ping":
                await safe_send_json(websocket, {"type": "pong"})
            elif event == "pong":
                continue
            elif event == "typing":
                await typing_manager.set_typing(room_id, user_id, source=websocket)
            elif event == "stop_typing":
                await typing_manager.clear_typing(room_id, user_id, source=websocket)
            else:
                await _send_error(websocket, f"Unsupported event '{event}'")
    finally:
        await room_manager.unsubscribe(room_id, websocket)
        await typing_manager.clear_typing(room_id, user_id)


async def _announce_presence(user_id: int, presence: PresenceStatus) -> None:
    with get_db_session() as db:
        user = record_presence(db, user_id, presence)
        if user is None:
            return
        recipients = friend_ids(db, user_id)
        payload = {
            "type": "presence",
            "user_id": user_id,
            "status": presence.value,
            "last_seen_at": user.last_seen_at.isoformat() if user.last_seen_at else None,
        }
    await presence_registry.broadcast(payload, recipients)


async def _send_presence_snapshot(user_id: int, websocket: WebSocket) -> None:
    online = presence_registry.online_user_ids()
    with get_db_session() as db:
        friends = sorted(friend_ids(db, user_id))
        users = [db.get(User, friend_id) for friend_id in friends]
        entries = [
            {
                "user_id": friend.id,
                # A socket held on this node outranks a stale stored "offline".
                "status": (
                    PresenceStatus.ONLINE.value
                    if friend.id in online and friend.presence_status == PresenceStatus.OFFLINE
                    else friend.presence_status.value
                ),
                "last_seen_at": friend.last_seen_at.isoformat() if friend.last_seen_at else None,
            }
            for friend in users
            if friend is not None
        ]
    await safe_send_json(websocket, {"type": "presence_snapshot", "users": entries})


@router.websocket("/presence")
async def websocket_presence(websocket: WebSocket) -> None:
    """Track the user's online state and stream friends' presence changes."""

    user = await _resolve_user(websocket)
    if user is None:
        return

    user_id = user.id
    await websocket.accept()
    if await presence_registry.connect(user_id, websocket):
        await _announce_presence(user_id, PresenceStatus.ONLINE)
    try:
        await _send_presence_snapshot(user_id, websocket)
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            payload = _parse_frame(raw_message)
            if payload is not None and payload.get("type") == "ping":
                await safe_send_json(websocket, {"type": "pong"})
    finally:
        if await presence_registry.disconnect(user_id, websocket):
            await _announce_presence(user_id, PresenceStatus.OFFLINE)
