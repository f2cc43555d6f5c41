"""Room-scoped websocket fan-out with optional cross-node relay."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import defaultdict
from typing import Any, Dict, Iterable

from fastapi import status
from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.config import get_settings

from .transport import (
    ROOMS_TOPIC,
    BrokerConfig,
    RedisTransport,
    Subscription,
    TransportUnavailableError,
)

logger = logging.getLogger(__name__)

MESSAGE_EVENT = "message"
MESSAGE_UPDATED_EVENT = "messageUpdated"
TYPING_EVENT = "userTyping"
STOP_TYPING_EVENT = "userStopTyping"


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Send JSON through a websocket, returning False when the peer is gone."""

    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


class RoomConnectionManager:
    """Track websocket subscriptions per room channel on this node.

    Each socket remembers the user it was opened for so that a member who
    leaves or is removed can be cut off from the room channel.
    """

    def __init__(self) -> None:
        self._connections: Dict[int, Dict[WebSocket, int | None]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    async def subscribe(
        self, room_id: int, websocket: WebSocket, *, user_id: int | None = None
    ) -> int:
        """Add ``websocket`` to the room channel; returns the local subscriber count."""

        async with self._lock:
            connections = self._connections[room_id]
            connections[websocket] = user_id
            return len(connections)

    async def unsubscribe(self, room_id: int, websocket: WebSocket) -> None:
        async with self._lock:
            connections = self._connections.get(room_id)
            if not connections:
                return
            connections.pop(websocket, None)
            if not connections:
                self._connections.pop(room_id, None)

    async def disconnect_user(self, room_id: int, user_id: int) -> int:
        """Unsubscribe and close every socket ``user_id`` holds on the room channel."""

        async with self._lock:
            connections = self._connections.get(room_id, {})
            sockets = [socket for socket, owner in connections.items() if owner == user_id]
            for socket in sockets:
                connections.pop(socket, None)
            if not connections:
                self._connections.pop(room_id, None)

        for socket in sockets:
            if socket.application_state != WebSocketState.CONNECTED:
                continue
            try:
                await socket.close(
                    code=status.WS_1008_POLICY_VIOLATION, reason="No longer a room member"
                )
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug("Failed to close websocket for user %s: %s", user_id, e)
        if sockets:
            logger.info("Closed %d room %s socket(s) of user %s", len(sockets), room_id, user_id)
        return len(sockets)

    async def broadcast(
        self,
        room_id: int,
        payload: dict[str, Any],
        *,
        exclude: Iterable[WebSocket] | None = None,
    ) -> int:
        async with self._lock:
            connections = list(self._connections.get(room_id, ()))
        exclude_set = set(exclude or [])
        delivered = 0
        for connection in connections:
            if connection in exclude_set:
                continue
            if await safe_send_json(connection, payload):
                delivered += 1
        return delivered


class RoomEventPublisher:
    """Publishes room events locally and, when configured, to peer nodes."""

    def __init__(
        self,
        connections: RoomConnectionManager,
        transport: RedisTransport,
        *,
        node_id: str,
    ) -> None:
        self._connections = connections
        self._transport = transport
        self._node_id = node_id
        self._subscription: Subscription | None = None
        self._publish_warning_logged = False

    @property
    def node_id(self) -> str:
        return self._node_id

    async def start(self) -> None:
        async def handle(message: dict[str, Any]) -> None:
            if message.get("origin") == self._node_id:
                return
            frame = message.get("frame")
            try:
                room_id = int(message["room_id"])
            except (KeyError, TypeError, ValueError):
                return
            revoked = message.get("revoke_user_id")
            if isinstance(revoked, int):
                await self._connections.disconnect_user(room_id, revoked)
                return
            if not isinstance(frame, dict):
                return
            await self._connections.broadcast(room_id, frame)

        self._subscription = await self._transport.subscribe(ROOMS_TOPIC, handle)

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None

    async def publish(
        self,
        room_id: int,
        event: str,
        payload: dict[str, Any],
        *,
        exclude: WebSocket | None = None,
    ) -> dict[str, Any]:
        """Deliver ``event`` to every subscriber of ``room_id`` except ``exclude``."""

        frame = {"type": event, "room_id": room_id, **payload}
        await self._connections.broadcast(
            room_id, frame, exclude={exclude} if exclude is not None else None
        )
        if self._transport.enabled:
            await self._relay(room_id, {"frame": frame}, event)
        return frame

    async def revoke(self, room_id: int, user_id: int) -> int:
        """Close ``user_id``'s sockets for ``room_id`` on this node and on peers."""

        closed = await self._connections.disconnect_user(room_id, user_id)
        if self._transport.enabled:
            await self._relay(room_id, {"revoke_user_id": user_id}, "revoke")
        return closed

    async def _relay(self, room_id: int, body: dict[str, Any], label: str) -> None:
        try:
            await self._transport.publish(
                ROOMS_TOPIC,
                {"origin": self._node_id, "room_id": room_id, **body},
            )
        except TransportUnavailableError:
            if not self._publish_warning_logged:
                logger.warning(
                    "Realtime backend unavailable while publishing %s; operating in local-only mode",
                    label,
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                self._publish_warning_logged = True
        else:
            self._publish_warning_logged = False


class TypingStatusStore:
    """Transient typing indicators per room, expiring after ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float) -> None:
        self._ttl = ttl_seconds
        self._entries: Dict[int, Dict[int, float]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def _expire(self, room_id: int, now: float) -> list[int]:
        bucket = self._entries.get(room_id, {})
        expired = [user_id for user_id, ts in bucket.items() if now - ts > self._ttl]
        for user_id in expired:
            bucket.pop(user_id, None)
        if not bucket:
            self._entries.pop(room_id, None)
        return expired

    async def start(self, room_id: int, user_id: int) -> tuple[bool, list[int]]:
        """Mark ``user_id`` typing; returns (newly started, expired user ids)."""

        now = time.monotonic()
        async with self._lock:
            expired = self._expire(room_id, now)
            bucket = self._entries[room_id]
            started = user_id not in bucket
            bucket[user_id] = now
            return started, expired

    async def stop(self, room_id: int, user_id: int) -> tuple[bool, list[int]]:
        now = time.monotonic()
        async with self._lock:
            bucket = self._entries.get(room_id, {})
            was_typing = bucket.pop(user_id, None) is not None
            expired = self._expire(room_id, now)
            return was_typing, expired

    async def typing_users(self, room_id: int) -> list[int]:
        now = time.monotonic()
        async with self._lock:
            self._expire(room_id, now)
            return sorted(self._entries.get(room_id, {}))


class TypingManager:
    """Relay typing indicators to every room subscriber except the typist."""

    def __init__(self, publisher: RoomEventPublisher, *, ttl_seconds: float) -> None:
        self._publisher = publisher
        self._store = TypingStatusStore(ttl_seconds)

    @property
    def ttl(self) -> float:
        return self._store.ttl

    async def typing_users(self, room_id: int) -> list[int]:
        return await self._store.typing_users(room_id)

    async def _announce_expired(self, room_id: int, user_ids: Iterable[int]) -> None:
        for user_id in user_ids:
            await self._publisher.publish(room_id, STOP_TYPING_EVENT, {"user_id": user_id})

    async def set_typing(
        self, room_id: int, user_id: int, *, source: WebSocket | None = None
    ) -> None:
        started, expired = await self._store.start(room_id, user_id)
        await self._announce_expired(room_id, expired)
        if started:
            await self._publisher.publish(
                room_id,
                TYPING_EVENT,
                {"user_id": user_id, "expires_in": self._store.ttl},
                exclude=source,
            )

    async def clear_typing(
        self, room_id: int, user_id: int, *, source: WebSocket | None = None
    ) -> None:
        was_typing, expired = await self._store.stop(room_id, user_id)
        await self._announce_expired(room_id, expired)
        if was_typing:
            await self._publisher.publish(
                room_id, STOP_TYPING_EVENT, {"user_id": user_id}, exclude=source
            )


# ---------------------------------------------------------------------------
# Process-wide instances
# ---------------------------------------------------------------------------


settings = get_settings()

_node_id = settings.realtime_node_id or uuid.uuid4().hex

transport = RedisTransport(
    BrokerConfig(
        redis_url=settings.realtime_redis_url,
        redis_prefix=settings.realtime_namespace,
        node_id=_node_id,
    )
)

room_manager = RoomConnectionManager()
room_publisher = RoomEventPublisher(room_manager, transport, node_id=_node_id)
typing_manager = TypingManager(
    room_publisher, ttl_seconds=float(settings.realtime_typing_ttl_seconds)
)


async def startup_realtime() -> None:
    if not transport.enabled:
        logger.info("No realtime backend configured; room events stay on this node")
        return
    try:
        await transport.start()
        await room_publisher.start()
    except TransportUnavailableError:
        logger.warning(
            "Realtime backend unavailable during startup; continuing without cross-node sync",
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )


async def shutdown_realtime() -> None:
    await room_publisher.stop()
    await transport.stop()


async def revoke_room_access(room_id: int, user_id: int) -> None:
    """Cut ``user_id`` off the room channel after they leave or are removed."""

    await room_publisher.revoke(room_id, user_id)
    await typing_manager.clear_typing(room_id, user_id)


def get_room_manager() -> RoomConnectionManager:
    return room_manager


def get_room_publisher() -> RoomEventPublisher:
    return room_publisher


def get_typing_manager() -> TypingManager:
    return typing_manager


__all__ = [
    "MESSAGE_EVENT",
    "MESSAGE_UPDATED_EVENT",
    "TYPING_EVENT",
    "STOP_TYPING_EVENT",
    "RoomConnectionManager",
    "RoomEventPublisher",
    "TypingManager",
    "TypingStatusStore",
    "safe_send_json",
    "startup_realtime",
    "shutdown_realtime",
    "revoke_room_access",
    "get_room_manager",
    "get_room_publisher",
    "get_typing_manager",
]
