"""Process-wide registry of who is online and which sockets they hold."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, Set

from fastapi.websockets import WebSocket, WebSocketState
from sqlalchemy.orm import Session

from app.models import PresenceStatus, User

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Tracks presence sockets per user; lifecycle follows connect/disconnect."""

    def __init__(self) -> None:
        self._connections: Dict[int, Set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, user_id: int, websocket: WebSocket) -> bool:
        """Register a socket; returns True when it is the user's first one."""

        async with self._lock:
            sockets = self._connections[user_id]
            first = not sockets
            sockets.add(websocket)
            return first

    async def disconnect(self, user_id: int, websocket: WebSocket) -> bool:
        """Forget a socket; returns True when the user has no sockets left."""

        async with self._lock:
            sockets = self._connections.get(user_id)
            if not sockets:
                return False
            sockets.discard(websocket)
            if sockets:
                return False
            self._connections.pop(user_id, None)
            return True

    def online_user_ids(self) -> set[int]:
        return {user_id for user_id, sockets in self._connections.items() if sockets}

    async def broadcast(self, payload: dict, recipients: Iterable[int]) -> None:
        unique_recipients = set(recipients)
        if not unique_recipients:
            return
        async with self._lock:
            targets = [
                list(self._connections.get(recipient_id, set()))
                for recipient_id in unique_recipients
            ]
        for sockets in targets:
            for socket in sockets:
                if socket.application_state != WebSocketState.CONNECTED:
                    continue
                try:
                    await socket.send_json(payload)
                except RuntimeError:
                    continue


def record_presence(db: Session, user_id: int, status: PresenceStatus) -> User | None:
    """Persist a presence transition, stamping ``last_seen_at`` when going offline."""

    user = db.get(User, user_id)
    if user is None:
        return None
    user.presence_status = status
    if status == PresenceStatus.OFFLINE:
        user.last_seen_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)
    logger.info("User %s is now %s", user_id, status.value)
    return user


presence_registry = PresenceRegistry()
"""Singleton presence registry shared across modules."""
