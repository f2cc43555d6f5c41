from __future__ import annotations

from enum import Enum


class PresenceStatus(str, Enum):
    """Presence indicator shown next to a user."""

    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"


class FriendRequestStatus(str, Enum):
    """Lifecycle states for friend requests."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class MessageType(str, Enum):
    """Kind of payload carried by a message."""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
