"""Database models package."""

from .base import Base
from .chat import (
    FriendRequest,
    Friendship,
    Message,
    MessageReaction,
    MessageReceipt,
    Room,
    RoomMember,
    User,
    UserBlock,
    user_pair_key,
)
from .enums import FriendRequestStatus, MessageType, PresenceStatus

__all__ = [
    "Base",
    "User",
    "Friendship",
    "FriendRequest",
    "UserBlock",
    "Room",
    "RoomMember",
    "Message",
    "MessageReaction",
    "MessageReceipt",
    "user_pair_key",
    "FriendRequestStatus",
    "MessageType",
    "PresenceStatus",
]
