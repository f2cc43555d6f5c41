"""Pydantic schemas for API payloads."""

from .auth import LoginRequest, Token, UserCreate, UserRead, UserUpdate
from .messages import (
    MessageCreate,
    MessageReactionRead,
    MessageRead,
    MessageReceiptRead,
    MessageUpdate,
    ReactionRequest,
)
from .rooms import (
    DirectRoomRead,
    FriendConversationRead,
    RoomCreate,
    RoomMemberRead,
    RoomMembersAdd,
    RoomMembersResult,
    RoomRead,
    RoomReadState,
)
from .users import (
    CancelRequestResult,
    FriendRequestCreate,
    FriendRequestList,
    FriendRequestRead,
    FriendRequestResult,
    FriendshipCheck,
    PublicUser,
    UserRelationRead,
)

__all__ = [
    "LoginRequest",
    "Token",
    "UserCreate",
    "UserRead",
    "UserUpdate",
    "PublicUser",
    "UserRelationRead",
    "FriendRequestCreate",
    "FriendRequestRead",
    "FriendRequestList",
    "FriendRequestResult",
    "FriendshipCheck",
    "CancelRequestResult",
    "MessageCreate",
    "MessageRead",
    "MessageUpdate",
    "MessageReactionRead",
    "MessageReceiptRead",
    "ReactionRequest",
    "RoomCreate",
    "RoomRead",
    "RoomMemberRead",
    "RoomMembersAdd",
    "RoomMembersResult",
    "DirectRoomRead",
    "RoomReadState",
    "FriendConversationRead",
]
