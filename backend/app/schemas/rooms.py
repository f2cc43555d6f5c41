"""Schemas for rooms, membership and the friends conversation view."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, constr

from app.schemas.messages import MessageRead
from app.schemas.users import PublicUser


class RoomCreate(BaseModel):
    """Payload for creating a group room."""

    name: constr(strip_whitespace=True, min_length=1, max_length=128) = Field(
        ..., description="Human readable room name"
    )
    description: str = Field(default="", max_length=1024)
    is_private: bool = Field(
        default=False,
        description="Requested privacy; rooms with two or fewer members are always public groups",
    )
    member_ids: list[int] = Field(default_factory=list, description="Friends to add on creation")


class RoomMemberRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user: PublicUser
    unread_count: int = 0
    joined_at: datetime
    last_read_at: datetime | None = None


class RoomRead(BaseModel):
    """Room representation returned to clients."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str = ""
    is_private: bool
    is_direct: bool = False
    admin_id: int | None = None
    members: list[RoomMemberRead] = Field(default_factory=list)
    last_message: MessageRead | None = None
    created_at: datetime
    updated_at: datetime


class RoomMembersAdd(BaseModel):
    member_ids: list[int] = Field(default_factory=list)


class RoomMembersResult(BaseModel):
    """Room after a membership change and the ids actually added."""

    room: RoomRead
    added: list[int] = Field(default_factory=list)


class DirectRoomRead(BaseModel):
    room: RoomRead
    is_friend: bool = True


class RoomReadState(BaseModel):
    room_id: int
    unread_count: int = 0
    last_read_at: datetime | None = None


class FriendConversationRead(BaseModel):
    """A friend with the direct room state used by the chat history view."""

    model_config = ConfigDict(from_attributes=True)

    friend: PublicUser
    room_id: int | None = None
    last_message: MessageRead | None = None
    unread_count: int = 0
