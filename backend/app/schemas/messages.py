"""Schemas related to chat messages."""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, constr

from app.models.enums import MessageType
from app.schemas.users import PublicUser


class MessageReactionRead(BaseModel):
    """A single user's reaction."""

    model_config = ConfigDict(from_attributes=True)

    user_id: int
    emoji: str


class MessageReceiptRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    read_at: datetime


class MessageRead(BaseModel):
    """Serialized representation of a chat message."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    room_id: int
    sender_id: int | None
    sender: PublicUser | None = None
    type: MessageType
    content: str
    file_url: str | None = None
    file_name: str | None = None
    file_size: int | None = None
    content_type: str | None = None
    reply_to_id: int | None = None
    is_edited: bool = False
    edited_at: datetime | None = None
    deleted_at: datetime | None = None
    created_at: datetime
    reactions: list[MessageReactionRead] = Field(default_factory=list)
    read_by: list[MessageReceiptRead] = Field(
        default_factory=list,
        validation_alias=AliasChoices("receipts", "read_by"),
    )


class MessageCreate(BaseModel):
    """Payload for sending a text message to a room."""

    room_id: int
    content: constr(strip_whitespace=True, min_length=1) = Field(..., description="Message text")
    reply_to_id: int | None = Field(default=None, description="Message being replied to")


class MessageUpdate(BaseModel):
    content: constr(strip_whitespace=True, min_length=1) = Field(..., description="Updated message text")


class ReactionRequest(BaseModel):
    """Payload for reacting to a message."""

    emoji: constr(strip_whitespace=True, min_length=1, max_length=32) = Field(
        ..., description="Emoji identifier, e.g. a unicode emoji or :thumbsup:"
    )
