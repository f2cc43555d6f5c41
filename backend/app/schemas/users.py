"""Schemas related to user directory entries and friendships."""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.models.enums import FriendRequestStatus, PresenceStatus


class PublicUser(BaseModel):
    """Minimal public-facing user information."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    login: str
    avatar_url: str | None = None
    status: PresenceStatus = Field(
        default=PresenceStatus.OFFLINE,
        validation_alias=AliasChoices("presence_status", "status"),
    )
    last_seen_at: datetime | None = None


class UserRelationRead(PublicUser):
    """A user annotated with the viewer's relationship flags."""

    is_friend: bool = False
    has_pending_request: bool = False
    is_blocked: bool = False


class FriendRequestRead(BaseModel):
    """Serialized friend request including participants."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    requester: PublicUser
    addressee: PublicUser
    status: FriendRequestStatus
    created_at: datetime
    responded_at: datetime | None = None


class FriendRequestList(BaseModel):
    """Pending requests split by direction."""

    incoming: list[FriendRequestRead] = Field(default_factory=list)
    outgoing: list[FriendRequestRead] = Field(default_factory=list)


class FriendRequestCreate(BaseModel):
    """Payload for sending a friend request."""

    user_id: int = Field(..., description="Identifier of the user to befriend")


class FriendRequestResult(BaseModel):
    """Outcome of sending a friend request."""

    request: FriendRequestRead
    auto_accepted: bool = Field(
        default=False,
        description="True when a pending reverse request was accepted instead",
    )


class FriendshipCheck(BaseModel):
    is_friend: bool


class CancelRequestResult(BaseModel):
    removed: int = Field(0, ge=0)
