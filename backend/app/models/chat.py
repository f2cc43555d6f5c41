from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base
from app.models.enums import FriendRequestStatus, MessageType, PresenceStatus


def user_pair_key(user_id: int, other_id: int) -> str:
    """Return the order-independent signature of a pair of users."""

    low, high = sorted((user_id, other_id))
    return f"{low}:{high}"


class User(Base):
    """Application user."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    login: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_path: Mapped[str | None] = mapped_column(String(512))
    presence_status: Mapped[PresenceStatus] = mapped_column(
        SAEnum(
            PresenceStatus,
            name="presence_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        default=PresenceStatus.OFFLINE,
        nullable=False,
    )
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    memberships: Mapped[list["RoomMember"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    sent_friend_requests: Mapped[list["FriendRequest"]] = relationship(
        back_populates="requester", foreign_keys="FriendRequest.requester_id", cascade="all, delete-orphan"
    )
    received_friend_requests: Mapped[list["FriendRequest"]] = relationship(
        back_populates="addressee", foreign_keys="FriendRequest.addressee_id", cascade="all, delete-orphan"
    )
    blocks: Mapped[list["UserBlock"]] = relationship(
        back_populates="blocker", foreign_keys="UserBlock.blocker_id", cascade="all, delete-orphan"
    )

    @property
    def avatar_url(self) -> str | None:
        from app.config import get_settings

        if not self.avatar_path:
            return None
        base = get_settings().avatar_base_url.rstrip("/")
        return f"{base}/{self.id}"


class Friendship(Base):
    """Accepted friendship stored once per unordered pair of users."""

    __tablename__ = "friendships"
    __table_args__ = (
        UniqueConstraint("user_low_id", "user_high_id", name="uq_friendship_pair"),
        CheckConstraint("user_low_id < user_high_id", name="ck_friendship_order"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_low_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    user_high_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    user_low: Mapped[User] = relationship(foreign_keys=[user_low_id])
    user_high: Mapped[User] = relationship(foreign_keys=[user_high_id])

    def other(self, user_id: int) -> int:
        return self.user_high_id if self.user_low_id == user_id else self.user_low_id


class FriendRequest(Base):
    """Friend request from requester to addressee, visible to both sides.

    ``pending_key`` holds the unordered pair signature while the request is
    pending and is cleared once it is answered, so at most one pending request
    exists between two users.
    """

    __tablename__ = "friend_requests"
    __table_args__ = (
        UniqueConstraint("pending_key", name="uq_friend_requests_pending_key"),
        Index("ix_friend_requests_pair_status", "requester_id", "addressee_id", "status"),
        Index("ix_friend_requests_addressee", "addressee_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    requester_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    addressee_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[FriendRequestStatus] = mapped_column(
        SAEnum(
            FriendRequestStatus,
            name="friend_request_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        default=FriendRequestStatus.PENDING,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    pending_key: Mapped[str | None] = mapped_column(String(64), nullable=True)

    requester: Mapped[User] = relationship(back_populates="sent_friend_requests", foreign_keys=[requester_id])
    addressee: Mapped[User] = relationship(
        back_populates="received_friend_requests", foreign_keys=[addressee_id]
    )


class UserBlock(Base):
    """Directional block: only the blocker tracks it."""

    __tablename__ = "user_blocks"
    __table_args__ = (UniqueConstraint("blocker_id", "blocked_id", name="uq_user_block"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    blocker_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    blocked_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    blocker: Mapped[User] = relationship(back_populates="blocks", foreign_keys=[blocker_id])
    blocked: Mapped[User] = relationship(foreign_keys=[blocked_id])


class Room(Base):
    """Chat room. Direct rooms carry a unique member-pair signature."""

    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    admin_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    direct_key: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    last_message_id: Mapped[int | None] = mapped_column(
        ForeignKey("messages.id", ondelete="SET NULL", use_alter=True, name="fk_rooms_last_message"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    admin: Mapped[User | None] = relationship(foreign_keys=[admin_id])
    members: Mapped[list["RoomMember"]] = relationship(
        back_populates="room", cascade="all, delete-orphan", order_by="RoomMember.id"
    )
    messages: Mapped[list["Message"]] = relationship(
        back_populates="room",
        cascade="all, delete-orphan",
        foreign_keys="Message.room_id",
        order_by="Message.id",
    )
    last_message: Mapped["Message | None"] = relationship(
        foreign_keys=[last_message_id], post_update=True
    )

    @property
    def is_direct(self) -> bool:
        return self.is_private and len(self.members) == 2

    def member_ids(self) -> list[int]:
        return [member.user_id for member in self.members]

    def get_member(self, user_id: int) -> "RoomMember | None":
        return next((member for member in self.members if member.user_id == user_id), None)


class RoomMember(Base):
    """Room membership carrying the member's unread counter."""

    __tablename__ = "room_members"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_room_member"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    unread_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    room: Mapped[Room] = relationship(back_populates="members")
    user: Mapped[User] = relationship(back_populates="memberships")


class Message(Base):
    """Message posted within a room."""

    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_room_created_at", "room_id", "created_at"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    sender_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    type: Mapped[MessageType] = mapped_column(
        SAEnum(
            MessageType,
            name="message_type",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        default=MessageType.TEXT,
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    file_url: Mapped[str | None] = mapped_column(String(512))
    file_name: Mapped[str | None] = mapped_column(String(255))
    file_size: Mapped[int | None] = mapped_column(Integer)
    content_type: Mapped[str | None] = mapped_column(String(128))
    reply_to_id: Mapped[int | None] = mapped_column(
        ForeignKey("messages.id", ondelete="SET NULL"), nullable=True
    )
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    room: Mapped[Room] = relationship(back_populates="messages", foreign_keys=[room_id])
    sender: Mapped[User | None] = relationship(foreign_keys=[sender_id])
    reply_to: Mapped["Message | None"] = relationship(remote_side="Message.id", foreign_keys=[reply_to_id])
    reactions: Mapped[list["MessageReaction"]] = relationship(
        back_populates="message", cascade="all, delete-orphan", order_by="MessageReaction.id"
    )
    receipts: Mapped[list["MessageReceipt"]] = relationship(
        back_populates="message", cascade="all, delete-orphan", order_by="MessageReceipt.id"
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class MessageReaction(Base):
    """Emoji reaction; one per user per message."""

    __tablename__ = "message_reactions"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_reaction_user"),
        Index("ix_reactions_message", "message_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    emoji: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    message: Mapped[Message] = relationship(back_populates="reactions")
    user: Mapped[User] = relationship()


class MessageReceipt(Base):
    """Per-user read receipt for a message."""

    __tablename__ = "message_receipts"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_receipt"),
        Index("ix_receipts_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    read_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    message: Mapped[Message] = relationship(back_populates="receipts")
    user: Mapped[User] = relationship()
