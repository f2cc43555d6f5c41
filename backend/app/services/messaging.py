"""Message persistence and edit/delete/reaction/read transitions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from app.config import get_settings
from app.core.storage import StoredFile
from app.models import Message, MessageReaction, MessageReceipt, MessageType, Room, RoomMember, User
from app.services import relationships
from app.services.errors import (
    BlockedError,
    ForbiddenError,
    InvalidError,
    NotFoundError,
    NotFriendsError,
)
from app.services.rooms import require_member

logger = logging.getLogger(__name__)

MAX_EMOJI_LENGTH = 32


def _message_query():
    return select(Message).options(
        selectinload(Message.sender),
        selectinload(Message.reactions),
        selectinload(Message.receipts),
        selectinload(Message.reply_to),
    )


def get_message(db: Session, message_id: int) -> Message:
    message = db.execute(_message_query().where(Message.id == message_id)).scalar_one_or_none()
    if message is None:
        raise NotFoundError("Message not found")
    return message


def _clean_content(content: str | None) -> str:
    text = (content or "").strip()
    limit = get_settings().chat_message_max_length
    if len(text) > limit:
        raise InvalidError(f"Message exceeds {limit} characters")
    return text


def _ensure_direct_allowed(db: Session, room: Room, sender: User) -> None:
    """Direct rooms stay writable only while the pair are unblocked friends."""

    if room.direct_key is None:
        return
    other_id = next((uid for uid in room.member_ids() if uid != sender.id), None)
    if other_id is None:
        return
    if relationships.is_blocked_between(db, sender.id, other_id):
        raise BlockedError()
    if not relationships.are_friends(db, sender.id, other_id):
        raise NotFriendsError()


def send_message(
    db: Session,
    sender: User,
    room_id: int,
    *,
    content: str | None = None,
    reply_to_id: int | None = None,
    attachment: StoredFile | None = None,
) -> Message:
    room = require_member(db, room_id, sender.id)
    text = _clean_content(content)
    if not text and attachment is None:
        raise InvalidError("Message content is required")
    _ensure_direct_allowed(db, room, sender)

    if reply_to_id is not None:
        parent = db.get(Message, reply_to_id)
        if parent is None:
            raise NotFoundError("Replied message not found")
        if parent.room_id != room.id:
            raise InvalidError("Replies must reference a message in the same room")

    message = Message(room_id=room.id, sender_id=sender.id, content=text, reply_to_id=reply_to_id)
    if attachment is not None:
        message.type = (
            MessageType.IMAGE
            if (attachment.content_type or "").startswith("image/")
            else MessageType.FILE
        )
        message.file_url = attachment.url
        message.file_name = attachment.file_name
        message.file_size = attachment.file_size
        message.content_type = attachment.content_type
    else:
        message.type = MessageType.TEXT

    db.add(message)
    db.flush()
    room.last_message_id = message.id
    db.execute(
        update(RoomMember)
        .where(RoomMember.room_id == room.id, RoomMember.user_id != sender.id)
        .values(unread_count=RoomMember.unread_count + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return get_message(db, message.id)


def _require_own_message(db: Session, user: User, message_id: int, action: str) -> Message:
    message = get_message(db, message_id)
    require_member(db, message.room_id, user.id)
    if message.sender_id != user.id:
        raise ForbiddenError(f"Only the sender can {action} this message")
    return message


def edit_message(db: Session, user: User, message_id: int, content: str | None) -> Message:
    message = _require_own_message(db, user, message_id, "edit")
    if message.is_deleted:
        raise InvalidError("Cannot edit a deleted message")
    text = _clean_content(content)
    if not text:
        raise InvalidError("Message content is required")

    message.content = text
    message.is_edited = True
    message.edited_at = datetime.now(timezone.utc)
    db.commit()
    return get_message(db, message.id)


def delete_message(db: Session, user: User, message_id: int) -> tuple[Message, bool]:
    """Tombstone a message; returns the message and whether it changed.

    Repeated deletes are no-ops.
    """

    message = _require_own_message(db, user, message_id, "delete")
    if message.is_deleted:
        return message, False

    message.deleted_at = datetime.now(timezone.utc)
    message.content = ""
    message.file_url = None
    message.file_name = None
    message.file_size = None
    message.content_type = None
    db.commit()
    logger.info("Message %s deleted by %s", message.id, user.id)
    return get_message(db, message.id), True


def add_reaction(db: Session, user: User, message_id: int, emoji: str) -> tuple[Message, bool]:
    """Set the caller's reaction, replacing any previous emoji.

    One reaction per user per message. The flag is False when the same emoji
    was already set.
    """

    message = get_message(db, message_id)
    require_member(db, message.room_id, user.id)
    value = (emoji or "").strip()
    if not value or len(value) > MAX_EMOJI_LENGTH:
        raise InvalidError("Invalid reaction")
    if message.is_deleted:
        raise InvalidError("Cannot react to a deleted message")

    existing = next((item for item in message.reactions if item.user_id == user.id), None)
    if existing is not None and existing.emoji == value:
        return message, False
    if existing is not None:
        existing.emoji = value
    else:
        message.reactions.append(MessageReaction(user_id=user.id, emoji=value))
    db.commit()
    return get_message(db, message.id), True


def mark_read(db: Session, user: User, message_id: int) -> tuple[Message, bool]:
    message = get_message(db, message_id)
    require_member(db, message.room_id, user.id)
    if any(receipt.user_id == user.id for receipt in message.receipts):
        return message, False
    message.receipts.append(MessageReceipt(user_id=user.id, read_at=datetime.now(timezone.utc)))
    db.commit()
    return get_message(db, message.id), True


def list_history(
    db: Session,
    user: User,
    room_id: int,
    *,
    before: int | None = None,
    limit: int | None = None,
) -> list[Message]:
    """Return up to ``limit`` messages older than ``before``, oldest first."""

    settings = get_settings()
    require_member(db, room_id, user.id)
    size = max(1, min(limit or settings.chat_history_default_limit, settings.chat_history_max_limit))

    stmt = _message_query().where(Message.room_id == room_id)
    if before is not None:
        stmt = stmt.where(Message.id < before)
    stmt = stmt.order_by(Message.id.desc()).limit(size)
    rows = list(db.execute(stmt).scalars())
    rows.reverse()
    return rows


def search_messages(db: Session, user: User, room_id: int, query: str | None) -> list[Message]:
    require_member(db, room_id, user.id)
    term = (query or "").strip()
    if not term:
        raise InvalidError("Search query is required")

    stmt = (
        _message_query()
        .where(
            Message.room_id == room_id,
            Message.deleted_at.is_(None),
            Message.content.icontains(term, autoescape=True),
        )
        .order_by(Message.id.desc())
        .limit(get_settings().chat_search_limit)
    )
    return list(db.execute(stmt).scalars())
