"""Room lookup, creation and membership management."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.models import Message, Room, RoomMember, User, user_pair_key
from app.services import relationships
from app.services.errors import (
    BlockedError,
    ConflictError,
    ForbiddenError,
    InvalidError,
    NotFoundError,
    NotFriendsError,
)

logger = logging.getLogger(__name__)

DIRECT_ROOM_NAME = "Direct Message"


@dataclass(slots=True)
class FriendConversation:
    """A friend together with the state of the direct room shared with them."""

    friend: User
    room: Room | None
    last_message: Message | None
    unread_count: int


def _room_query():
    return select(Room).options(
        selectinload(Room.members).selectinload(RoomMember.user),
        selectinload(Room.admin),
        selectinload(Room.last_message),
    )


def get_room(db: Session, room_id: int) -> Room:
    room = db.execute(_room_query().where(Room.id == room_id)).scalar_one_or_none()
    if room is None:
        raise NotFoundError("Room not found")
    return room


def require_member(db: Session, room_id: int, user_id: int) -> Room:
    """Load a room and ensure ``user_id`` belongs to it."""

    room = get_room(db, room_id)
    if room.get_member(user_id) is None:
        raise ForbiddenError("Not authorized to access this room")
    return room


def find_direct_room(db: Session, user_id: int, other_id: int) -> Room | None:
    stmt = _room_query().where(Room.direct_key == user_pair_key(user_id, other_id))
    return db.execute(stmt).scalar_one_or_none()


def _eligible_member_ids(db: Session, owner: User, candidate_ids: Iterable[int]) -> list[int]:
    """Keep candidates that are friends of ``owner`` with no block in either direction."""

    friends = relationships.friend_ids(db, owner.id)
    eligible: list[int] = []
    for candidate_id in candidate_ids:
        if candidate_id == owner.id or candidate_id in eligible:
            continue
        if candidate_id not in friends:
            continue
        if relationships.is_blocked_between(db, owner.id, candidate_id):
            continue
        eligible.append(candidate_id)
    return eligible


def get_or_create_direct(db: Session, user: User, friend_id: int) -> Room:
    """Return the direct room shared with ``friend_id``, creating it on first use."""

    if friend_id == user.id:
        raise InvalidError("Cannot open a direct conversation with yourself")
    friend = relationships.get_user(db, friend_id)
    if not relationships.are_friends(db, user.id, friend.id):
        raise NotFriendsError("You can only message users who have accepted your friend request")
    if relationships.is_blocked_between(db, user.id, friend.id):
        raise BlockedError()

    room = find_direct_room(db, user.id, friend.id)
    if room is not None:
        return room

    room = Room(
        name=DIRECT_ROOM_NAME,
        description="",
        is_private=True,
        admin_id=user.id,
        direct_key=user_pair_key(user.id, friend.id),
    )
    room.members = [
        RoomMember(user_id=user.id, unread_count=0),
        RoomMember(user_id=friend.id, unread_count=0),
    ]
    db.add(room)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the same pair concurrently.
        db.rollback()
        existing = find_direct_room(db, user.id, friend.id)
        if existing is None:
            raise
        return existing

    logger.info("Direct room %s created for users %s and %s", room.id, user.id, friend.id)
    return get_room(db, room.id)


def create_group(
    db: Session,
    creator: User,
    *,
    name: str,
    description: str = "",
    member_ids: Iterable[int] = (),
    is_private: bool = False,
) -> Room:
    name = (name or "").strip()
    if not name:
        raise InvalidError("Room name is required")

    members = [creator.id, *_eligible_member_ids(db, creator, member_ids)]
    # Two-person private rooms are reserved for direct conversations.
    final_private = bool(is_private) and len(members) > 2

    room = Room(
        name=name,
        description=(description or "").strip(),
        is_private=final_private,
        admin_id=creator.id,
    )
    room.members = [RoomMember(user_id=member_id, unread_count=0) for member_id in members]
    db.add(room)
    db.commit()
    logger.info("Room %s created by %s with %d members", room.id, creator.id, len(members))
    return get_room(db, room.id)


def join(db: Session, room_id: int, user: User) -> Room:
    room = get_room(db, room_id)
    if room.get_member(user.id) is not None:
        raise ConflictError("Already a member of this room")
    if room.is_private:
        raise ForbiddenError("Private rooms can only be joined by invitation")
    if room.admin_id is not None and relationships.has_blocked(db, room.admin_id, user.id):
        raise BlockedError("You cannot join this room")

    room.members.append(RoomMember(user_id=user.id, unread_count=0))
    db.commit()
    return get_room(db, room.id)


def leave(db: Session, room_id: int, user: User) -> None:
    room = get_room(db, room_id)
    member = room.get_member(user.id)
    if member is None:
        raise ForbiddenError("Not a member of this room")
    if room.direct_key is not None:
        raise ForbiddenError("Direct conversations cannot be left")

    room.members.remove(member)
    if room.admin_id == user.id:
        successor = room.members[0] if room.members else None
        room.admin_id = successor.user_id if successor is not None else None
    db.commit()


def add_members(db: Session, room_id: int, requester: User, candidate_ids: list[int]) -> tuple[Room, list[int]]:
    """Add eligible friends of the admin; returns the room and the ids actually added."""

    room = get_room(db, room_id)
    if room.admin_id != requester.id:
        raise ForbiddenError("Only admin can add members")
    if room.direct_key is not None:
        raise ForbiddenError("Members cannot be added to a direct conversation")
    if not candidate_ids:
        raise InvalidError("Please provide member IDs")

    current = set(room.member_ids())
    added = [
        candidate_id
        for candidate_id in _eligible_member_ids(db, requester, candidate_ids)
        if candidate_id not in current
    ]
    for member_id in added:
        room.members.append(RoomMember(user_id=member_id, unread_count=0))
    db.commit()
    if added:
        logger.info("Added members %s to room %s", added, room.id)
    return get_room(db, room.id), added


def remove_member(db: Session, room_id: int, requester: User, target_id: int) -> Room:
    room = get_room(db, room_id)
    is_admin = room.admin_id == requester.id
    removing_self = target_id == requester.id
    if not is_admin and not removing_self:
        raise ForbiddenError("Not authorized to remove this member")
    if room.direct_key is not None:
        raise ForbiddenError("Members cannot be removed from a direct conversation")
    if is_admin and removing_self and len(room.members) > 1:
        raise ForbiddenError("Admin cannot remove themselves while other members remain")

    member = room.get_member(target_id)
    if member is None:
        raise NotFoundError("Member not found in room")
    room.members.remove(member)
    if removing_self and is_admin:
        room.admin_id = None
    db.commit()
    logger.info("User %s removed from room %s by %s", target_id, room.id, requester.id)
    return get_room(db, room.id)


def list_group_rooms(db: Session, user: User) -> list[Room]:
    """Rooms the user belongs to, excluding direct conversations."""

    member_count = (
        select(func.count(RoomMember.id))
        .where(RoomMember.room_id == Room.id)
        .correlate(Room)
        .scalar_subquery()
    )
    stmt = (
        _room_query()
        .join(RoomMember, RoomMember.room_id == Room.id)
        .where(
            RoomMember.user_id == user.id,
            or_(Room.is_private.is_(False), member_count > 2),
        )
        .order_by(Room.updated_at.desc(), Room.id.desc())
    )
    return list(db.execute(stmt).scalars().unique())


def mark_room_read(db: Session, room_id: int, user: User) -> RoomMember:
    """Reset the caller's unread counter for a room they have viewed."""

    room = require_member(db, room_id, user.id)
    member = room.get_member(user.id)
    member.unread_count = 0
    member.last_read_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(member)
    return member


def list_friend_conversations(db: Session, user: User) -> list[FriendConversation]:
    """Friends with their direct room, sorted by unread count then recency."""

    ids = relationships.friend_ids(db, user.id)
    if not ids:
        return []
    friends = db.execute(select(User).where(User.id.in_(ids)).order_by(User.login)).scalars()

    conversations: list[FriendConversation] = []
    for friend in friends:
        room = find_direct_room(db, user.id, friend.id)
        member = room.get_member(user.id) if room is not None else None
        conversations.append(
            FriendConversation(
                friend=friend,
                room=room,
                last_message=room.last_message if room is not None else None,
                unread_count=member.unread_count if member is not None else 0,
            )
        )

    def _recency(entry: FriendConversation) -> float:
        if entry.last_message is None:
            return 0.0
        return entry.last_message.created_at.timestamp()

    conversations.sort(key=lambda entry: (-entry.unread_count, -_recency(entry)))
    return conversations
