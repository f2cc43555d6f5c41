"""Friend request lifecycle, friendships and blocking."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.models import (
    FriendRequest,
    FriendRequestStatus,
    Friendship,
    User,
    UserBlock,
    user_pair_key,
)
from app.services.errors import ConflictError, ForbiddenError, InvalidError, NotFoundError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FriendRequestOutcome:
    """Result of :func:`send_request`."""

    request: FriendRequest
    auto_accepted: bool = False


@dataclass(slots=True)
class RelationshipView:
    """A user annotated with flags derived from the viewer's current state."""

    user: User
    is_friend: bool
    has_pending_request: bool
    is_blocked: bool


def _normalize_pair(user_id: int, other_id: int) -> tuple[int, int]:
    return (user_id, other_id) if user_id < other_id else (other_id, user_id)


def _pair_clause(column_a, column_b, user_id: int, other_id: int):
    return or_(
        and_(column_a == user_id, column_b == other_id),
        and_(column_a == other_id, column_b == user_id),
    )


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def _get_friendship(db: Session, user_id: int, other_id: int) -> Friendship | None:
    low, high = _normalize_pair(user_id, other_id)
    stmt = select(Friendship).where(
        Friendship.user_low_id == low,
        Friendship.user_high_id == high,
    )
    return db.execute(stmt).scalar_one_or_none()


def friend_ids(db: Session, user_id: int) -> set[int]:
    stmt = select(Friendship).where(
        or_(Friendship.user_low_id == user_id, Friendship.user_high_id == user_id)
    )
    return {link.other(user_id) for link in db.execute(stmt).scalars()}


def are_friends(db: Session, user_id: int, other_id: int) -> bool:
    return _get_friendship(db, user_id, other_id) is not None


def blocked_ids(db: Session, user_id: int) -> set[int]:
    """Users that ``user_id`` has blocked."""

    stmt = select(UserBlock.blocked_id).where(UserBlock.blocker_id == user_id)
    return set(db.execute(stmt).scalars())


def has_blocked(db: Session, blocker_id: int, blocked_id: int) -> bool:
    stmt = select(UserBlock.id).where(
        UserBlock.blocker_id == blocker_id,
        UserBlock.blocked_id == blocked_id,
    )
    return db.execute(stmt).scalar_one_or_none() is not None


def is_blocked_between(db: Session, user_id: int, other_id: int) -> bool:
    """True when either user has blocked the other."""

    stmt = select(UserBlock.id).where(
        _pair_clause(UserBlock.blocker_id, UserBlock.blocked_id, user_id, other_id)
    )
    return db.execute(stmt).first() is not None


def _pending_request(db: Session, requester_id: int, addressee_id: int) -> FriendRequest | None:
    stmt = select(FriendRequest).where(
        FriendRequest.requester_id == requester_id,
        FriendRequest.addressee_id == addressee_id,
        FriendRequest.status == FriendRequestStatus.PENDING,
    )
    return db.execute(stmt).scalars().first()


def _add_friendship(db: Session, user_id: int, other_id: int) -> None:
    if _get_friendship(db, user_id, other_id) is not None:
        return
    low, high = _normalize_pair(user_id, other_id)
    db.add(Friendship(user_low_id=low, user_high_id=high))


def _delete_pending_between(db: Session, user_id: int, other_id: int) -> int:
    result = db.execute(
        delete(FriendRequest)
        .where(
            FriendRequest.status == FriendRequestStatus.PENDING,
            _pair_clause(FriendRequest.requester_id, FriendRequest.addressee_id, user_id, other_id),
        )
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


def _answer(request: FriendRequest, status: FriendRequestStatus) -> None:
    request.status = status
    request.responded_at = datetime.now(timezone.utc)
    request.pending_key = None


def _create_or_accept(db: Session, sender_id: int, target_id: int) -> FriendRequestOutcome:
    if are_friends(db, sender_id, target_id):
        raise ConflictError("Already friends")
    if _pending_request(db, sender_id, target_id) is not None:
        raise ConflictError("Friend request already sent")

    reverse = _pending_request(db, target_id, sender_id)
    if reverse is not None:
        _answer(reverse, FriendRequestStatus.ACCEPTED)
        _add_friendship(db, sender_id, target_id)
        db.commit()
        db.refresh(reverse)
        logger.info("Mutual friend requests between %s and %s accepted", sender_id, target_id)
        return FriendRequestOutcome(request=reverse, auto_accepted=True)

    request = FriendRequest(
        requester_id=sender_id,
        addressee_id=target_id,
        status=FriendRequestStatus.PENDING,
        pending_key=user_pair_key(sender_id, target_id),
    )
    db.add(request)
    db.commit()
    db.refresh(request)
    return FriendRequestOutcome(request=request)


def send_request(db: Session, sender: User, target_id: int) -> FriendRequestOutcome:
    """Send a friend request, accepting a pending reverse request instead when one exists."""

    if target_id == sender.id:
        raise InvalidError("Cannot send friend request to yourself")
    target = get_user(db, target_id)
    sender_id, target_id = sender.id, target.id
    try:
        return _create_or_accept(db, sender_id, target_id)
    except IntegrityError:
        # A concurrent request claimed the pair first; re-read and take its outcome.
        db.rollback()
        return _create_or_accept(db, sender_id, target_id)


def _require_request(db: Session, request_id: int) -> FriendRequest:
    stmt = (
        select(FriendRequest)
        .where(FriendRequest.id == request_id)
        .options(selectinload(FriendRequest.requester), selectinload(FriendRequest.addressee))
    )
    request = db.execute(stmt).scalar_one_or_none()
    if request is None:
        raise NotFoundError("Friend request not found")
    return request


def _require_incoming_pending(db: Session, user: User, request_id: int) -> FriendRequest:
    request = _require_request(db, request_id)
    if request.addressee_id != user.id:
        raise ForbiddenError("Only the recipient can respond to this request")
    if request.status != FriendRequestStatus.PENDING:
        raise ConflictError("Request already processed")
    return request


def accept_request(db: Session, user: User, request_id: int) -> FriendRequest:
    request = _require_incoming_pending(db, user, request_id)
    _answer(request, FriendRequestStatus.ACCEPTED)
    _add_friendship(db, request.requester_id, request.addressee_id)
    db.commit()
    db.refresh(request)
    logger.info("Friend request %s accepted by %s", request.id, user.id)
    return request


def reject_request(db: Session, user: User, request_id: int) -> FriendRequest:
    request = _require_incoming_pending(db, user, request_id)
    _answer(request, FriendRequestStatus.REJECTED)
    db.commit()
    db.refresh(request)
    return request


def cancel_request(db: Session, user: User, target_id: int) -> int:
    """Drop pending requests between the pair in both directions.

    Returns the number of removed requests; zero is not an error.
    """

    target = get_user(db, target_id)
    removed = _delete_pending_between(db, user.id, target.id)
    db.commit()
    return removed


def list_requests(db: Session, user: User) -> tuple[list[FriendRequest], list[FriendRequest]]:
    """Return pending ``(incoming, outgoing)`` requests ordered by creation."""

    stmt = (
        select(FriendRequest)
        .where(
            FriendRequest.status == FriendRequestStatus.PENDING,
            or_(FriendRequest.requester_id == user.id, FriendRequest.addressee_id == user.id),
        )
        .options(selectinload(FriendRequest.requester), selectinload(FriendRequest.addressee))
        .order_by(FriendRequest.created_at.asc(), FriendRequest.id.asc())
    )
    incoming: list[FriendRequest] = []
    outgoing: list[FriendRequest] = []
    for entry in db.execute(stmt).scalars():
        if entry.addressee_id == user.id:
            incoming.append(entry)
        else:
            outgoing.append(entry)
    return incoming, outgoing


def remove_friend(db: Session, user: User, target_id: int) -> None:
    if target_id == user.id:
        raise InvalidError("Cannot remove yourself")
    target = get_user(db, target_id)
    friendship = _get_friendship(db, user.id, target.id)
    if friendship is not None:
        db.delete(friendship)
    db.commit()


def block_user(db: Session, user: User, target_id: int) -> UserBlock:
    if target_id == user.id:
        raise InvalidError("Cannot block yourself")
    target = get_user(db, target_id)
    if has_blocked(db, user.id, target.id):
        raise ConflictError("User already blocked")

    friendship = _get_friendship(db, user.id, target.id)
    if friendship is not None:
        db.delete(friendship)
    _delete_pending_between(db, user.id, target.id)
    block = UserBlock(blocker_id=user.id, blocked_id=target.id)
    db.add(block)
    db.commit()
    db.refresh(block)
    logger.info("User %s blocked %s", user.id, target.id)
    return block


def unblock_user(db: Session, user: User, target_id: int) -> None:
    stmt = select(UserBlock).where(
        UserBlock.blocker_id == user.id,
        UserBlock.blocked_id == target_id,
    )
    block = db.execute(stmt).scalar_one_or_none()
    if block is None:
        raise InvalidError("User is not blocked")
    db.delete(block)
    db.commit()


def list_blocked(db: Session, user: User) -> list[User]:
    stmt = (
        select(User)
        .join(UserBlock, UserBlock.blocked_id == User.id)
        .where(UserBlock.blocker_id == user.id)
        .order_by(User.login)
    )
    return list(db.execute(stmt).scalars())


def annotate(db: Session, viewer: User, candidates: list[User]) -> list[RelationshipView]:
    """Attach is_friend / has_pending_request / is_blocked flags for ``viewer``."""

    friends = friend_ids(db, viewer.id)
    blocked = blocked_ids(db, viewer.id)
    stmt = select(FriendRequest.requester_id, FriendRequest.addressee_id).where(
        FriendRequest.status == FriendRequestStatus.PENDING,
        or_(FriendRequest.requester_id == viewer.id, FriendRequest.addressee_id == viewer.id),
    )
    pending: set[int] = set()
    for requester_id, addressee_id in db.execute(stmt):
        pending.add(addressee_id if requester_id == viewer.id else requester_id)

    return [
        RelationshipView(
            user=candidate,
            is_friend=candidate.id in friends,
            has_pending_request=candidate.id in pending,
            is_blocked=candidate.id in blocked,
        )
        for candidate in candidates
    ]


def search_users(db: Session, viewer: User, query: str, *, limit: int) -> list[RelationshipView]:
    """Case-insensitive login/email search excluding the viewer and users they blocked."""

    term = (query or "").strip()
    if not term:
        return []
    excluded = blocked_ids(db, viewer.id) | {viewer.id}
    stmt = (
        select(User)
        .where(
            or_(
                User.login.icontains(term, autoescape=True),
                User.email.icontains(term, autoescape=True),
            ),
            User.id.not_in(excluded),
        )
        .order_by(User.login)
        .limit(limit)
    )
    return annotate(db, viewer, list(db.execute(stmt).scalars()))


def list_users(db: Session, viewer: User, *, page: int, limit: int) -> list[RelationshipView]:
    """Paginated user directory for finding new friends."""

    page = max(page, 1)
    stmt = (
        select(User)
        .where(User.id != viewer.id)
        .order_by(User.login)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return annotate(db, viewer, list(db.execute(stmt).scalars()))
