"""HTTP endpoints for friend requests, friendships and blocking."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.config import get_settings
from app.database import get_db
from app.models import User
from app.schemas import (
    CancelRequestResult,
    FriendConversationRead,
    FriendRequestCreate,
    FriendRequestList,
    FriendRequestRead,
    FriendRequestResult,
    FriendshipCheck,
    MessageRead,
    PublicUser,
    UserRelationRead,
)
from app.services import relationships
from app.services.relationships import RelationshipView
from app.services.rooms import list_friend_conversations

router = APIRouter(prefix="/friends", tags=["friends"])

settings = get_settings()


def _serialize_view(view: RelationshipView) -> UserRelationRead:
    base = PublicUser.model_validate(view.user)
    return UserRelationRead(
        **base.model_dump(),
        is_friend=view.is_friend,
        has_pending_request=view.has_pending_request,
        is_blocked=view.is_blocked,
    )


@router.post("/requests", response_model=FriendRequestResult, status_code=status.HTTP_201_CREATED)
def send_friend_request(
    payload: FriendRequestCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FriendRequestResult:
    outcome = relationships.send_request(db, current_user, payload.user_id)
    return FriendRequestResult(
        request=FriendRequestRead.model_validate(outcome.request),
        auto_accepted=outcome.auto_accepted,
    )


@router.get("/requests", response_model=FriendRequestList)
def list_friend_requests(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FriendRequestList:
    incoming, outgoing = relationships.list_requests(db, current_user)
    return FriendRequestList(
        incoming=[FriendRequestRead.model_validate(item) for item in incoming],
        outgoing=[FriendRequestRead.model_validate(item) for item in outgoing],
    )


@router.post("/requests/{request_id}/accept", response_model=FriendRequestRead)
def accept_friend_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FriendRequestRead:
    request = relationships.accept_request(db, current_user, request_id)
    return FriendRequestRead.model_validate(request)


@router.post("/requests/{request_id}/reject", response_model=FriendRequestRead)
def reject_friend_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FriendRequestRead:
    request = relationships.reject_request(db, current_user, request_id)
    return FriendRequestRead.model_validate(request)


@router.delete("/requests/{user_id}", response_model=CancelRequestResult)
def cancel_friend_request(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CancelRequestResult:
    removed = relationships.cancel_request(db, current_user, user_id)
    return CancelRequestResult(removed=removed)


@router.get("", response_model=list[FriendConversationRead])
def list_friends(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[FriendConversationRead]:
    """Friends with their direct room's last message and unread count."""

    return [
        FriendConversationRead(
            friend=PublicUser.model_validate(entry.friend),
            room_id=entry.room.id if entry.room is not None else None,
            last_message=(
                MessageRead.model_validate(entry.last_message)
                if entry.last_message is not None
                else None
            ),
            unread_count=entry.unread_count,
        )
        for entry in list_friend_conversations(db, current_user)
    ]


@router.get("/users", response_model=list[UserRelationRead])
def list_users(
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[UserRelationRead]:
    views = relationships.list_users(
        db, current_user, page=page, limit=limit or settings.user_directory_page_size
    )
    return [_serialize_view(view) for view in views]


@router.get("/search", response_model=list[UserRelationRead])
def search_users(
    query: str = Query("", max_length=128),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[UserRelationRead]:
    views = relationships.search_users(db, current_user, query, limit=settings.user_search_limit)
    return [_serialize_view(view) for view in views]


@router.get("/check/{user_id}", response_model=FriendshipCheck)
def check_friendship(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FriendshipCheck:
    return FriendshipCheck(is_friend=relationships.are_friends(db, current_user.id, user_id))


@router.get("/blocked", response_model=list[PublicUser])
def list_blocked_users(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[User]:
    return relationships.list_blocked(db, current_user)


@router.post("/block/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def block_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    relationships.block_user(db, current_user, user_id)


@router.delete("/block/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def unblock_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    relationships.unblock_user(db, current_user, user_id)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_friend(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    relationships.remove_friend(db, current_user, user_id)
