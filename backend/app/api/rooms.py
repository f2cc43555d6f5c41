"""HTTP endpoints for rooms and room membership."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from parley.realtime import revoke_room_access

from app.api.deps import get_current_user
from app.database import get_db
from app.models import Room, User
from app.schemas import (
    DirectRoomRead,
    RoomCreate,
    RoomMembersAdd,
    RoomMembersResult,
    RoomRead,
    RoomReadState,
)
from app.services import rooms as room_service

router = APIRouter(prefix="/rooms", tags=["rooms"])


@router.get("", response_model=list[RoomRead])
def list_rooms(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[Room]:
    """Group rooms of the current user; direct conversations are listed under friends."""

    return room_service.list_group_rooms(db, current_user)


@router.post("", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
def create_room(
    payload: RoomCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Room:
    return room_service.create_group(
        db,
        current_user,
        name=payload.name,
        description=payload.description,
        member_ids=payload.member_ids,
        is_private=payload.is_private,
    )


@router.get("/direct/{friend_id}", response_model=DirectRoomRead)
def get_direct_room(
    friend_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> DirectRoomRead:
    room = room_service.get_or_create_direct(db, current_user, friend_id)
    return DirectRoomRead(room=RoomRead.model_validate(room), is_friend=True)


@router.get("/{room_id}", response_model=RoomRead)
def read_room(
    room_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Room:
    return room_service.require_member(db, room_id, current_user.id)


@router.post("/{room_id}/join", response_model=RoomRead)
def join_room(
    room_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Room:
    return room_service.join(db, room_id, current_user)


@router.post("/{room_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_room(
    room_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    room_service.leave(db, room_id, current_user)
    await revoke_room_access(room_id, current_user.id)


@router.post("/{room_id}/members", response_model=RoomMembersResult)
def add_room_members(
    room_id: int,
    payload: RoomMembersAdd,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RoomMembersResult:
    room, added = room_service.add_members(db, room_id, current_user, payload.member_ids)
    return RoomMembersResult(room=RoomRead.model_validate(room), added=added)


@router.delete("/{room_id}/members/{user_id}", response_model=RoomRead)
async def remove_room_member(
    room_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Room:
    room = room_service.remove_member(db, room_id, current_user, user_id)
    await revoke_room_access(room_id, user_id)
    return room


@router.post("/{room_id}/read", response_model=RoomReadState)
def mark_room_read(
    room_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RoomReadState:
    member = room_service.mark_room_read(db, room_id, current_user)
    return RoomReadState(
        room_id=room_id,
        unread_count=member.unread_count,
        last_read_at=member.last_read_at,
    )
