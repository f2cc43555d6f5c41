"""HTTP endpoints for managing chat messages."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from parley.realtime import MESSAGE_EVENT, MESSAGE_UPDATED_EVENT, get_room_publisher

from app.api.deps import get_current_user
from app.core import resolve_room_file, store_upload
from app.core.storage import discard
from app.database import get_db
from app.models import Message, User
from app.schemas import MessageCreate, MessageRead, MessageUpdate, ReactionRequest
from app.services import ChatError, messaging
from app.services.rooms import require_member

router = APIRouter(prefix="/messages", tags=["messages"])

logger = logging.getLogger(__name__)

publisher = get_room_publisher()


async def _publish(event: str, message: Message, *, changed: bool = True) -> MessageRead:
    serialized = MessageRead.model_validate(message)
    if changed:
        await publisher.publish(
            message.room_id, event, {"message": serialized.model_dump(mode="json")}
        )
    return serialized


@router.get("/room/{room_id}", response_model=list[MessageRead])
def read_history(
    room_id: int,
    before: int | None = Query(None, ge=1, description="Return messages older than this id"),
    limit: int | None = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[Message]:
    return messaging.list_history(db, current_user, room_id, before=before, limit=limit)


@router.get("/room/{room_id}/search", response_model=list[MessageRead])
def search_room_messages(
    room_id: int,
    query: str = Query("", max_length=256),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[Message]:
    return messaging.search_messages(db, current_user, room_id, query)


@router.post("", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def create_message(
    payload: MessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    message = messaging.send_message(
        db,
        current_user,
        payload.room_id,
        content=payload.content,
        reply_to_id=payload.reply_to_id,
    )
    return await _publish(MESSAGE_EVENT, message)


@router.post("/upload", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def upload_message(
    room_id: int = Form(...),
    content: str = Form(""),
    reply_to_id: int | None = Form(None),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    """Store an attachment and post it to the room with an optional caption."""

    require_member(db, room_id, current_user.id)
    stored = await store_upload(room_id, file)
    try:
        message = messaging.send_message(
            db,
            current_user,
            room_id,
            content=content,
            reply_to_id=reply_to_id,
            attachment=stored,
        )
    except ChatError:
        discard(stored)
        raise
    logger.info("Stored %s (%d bytes) for room %s", stored.file_name, stored.file_size, room_id)
    return await _publish(MESSAGE_EVENT, message)


@router.get("/files/{room_id}/{stored_name}")
def download_file(
    room_id: int,
    stored_name: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FileResponse:
    require_member(db, room_id, current_user.id)
    return FileResponse(resolve_room_file(room_id, stored_name))


@router.patch("/{message_id}", response_model=MessageRead)
async def update_message(
    message_id: int,
    payload: MessageUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    message = messaging.edit_message(db, current_user, message_id, payload.content)
    return await _publish(MESSAGE_UPDATED_EVENT, message)


@router.delete("/{message_id}", response_model=MessageRead)
async def delete_message(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    message, changed = messaging.delete_message(db, current_user, message_id)
    return await _publish(MESSAGE_UPDATED_EVENT, message, changed=changed)


@router.post("/{message_id}/reactions", response_model=MessageRead)
async def react_to_message(
    message_id: int,
    payload: ReactionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    message, changed = messaging.add_reaction(db, current_user, message_id, payload.emoji)
    return await _publish(MESSAGE_UPDATED_EVENT, message, changed=changed)


@router.post("/{message_id}/read", response_model=MessageRead)
async def mark_message_read(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    message, changed = messaging.mark_read(db, current_user, message_id)
    return await _publish(MESSAGE_UPDATED_EVENT, message, changed=changed)
