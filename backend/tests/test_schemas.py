"""Unit tests validating Pydantic schema constraints."""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from app.models import MessageType, PresenceStatus
from app.schemas import MessageCreate, MessageRead, PublicUser, ReactionRequest, RoomCreate, UserCreate


def test_room_create_strips_whitespace():
    room = RoomCreate(name="  Planning Room  ")
    assert room.name == "Planning Room"
    assert room.is_private is False
    assert room.member_ids == []


def test_room_create_requires_non_empty_name():
    with pytest.raises(ValidationError):
        RoomCreate(name="   ")


def test_user_create_enforces_password_length_and_email():
    with pytest.raises(ValidationError):
        UserCreate(login="bob", email="bob@example.com", password="short")
    with pytest.raises(ValidationError):
        UserCreate(login="bob", email="not-an-email", password="longenough")


def test_message_payloads_reject_blank_content():
    with pytest.raises(ValidationError):
        MessageCreate(room_id=1, content="   ")
    with pytest.raises(ValidationError):
        ReactionRequest(emoji="x" * 33)


def test_public_user_reads_presence_status_attribute():
    user = SimpleNamespace(
        id=3,
        login="carol",
        avatar_url=None,
        presence_status=PresenceStatus.AWAY,
        last_seen_at=None,
    )

    dumped = PublicUser.model_validate(user).model_dump(mode="json")

    assert dumped["status"] == "away"


def test_message_read_exposes_receipts_as_read_by():
    now = datetime(2026, 10, 19, tzinfo=timezone.utc)
    message = SimpleNamespace(
        id=1,
        room_id=2,
        sender_id=3,
        sender=None,
        type=MessageType.TEXT,
        content="hi",
        file_url=None,
        file_name=None,
        file_size=None,
        content_type=None,
        reply_to_id=None,
        is_edited=False,
        edited_at=None,
        deleted_at=None,
        created_at=now,
        reactions=[SimpleNamespace(user_id=4, emoji="🎉")],
        receipts=[SimpleNamespace(user_id=4, read_at=now)],
    )

    dumped = MessageRead.model_validate(message).model_dump(mode="json")

    assert dumped["read_by"] == [{"user_id": 4, "read_at": "2026-10-19T00:00:00Z"}]
    assert dumped["reactions"] == [{"user_id": 4, "emoji": "🎉"}]
