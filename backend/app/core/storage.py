"""Utilities for storing uploaded message attachments and user avatars."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final
from uuid import uuid4

from fastapi import HTTPException, UploadFile, status

from app.config import get_settings

settings = get_settings()

_CHUNK_SIZE: Final[int] = 1024 * 1024  # 1 MiB
AVATAR_EXTENSIONS: Final[frozenset[str]] = frozenset({".png", ".jpg", ".jpeg", ".gif", ".webp"})


@dataclass(slots=True)
class StoredFile:
    """Represents a file persisted by the storage backend."""

    file_name: str
    content_type: str | None
    file_size: int
    url: str
    absolute_path: Path
    relative_path: str


def _media_root() -> Path:
    root = settings.media_root
    root.mkdir(parents=True, exist_ok=True)
    return root


def _check_extension(file_name: str) -> str:
    extension = Path(file_name).suffix.lower()
    allowed = {f".{item}" for item in settings.allowed_upload_extensions}
    if extension not in allowed:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid file type. Allowed: " + ", ".join(settings.allowed_upload_extensions),
        )
    return extension


async def _write_upload(upload: UploadFile, absolute_path: Path, too_large_detail: str) -> int:
    """Stream ``upload`` to disk in chunks, enforcing the size limit."""

    total_size = 0
    try:
        with absolute_path.open("wb") as buffer:
            while True:
                chunk = await upload.read(_CHUNK_SIZE)
                if not chunk:
                    break
                total_size += len(chunk)
                if total_size > settings.max_upload_size:
                    raise HTTPException(
                        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                        detail=too_large_detail,
                    )
                buffer.write(chunk)
    except HTTPException:
        if absolute_path.exists():
            absolute_path.unlink()
        raise
    finally:
        await upload.close()
    return total_size


def build_file_url(room_id: int, stored_name: str) -> str:
    """Construct the relative URL a room member downloads a stored file from."""

    base = settings.media_base_url.rstrip("/")
    return f"{base}/{room_id}/{stored_name}"


async def store_upload(room_id: int, upload: UploadFile) -> StoredFile:
    """Persist an uploaded attachment for ``room_id`` and return its metadata."""

    original_name = upload.filename or "upload.bin"
    extension = _check_extension(original_name)

    target_dir = _media_root() / f"room_{room_id}"
    target_dir.mkdir(parents=True, exist_ok=True)
    stored_name = f"{uuid4().hex}{extension}"
    absolute_path = target_dir / stored_name

    total_size = await _write_upload(upload, absolute_path, "Attachment exceeds allowed size")
    return StoredFile(
        file_name=original_name,
        content_type=upload.content_type,
        file_size=total_size,
        url=build_file_url(room_id, stored_name),
        absolute_path=absolute_path,
        relative_path=os.path.relpath(absolute_path, _media_root()),
    )


async def store_user_avatar(user_id: int, upload: UploadFile) -> StoredFile:
    """Persist a user avatar image, replacing any previous upload."""

    if upload.content_type and not upload.content_type.startswith("image/"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Avatar must be an image file",
        )
    original_name = upload.filename or "avatar.png"
    extension = Path(original_name).suffix.lower() or ".png"
    if extension not in AVATAR_EXTENSIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Avatar must be a PNG, JPEG, GIF or WebP image",
        )

    target_dir = _media_root() / "avatars" / f"user_{user_id}"
    target_dir.mkdir(parents=True, exist_ok=True)
    absolute_path = target_dir / f"avatar_{uuid4().hex[:12]}{extension}"
    total_size = await _write_upload(upload, absolute_path, "Avatar exceeds allowed size")

    # Only drop the previous avatar once the new one is safely on disk.
    for existing in target_dir.iterdir():
        if existing.is_file() and existing != absolute_path:
            existing.unlink(missing_ok=True)

    return StoredFile(
        file_name=original_name,
        content_type=upload.content_type,
        file_size=total_size,
        url=f"{settings.avatar_base_url.rstrip('/')}/{user_id}",
        absolute_path=absolute_path,
        relative_path=os.path.relpath(absolute_path, _media_root()),
    )


def discard(stored: StoredFile) -> None:
    """Remove a stored file whose message could not be persisted."""

    try:
        stored.absolute_path.unlink()
    except FileNotFoundError:
        return


def resolve_path(relative_path: str) -> Path:
    """Return the absolute path of a stored file, refusing paths outside the media root."""

    root = _media_root().resolve()
    candidate = (root / relative_path).resolve()
    if not str(candidate).startswith(str(root)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid file path")
    if not candidate.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return candidate


def resolve_room_file(room_id: int, stored_name: str) -> Path:
    """Return the absolute path of a file stored for ``room_id``."""

    return resolve_path(os.path.join(f"room_{room_id}", stored_name))
