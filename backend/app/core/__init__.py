"""Core utilities for the Parley backend."""

from .storage import (
    StoredFile,
    build_file_url,
    resolve_path,
    resolve_room_file,
    store_upload,
    store_user_avatar,
)

__all__ = [
    "StoredFile",
    "store_upload",
    "store_user_avatar",
    "resolve_path",
    "resolve_room_file",
    "build_file_url",
]
