"""Application service helpers."""

from .errors import (
    BlockedError,
    ChatError,
    ConflictError,
    ForbiddenError,
    InvalidError,
    NotFoundError,
    NotFriendsError,
)
from .presence import presence_registry

__all__ = [
    "presence_registry",
    "ChatError",
    "NotFoundError",
    "ForbiddenError",
    "ConflictError",
    "InvalidError",
    "NotFriendsError",
    "BlockedError",
]
