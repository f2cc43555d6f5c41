"""Typed failures raised by the chat engines.

Engines never build transport responses themselves; the HTTP and websocket
layers translate these exceptions (see ``app.main`` and ``app.api.ws``).
"""

from __future__ import annotations

from typing import Any

from fastapi import status


class ChatError(Exception):
    """Base class for engine failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str, **extra: Any) -> None:
        super().__init__(detail)
        self.detail = detail
        self.extra = extra

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.detail, **self.extra}


class NotFoundError(ChatError):
    """A referenced user, room, request or message does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(ChatError):
    """The caller is not allowed to perform the action."""

    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(ChatError):
    """The action collides with existing state."""

    status_code = status.HTTP_409_CONFLICT


class InvalidError(ChatError):
    """The request is malformed or missing required data."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFriendsError(ForbiddenError):
    def __init__(self, detail: str = "You can only message users who are your friends") -> None:
        super().__init__(detail, is_friend=False)


class BlockedError(ForbiddenError):
    def __init__(self, detail: str = "Cannot message this user") -> None:
        super().__init__(detail, is_blocked=True)
