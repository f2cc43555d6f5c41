"""Realtime helpers for room fan-out across websocket connections."""

from .managers import (  # noqa: F401
    MESSAGE_EVENT,
    MESSAGE_UPDATED_EVENT,
    STOP_TYPING_EVENT,
    TYPING_EVENT,
    RoomConnectionManager,
    RoomEventPublisher,
    TypingManager,
    get_room_manager,
    get_room_publisher,
    get_typing_manager,
    revoke_room_access,
    safe_send_json,
    shutdown_realtime,
    startup_realtime,
)
from .transport import BrokerConfig, RedisTransport, TransportUnavailableError  # noqa: F401

__all__ = [
    "startup_realtime",
    "shutdown_realtime",
    "get_room_manager",
    "get_room_publisher",
    "get_typing_manager",
    "revoke_room_access",
    "safe_send_json",
    "RoomConnectionManager",
    "RoomEventPublisher",
    "TypingManager",
    "BrokerConfig",
    "RedisTransport",
    "TransportUnavailableError",
    "MESSAGE_EVENT",
    "MESSAGE_UPDATED_EVENT",
    "TYPING_EVENT",
    "STOP_TYPING_EVENT",
]
