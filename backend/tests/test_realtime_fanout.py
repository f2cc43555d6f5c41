from __future__ import annotations

import logging
from types import SimpleNamespace
from typing import Any

import pytest
from fastapi.websockets import WebSocketState

from parley.realtime.managers import (
    MESSAGE_EVENT,
    STOP_TYPING_EVENT,
    TYPING_EVENT,
    RoomConnectionManager,
    RoomEventPublisher,
    TypingManager,
)
from parley.realtime.transport import BrokerConfig, RedisTransport


class DummyWebSocket:
    def __init__(self, *, connected: bool = True) -> None:
        self.application_state = (
            WebSocketState.CONNECTED if connected else WebSocketState.DISCONNECTED
        )
        self.sent: list[dict[str, Any]] = []
        self.close_code: int | None = None

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_code = code
        self.application_state = WebSocketState.DISCONNECTED


class BrokenWebSocket(DummyWebSocket):
    async def send_json(self, payload: dict[str, Any]) -> None:
        raise RuntimeError("socket closed")


class FailingRedis:
    def __init__(self) -> None:
        self.attempts = 0

    async def publish(self, channel: str, payload: str) -> None:
        self.attempts += 1
        raise ConnectionError("boom")


class RecordingRedis:
    def __init__(self) -> None:
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, payload: str) -> None:
        self.published.append((channel, payload))


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def local_publisher() -> tuple[RoomConnectionManager, RoomEventPublisher]:
    connections = RoomConnectionManager()
    transport = RedisTransport(BrokerConfig(redis_url=None, node_id="node-a"))
    return connections, RoomEventPublisher(connections, transport, node_id="node-a")


@pytest.mark.anyio("asyncio")
async def test_publish_reaches_every_room_subscriber(local_publisher):
    connections, publisher = local_publisher
    first, second, elsewhere = DummyWebSocket(), DummyWebSocket(), DummyWebSocket()
    await connections.subscribe(1, first)
    await connections.subscribe(1, second)
    await connections.subscribe(2, elsewhere)

    frame = await publisher.publish(1, MESSAGE_EVENT, {"message": {"id": 7, "content": "hi"}})

    assert frame == {"type": "message", "room_id": 1, "message": {"id": 7, "content": "hi"}}
    assert first.sent == [frame]
    assert second.sent == [frame]
    assert elsewhere.sent == []


@pytest.mark.anyio("asyncio")
async def test_publish_skips_excluded_and_dead_sockets(local_publisher):
    connections, publisher = local_publisher
    source, listener = DummyWebSocket(), DummyWebSocket()
    closed, broken = DummyWebSocket(connected=False), BrokenWebSocket()
    for socket in (source, listener, closed, broken):
        await connections.subscribe(5, socket)

    delivered = await connections.broadcast(5, {"type": "ping"}, exclude={source})
    await publisher.publish(5, MESSAGE_EVENT, {"message": {"id": 1}}, exclude=source)

    assert delivered == 1
    assert source.sent == []
    assert [frame["type"] for frame in listener.sent] == ["ping", "message"]
    assert closed.sent == []


@pytest.mark.anyio("asyncio")
async def test_unsubscribe_drops_empty_rooms():
    connections = RoomConnectionManager()
    socket, other = DummyWebSocket(), DummyWebSocket()
    assert await connections.subscribe(3, socket) == 1
    assert await connections.subscribe(3, other) == 2

    await connections.unsubscribe(3, socket)
    await connections.unsubscribe(3, socket)
    await connections.unsubscribe(3, other)

    assert await connections.broadcast(3, {"type": "ping"}) == 0
    assert await connections.subscribe(3, socket) == 1


@pytest.mark.anyio("asyncio")
async def test_disconnect_user_closes_only_that_users_sockets(local_publisher):
    connections, publisher = local_publisher
    laptop, phone, colleague = DummyWebSocket(), DummyWebSocket(), DummyWebSocket()
    await connections.subscribe(7, laptop, user_id=1)
    await connections.subscribe(7, phone, user_id=1)
    await connections.subscribe(7, colleague, user_id=2)

    assert await publisher.revoke(7, 1) == 2
    await publisher.publish(7, MESSAGE_EVENT, {"message": {"id": 5}})

    assert laptop.close_code == phone.close_code == 1008
    assert laptop.sent == phone.sent == []
    assert [frame["message"]["id"] for frame in colleague.sent] == [5]
    assert colleague.close_code is None
    assert await connections.disconnect_user(7, 1) == 0


@pytest.mark.anyio("asyncio")
async def test_typing_excludes_source_and_stops_once(local_publisher):
    connections, publisher = local_publisher
    typist, reader = DummyWebSocket(), DummyWebSocket()
    await connections.subscribe(9, typist)
    await connections.subscribe(9, reader)
    manager = TypingManager(publisher, ttl_seconds=5.0)

    await manager.set_typing(9, 11, source=typist)
    await manager.set_typing(9, 11, source=typist)
    assert await manager.typing_users(9) == [11]

    await manager.clear_typing(9, 11, source=typist)
    await manager.clear_typing(9, 11, source=typist)

    assert typist.sent == []
    assert reader.sent == [
        {"type": TYPING_EVENT, "room_id": 9, "user_id": 11, "expires_in": 5.0},
        {"type": STOP_TYPING_EVENT, "room_id": 9, "user_id": 11},
    ]
    assert await manager.typing_users(9) == []


@pytest.mark.anyio("asyncio")
async def test_stale_typing_entries_expire(local_publisher, monkeypatch):
    connections, publisher = local_publisher
    reader = DummyWebSocket()
    await connections.subscribe(4, reader)
    manager = TypingManager(publisher, ttl_seconds=1.0)

    clock = iter([100.0, 105.0, 105.0])
    monkeypatch.setattr(
        "parley.realtime.managers.time", SimpleNamespace(monotonic=lambda: next(clock))
    )

    await manager.set_typing(4, 1)
    await manager.set_typing(4, 2)

    assert [frame["type"] for frame in reader.sent] == [
        TYPING_EVENT,
        STOP_TYPING_EVENT,
        TYPING_EVENT,
    ]
    assert reader.sent[1]["user_id"] == 1
    assert await manager.typing_users(4) == [2]


@pytest.mark.anyio("asyncio")
async def test_publish_relays_frame_to_peers():
    connections = RoomConnectionManager()
    transport = RedisTransport(BrokerConfig(redis_url="redis://example", redis_prefix="chat"))
    redis = RecordingRedis()
    transport._redis = redis  # type: ignore[assignment]
    publisher = RoomEventPublisher(connections, transport, node_id="node-a")

    await publisher.publish(2, MESSAGE_EVENT, {"message": {"id": 3}})

    assert redis.published == [
        (
            "chat.rooms",
            '{"origin": "node-a", "room_id": 2, "frame": {"type": "message", "room_id": 2, "message": {"id": 3}}}',
        )
    ]


@pytest.mark.anyio("asyncio")
async def test_relay_failure_logs_once_and_still_delivers_locally(caplog):
    connections = RoomConnectionManager()
    transport = RedisTransport(BrokerConfig(redis_url="redis://example"))
    redis = FailingRedis()
    transport._redis = redis  # type: ignore[assignment]
    transport._trigger_recovery = lambda reason: None  # type: ignore[method-assign]
    publisher = RoomEventPublisher(connections, transport, node_id="node-a")
    socket = DummyWebSocket()
    await connections.subscribe(8, socket)

    with caplog.at_level(logging.WARNING):
        await publisher.publish(8, MESSAGE_EVENT, {"message": {"id": 1}})
        await publisher.publish(8, MESSAGE_EVENT, {"message": {"id": 2}})

    assert [frame["message"]["id"] for frame in socket.sent] == [1, 2]
    assert redis.attempts == 2
    warnings = [
        record
        for record in caplog.records
        if record.levelno == logging.WARNING and "local-only mode" in record.getMessage()
    ]
    assert len(warnings) == 1


@pytest.mark.anyio("asyncio")
async def test_relayed_frames_from_peers_reach_local_subscribers():
    connections = RoomConnectionManager()
    socket = DummyWebSocket()
    await connections.subscribe(6, socket)

    handlers: list[Any] = []

    class CapturingTransport:
        enabled = True

        async def subscribe(self, topic: str, handler):
            handlers.append(handler)
            return None

    publisher = RoomEventPublisher(connections, CapturingTransport(), node_id="node-a")  # type: ignore[arg-type]
    await publisher.start()
    relay = handlers[0]

    frame = {"type": "message", "room_id": 6, "message": {"id": 9}}
    await relay({"origin": "node-b", "room_id": 6, "frame": frame})
    await relay({"origin": "node-a", "room_id": 6, "frame": frame})
    await relay({"origin": "node-b", "room_id": "bad", "frame": frame})

    assert socket.sent == [frame]


@pytest.mark.anyio("asyncio")
async def test_revocations_are_relayed_and_applied_by_peers():
    connections = RoomConnectionManager()
    removed, remaining = DummyWebSocket(), DummyWebSocket()
    await connections.subscribe(4, removed, user_id=10)
    await connections.subscribe(4, remaining, user_id=11)

    handlers: list[Any] = []
    published: list[tuple[str, dict[str, Any]]] = []

    class CapturingTransport:
        enabled = True

        async def subscribe(self, topic: str, handler):
            handlers.append(handler)
            return None

        async def publish(self, topic: str, message: dict[str, Any]) -> None:
            published.append((topic, message))

    publisher = RoomEventPublisher(connections, CapturingTransport(), node_id="node-a")  # type: ignore[arg-type]
    await publisher.start()

    await publisher.revoke(4, 99)
    assert published[-1][1] == {"origin": "node-a", "room_id": 4, "revoke_user_id": 99}

    await handlers[0]({"origin": "node-b", "room_id": 4, "revoke_user_id": 10})

    assert removed.close_code == 1008
    assert remaining.close_code is None
