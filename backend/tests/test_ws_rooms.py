from __future__ import annotations

import time

import pytest
from starlette.testclient import WebSocketTestSession
from starlette.websockets import WebSocketDisconnect

from app.api import ws as ws_module
from app.core.security import create_access_token
from app.models import Friendship, PresenceStatus, Room, RoomMember, User


def _create_user(session_factory, login: str) -> tuple[int, str]:
    with session_factory() as session:
        user = User(login=login, email=f"{login}@example.com", hashed_password="hashed")
        session.add(user)
        session.commit()
        return user.id, create_access_token({"sub": str(user.id)})


def _create_room(session_factory, *member_ids: int) -> int:
    with session_factory() as session:
        room = Room(name="Crew", description="", is_private=False, admin_id=member_ids[0])
        room.members = [RoomMember(user_id=member_id, unread_count=0) for member_id in member_ids]
        session.add(room)
        session.commit()
        return room.id


def _befriend(session_factory, first_id: int, second_id: int) -> None:
    low, high = sorted((first_id, second_id))
    with session_factory() as session:
        session.add(Friendship(user_low_id=low, user_high_id=high))
        session.commit()


def test_room_socket_rejects_missing_token_and_non_members(client, session_factory) -> None:
    member_id, _ = _create_user(session_factory, "member")
    _, outsider_token = _create_user(session_factory, "outsider")
    room_id = _create_room(session_factory, member_id)

    with pytest.raises(WebSocketDisconnect) as missing:
        with client.websocket_connect(f"/ws/rooms/{room_id}"):
            pass
    assert missing.value.code == 1008

    with pytest.raises(WebSocketDisconnect) as outsider:
        with client.websocket_connect(f"/ws/rooms/{room_id}?token={outsider_token}"):
            pass
    assert outsider.value.code == 1008


def test_room_socket_receives_messages_posted_over_http(client, session_factory) -> None:
    sender_id, sender_token = _create_user(session_factory, "sender")
    reader_id, reader_token = _create_user(session_factory, "reader")
    room_id = _create_room(session_factory, sender_id, reader_id)

    with client.websocket_connect(f"/ws/rooms/{room_id}?token={reader_token}") as connection:
        subscribed = connection.receive_json()
        assert subscribed == {"type": "subscribed", "room_id": room_id, "typing": []}

        response = client.post(
            "/api/messages",
            json={"room_id": room_id, "content": "hello room"},
            headers={"Authorization": f"Bearer {sender_token}"},
        )
        assert response.status_code == 201, response.text

        event = connection.receive_json()
        assert event["type"] == "message"
        assert event["room_id"] == room_id
        assert event["message"]["id"] == response.json()["id"]
        assert event["message"]["content"] == "hello room"

        edited = client.patch(
            f"/api/messages/{event['message']['id']}",
            json={"content": "hello everyone"},
            headers={"Authorization": f"Bearer {sender_token}"},
        )
        assert edited.status_code == 200

        update = connection.receive_json()
        assert update["type"] == "messageUpdated"
        assert update["message"]["content"] == "hello everyone"
        assert update["message"]["is_edited"] is True


def test_typing_is_relayed_to_other_subscribers_only(client, session_factory) -> None:
    typist_id, typist_token = _create_user(session_factory, "typist")
    reader_id, reader_token = _create_user(session_factory, "reader")
    room_id = _create_room(session_factory, typist_id, reader_id)

    with client.websocket_connect(f"/ws/rooms/{room_id}?token={reader_token}") as reader:
        assert reader.receive_json()["type"] == "subscribed"
        with client.websocket_connect(f"/ws/rooms/{room_id}?token={typist_token}") as typist:
            assert typist.receive_json()["type"] == "subscribed"

            typist.send_json({"type": "typing"})
            started = reader.receive_json()
            assert started["type"] == "userTyping"
            assert started["user_id"] == typist_id

            typist.send_json({"type": "stop_typing"})
            stopped = reader.receive_json()
            assert stopped == {"type": "userStopTyping", "room_id": room_id, "user_id": typist_id}

            # The typist never hears its own indicators.
            typist.send_json({"type": "ping"})
            assert typist.receive_json() == {"type": "pong"}

            typist.send_json({"type": "shout"})
            assert typist.receive_json()["type"] == "error"
            typist.send_text("not json")
            assert typist.receive_json() == {"type": "error", "detail": "Invalid payload"}


def test_room_connection_survives_keepalive_timeout(client, session_factory) -> None:
    """Server side keepalive pings keep an idle socket open."""

    user_id, token = _create_user(session_factory, "keepalive-user")
    room_id = _create_room(session_factory, user_id)

    settings = ws_module.settings
    original_timeout = settings.websocket_keepalive_timeout_seconds
    original_interval = settings.websocket_keepalive_ping_interval_seconds
    settings.websocket_keepalive_timeout_seconds = 0.1
    settings.websocket_keepalive_ping_interval_seconds = 0.05

    try:
        with client.websocket_connect(f"/ws/rooms/{room_id}?token={token}") as connection:
            assert connection.receive_json()["type"] == "subscribed"
            _assert_keepalive_sequence(connection)
    finally:
        settings.websocket_keepalive_timeout_seconds = original_timeout
        settings.websocket_keepalive_ping_interval_seconds = original_interval


def _assert_keepalive_sequence(connection: WebSocketTestSession) -> None:
    time.sleep(0.15)
    assert connection.receive_json()["type"] == "ping"
    connection.send_json({"type": "pong"})

    time.sleep(0.12)
    assert connection.receive_json()["type"] == "ping"
    connection.send_json({"type": "pong"})

    connection.send_text("ping")
    assert connection.receive_json() == {"type": "pong"}


def test_presence_is_announced_to_friends(client, session_factory) -> None:
    watcher_id, watcher_token = _create_user(session_factory, "watcher")
    friend_id, friend_token = _create_user(session_factory, "friend")
    _befriend(session_factory, watcher_id, friend_id)

    with client.websocket_connect(f"/ws/presence?token={watcher_token}") as watcher:
        snapshot = watcher.receive_json()
        assert snapshot == {
            "type": "presence_snapshot",
            "users": [{"user_id": friend_id, "status": "offline", "last_seen_at": None}],
        }

        with client.websocket_connect(f"/ws/presence?token={friend_token}") as friend:
            online = watcher.receive_json()
            assert online["type"] == "presence"
            assert online["user_id"] == friend_id
            assert online["status"] == "online"

            friend_snapshot = friend.receive_json()
            assert friend_snapshot["users"][0]["user_id"] == watcher_id
            assert friend_snapshot["users"][0]["status"] == "online"

            # Disconnect while the session is still open so the handler can finish its cleanup.
            friend.close()
            offline = watcher.receive_json()
            assert offline["type"] == "presence"
            assert offline["user_id"] == friend_id
            assert offline["status"] == "offline"
            assert offline["last_seen_at"] is not None

    with session_factory() as session:
        assert session.get(User, friend_id).last_seen_at is not None


def test_removed_and_departed_members_stop_receiving_room_events(client, session_factory) -> None:
    admin_id, admin_token = _create_user(session_factory, "admin")
    bob_id, bob_token = _create_user(session_factory, "bob")
    carol_id, carol_token = _create_user(session_factory, "carol")
    dave_id, dave_token = _create_user(session_factory, "dave")
    room_id = _create_room(session_factory, admin_id, bob_id, carol_id, dave_id)
    admin_headers = {"Authorization": f"Bearer {admin_token}"}

    with client.websocket_connect(f"/ws/rooms/{room_id}?token={carol_token}") as carol:
        assert carol.receive_json()["type"] == "subscribed"

        with client.websocket_connect(f"/ws/rooms/{room_id}?token={bob_token}") as bob:
            assert bob.receive_json()["type"] == "subscribed"

            removed = client.delete(f"/api/rooms/{room_id}/members/{bob_id}", headers=admin_headers)
            assert removed.status_code == 200, removed.text

            with pytest.raises(WebSocketDisconnect) as closed:
                bob.receive_json()
            assert closed.value.code == 1008

        with client.websocket_connect(f"/ws/rooms/{room_id}?token={dave_token}") as dave:
            assert dave.receive_json()["type"] == "subscribed"

            left = client.post(
                f"/api/rooms/{room_id}/leave", headers={"Authorization": f"Bearer {dave_token}"}
            )
            assert left.status_code == 204

            with pytest.raises(WebSocketDisconnect) as closed:
                dave.receive_json()
            assert closed.value.code == 1008

        posted = client.post(
            "/api/messages",
            json={"room_id": room_id, "content": "after the reshuffle"},
            headers=admin_headers,
        )
        assert posted.status_code == 201

        event = carol.receive_json()
        assert event["type"] == "message"
        assert event["message"]["content"] == "after the reshuffle"


def test_no_op_message_updates_are_not_broadcast(client, session_factory) -> None:
    sender_id, sender_token = _create_user(session_factory, "sender")
    reader_id, reader_token = _create_user(session_factory, "reader")
    room_id = _create_room(session_factory, sender_id, reader_id)
    headers = {"Authorization": f"Bearer {sender_token}"}

    with client.websocket_connect(f"/ws/rooms/{room_id}?token={reader_token}") as connection:
        assert connection.receive_json()["type"] == "subscribed"

        message_id = client.post(
            "/api/messages", json={"room_id": room_id, "content": "vote"}, headers=headers
        ).json()["id"]
        assert connection.receive_json()["type"] == "message"

        for _ in range(2):
            reacted = client.post(
                f"/api/messages/{message_id}/reactions", json={"emoji": "👍"}, headers=headers
            )
            assert reacted.status_code == 200
        for _ in range(2):
            assert client.delete(f"/api/messages/{message_id}", headers=headers).status_code == 200

        updates = [connection.receive_json(), connection.receive_json()]
        assert [frame["type"] for frame in updates] == ["messageUpdated", "messageUpdated"]
        assert updates[0]["message"]["reactions"] == [{"user_id": sender_id, "emoji": "👍"}]
        assert updates[1]["message"]["deleted_at"] is not None

        client.post("/api/messages", json={"room_id": room_id, "content": "next"}, headers=headers)
        assert connection.receive_json()["type"] == "message"


def test_presence_snapshot_prefers_live_sockets_over_stored_offline(client, session_factory) -> None:
    watcher_id, watcher_token = _create_user(session_factory, "watcher")
    friend_id, friend_token = _create_user(session_factory, "friend")
    _befriend(session_factory, watcher_id, friend_id)

    with client.websocket_connect(f"/ws/presence?token={friend_token}") as friend:
        assert friend.receive_json()["type"] == "presence_snapshot"
        with session_factory() as session:
            session.get(User, friend_id).presence_status = PresenceStatus.OFFLINE
            session.commit()

        with client.websocket_connect(f"/ws/presence?token={watcher_token}") as watcher:
            snapshot = watcher.receive_json()
            assert snapshot["users"] == [
                {"user_id": friend_id, "status": "online", "last_seen_at": None}
            ]
            assert friend.receive_json()["status"] == "online"
