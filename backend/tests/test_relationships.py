"""Unit tests for the friend request lifecycle and blocking rules."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from app.models import FriendRequest, FriendRequestStatus, User
from app.services import relationships
from app.services.errors import ConflictError, ForbiddenError, InvalidError, NotFoundError


@pytest.fixture()
def alice(make_user):
    return make_user("alice")


@pytest.fixture()
def bob(make_user):
    return make_user("bob")


def _pending_between(db_session, first, second) -> list[FriendRequest]:
    stmt = select(FriendRequest).where(
        FriendRequest.status == FriendRequestStatus.PENDING,
        FriendRequest.requester_id.in_([first.id, second.id]),
        FriendRequest.addressee_id.in_([first.id, second.id]),
    )
    return list(db_session.execute(stmt).scalars())


def test_send_request_appears_in_recipient_incoming_list(db_session, alice, bob):
    outcome = relationships.send_request(db_session, alice, bob.id)

    assert outcome.auto_accepted is False
    incoming, outgoing = relationships.list_requests(db_session, bob)
    assert [item.requester_id for item in incoming] == [alice.id]
    assert outgoing == []
    _, alice_outgoing = relationships.list_requests(db_session, alice)
    assert [item.id for item in alice_outgoing] == [outcome.request.id]


def test_accept_makes_friendship_symmetric(db_session, alice, bob):
    outcome = relationships.send_request(db_session, alice, bob.id)

    accepted = relationships.accept_request(db_session, bob, outcome.request.id)

    assert accepted.status == FriendRequestStatus.ACCEPTED
    assert accepted.responded_at is not None
    assert bob.id in relationships.friend_ids(db_session, alice.id)
    assert alice.id in relationships.friend_ids(db_session, bob.id)
    assert _pending_between(db_session, alice, bob) == []


def test_mutual_requests_short_circuit_to_friendship(db_session, alice, bob):
    first = relationships.send_request(db_session, alice, bob.id)

    outcome = relationships.send_request(db_session, bob, alice.id)

    assert outcome.auto_accepted is True
    assert outcome.request.id == first.request.id
    assert outcome.request.status == FriendRequestStatus.ACCEPTED
    assert relationships.are_friends(db_session, alice.id, bob.id)
    assert _pending_between(db_session, alice, bob) == []
    total = db_session.execute(select(FriendRequest)).scalars().all()
    assert len(total) == 1


def test_send_request_validation(db_session, alice, bob, befriend, make_user):
    with pytest.raises(InvalidError):
        relationships.send_request(db_session, alice, alice.id)
    with pytest.raises(NotFoundError):
        relationships.send_request(db_session, alice, 9999)

    relationships.send_request(db_session, alice, bob.id)
    with pytest.raises(ConflictError):
        relationships.send_request(db_session, alice, bob.id)

    carol = make_user("carol")
    befriend(alice, carol)
    with pytest.raises(ConflictError):
        relationships.send_request(db_session, alice, carol.id)


def test_only_recipient_can_accept_or_reject(db_session, alice, bob):
    outcome = relationships.send_request(db_session, alice, bob.id)

    with pytest.raises(ForbiddenError):
        relationships.accept_request(db_session, alice, outcome.request.id)
    with pytest.raises(ForbiddenError):
        relationships.reject_request(db_session, alice, outcome.request.id)
    with pytest.raises(NotFoundError):
        relationships.accept_request(db_session, bob, 4242)


def test_reject_leaves_friends_untouched_and_blocks_reprocessing(db_session, alice, bob):
    outcome = relationships.send_request(db_session, alice, bob.id)

    rejected = relationships.reject_request(db_session, bob, outcome.request.id)

    assert rejected.status == FriendRequestStatus.REJECTED
    assert not relationships.are_friends(db_session, alice.id, bob.id)
    with pytest.raises(ConflictError):
        relationships.accept_request(db_session, bob, outcome.request.id)

    # A rejected request no longer counts as pending, so a new one may be sent.
    again = relationships.send_request(db_session, alice, bob.id)
    assert again.request.status == FriendRequestStatus.PENDING


def test_cancel_removes_pending_in_both_directions(db_session, alice, bob):
    relationships.send_request(db_session, alice, bob.id)

    assert relationships.cancel_request(db_session, alice, bob.id) == 1
    assert _pending_between(db_session, alice, bob) == []
    assert relationships.cancel_request(db_session, bob, alice.id) == 0


def test_remove_friend_is_symmetric(db_session, alice, bob, befriend):
    befriend(alice, bob)

    relationships.remove_friend(db_session, bob, alice.id)

    assert relationships.friend_ids(db_session, alice.id) == set()
    assert relationships.friend_ids(db_session, bob.id) == set()
    with pytest.raises(InvalidError):
        relationships.remove_friend(db_session, alice, alice.id)


def test_block_removes_friendship_and_pending_requests(db_session, alice, bob, make_user, befriend):
    carol = make_user("carol")
    befriend(alice, bob)
    relationships.send_request(db_session, carol, alice.id)

    relationships.block_user(db_session, alice, bob.id)
    relationships.block_user(db_session, alice, carol.id)

    assert not relationships.are_friends(db_session, alice.id, bob.id)
    assert _pending_between(db_session, alice, carol) == []
    view = relationships.annotate(db_session, alice, [bob])[0]
    assert view.is_blocked is True
    assert view.is_friend is False
    # Blocking is directional.
    assert relationships.annotate(db_session, bob, [alice])[0].is_blocked is False
    assert relationships.is_blocked_between(db_session, bob.id, alice.id)


def test_block_and_unblock_validation(db_session, alice, bob):
    with pytest.raises(InvalidError):
        relationships.block_user(db_session, alice, alice.id)

    relationships.block_user(db_session, alice, bob.id)
    with pytest.raises(ConflictError):
        relationships.block_user(db_session, alice, bob.id)

    with pytest.raises(InvalidError):
        relationships.unblock_user(db_session, bob, alice.id)

    relationships.unblock_user(db_session, alice, bob.id)
    assert relationships.list_blocked(db_session, alice) == []


def test_search_excludes_self_and_blocked_users(db_session, alice, bob, make_user):
    carol = make_user("alicia")
    relationships.send_request(db_session, alice, bob.id)
    relationships.block_user(db_session, alice, carol.id)

    results = relationships.search_users(db_session, alice, "ALI", limit=10)
    assert results == []

    results = relationships.search_users(db_session, alice, "bob", limit=10)
    assert [view.user.id for view in results] == [bob.id]
    assert results[0].has_pending_request is True
    assert results[0].is_friend is False

    assert relationships.search_users(db_session, alice, "   ", limit=10) == []


def test_list_users_paginates_and_excludes_self(db_session, alice, bob, make_user):
    make_user("carol")
    make_user("dave")

    first_page = relationships.list_users(db_session, alice, page=1, limit=2)
    second_page = relationships.list_users(db_session, alice, page=2, limit=2)

    assert [view.user.login for view in first_page] == ["bob", "carol"]
    assert [view.user.login for view in second_page] == ["dave"]


def test_search_matches_wildcard_characters_literally(db_session, alice, bob, make_user):
    ops = make_user("dev_ops")

    assert [view.user.id for view in relationships.search_users(db_session, alice, "_", limit=10)] == [ops.id]
    assert relationships.search_users(db_session, alice, "%", limit=10) == []


def _stale_pending_lookup(monkeypatch) -> list[tuple[int, int]]:
    """Make the first send attempt miss requests committed by another session."""

    lookup = relationships._pending_request
    calls: list[tuple[int, int]] = []

    def stale(db, requester_id, addressee_id):
        calls.append((requester_id, addressee_id))
        if len(calls) <= 2:
            return None
        return lookup(db, requester_id, addressee_id)

    monkeypatch.setattr(relationships, "_pending_request", stale)
    return calls


def test_concurrent_duplicate_request_is_rejected(db_session, session_factory, alice, bob, monkeypatch):
    relationships.send_request(db_session, alice, bob.id)
    calls = _stale_pending_lookup(monkeypatch)

    with session_factory() as other_session:
        sender = other_session.get(User, alice.id)
        with pytest.raises(ConflictError):
            relationships.send_request(other_session, sender, bob.id)

    assert len(calls) == 3
    assert len(_pending_between(db_session, alice, bob)) == 1


def test_concurrent_crossed_requests_become_friendship(db_session, session_factory, alice, bob, monkeypatch):
    first = relationships.send_request(db_session, alice, bob.id)
    _stale_pending_lookup(monkeypatch)

    with session_factory() as other_session:
        sender = other_session.get(User, bob.id)
        outcome = relationships.send_request(other_session, sender, alice.id)
        assert outcome.auto_accepted is True
        assert outcome.request.id == first.request.id

    db_session.expire_all()
    assert relationships.are_friends(db_session, alice.id, bob.id)
    assert _pending_between(db_session, alice, bob) == []
    assert len(db_session.execute(select(FriendRequest)).scalars().all()) == 1


def test_answered_requests_release_the_pending_slot(db_session, alice, bob):
    outcome = relationships.send_request(db_session, alice, bob.id)
    assert outcome.request.pending_key is not None

    rejected = relationships.reject_request(db_session, bob, outcome.request.id)
    assert rejected.pending_key is None

    again = relationships.send_request(db_session, bob, alice.id)
    assert again.auto_accepted is False
    assert again.request.pending_key is not None
