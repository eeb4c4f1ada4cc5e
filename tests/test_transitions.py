"""Tests for friend and membership transition rules."""

import pytest

from moodboard.adapters.base import ArrayRemove, ArrayUnion
from moodboard.core.errors import PermissionDenied
from moodboard.core.models import Community, User
from moodboard.core.transitions import (
    FriendAction,
    InvalidTransition,
    MembershipAction,
    apply_friend_action,
    apply_membership_action,
    check_membership_action,
    friend_writes,
    membership_writes,
    relationship,
)


@pytest.fixture
def community() -> Community:
    return Community(
        id="c1", name="Calm", created_by="owner", members=["owner", "admin", "m"],
        admins=["owner", "admin"], join_requests=["r"],
    )


def test_send_request_guards() -> None:
    user = User(id="a", username="A", friends=["b"])
    with pytest.raises(InvalidTransition):
        apply_friend_action(user, FriendAction.SEND, "a")
    with pytest.raises(InvalidTransition):
        apply_friend_action(user, FriendAction.SEND, "b")
    sent = apply_friend_action(user, FriendAction.SEND, "c")
    assert relationship(sent, "c") == "sent"


def test_accept_clears_both_request_lists() -> None:
    user = User(id="a", username="A", friend_requests=["b"], sent_friend_requests=["b"])
    accepted = apply_friend_action(user, FriendAction.ACCEPT, "b")
    assert accepted.friends == ["b"]
    assert accepted.friend_requests == [] and accepted.sent_friend_requests == []
    assert relationship(accepted, "b") == "friends"


def test_friend_writes_touch_both_users() -> None:
    (mine_col, mine_id, mine), (theirs_col, theirs_id, theirs) = friend_writes(
        FriendAction.SEND, "a", "b"
    )
    assert (mine_col, mine_id, theirs_col, theirs_id) == ("users", "a", "users", "b")
    assert mine["sentFriendRequests"] == ArrayUnion("b")
    assert theirs["friendRequests"] == ArrayUnion("a")

    _, (_, _, theirs) = friend_writes(FriendAction.REMOVE, "a", "b")
    assert theirs == {"friends": ArrayRemove("a")}


def test_join_and_request_reject_existing_members(community) -> None:
    with pytest.raises(InvalidTransition):
        check_membership_action(community, MembershipAction.JOIN, "m", "m")
    check_membership_action(community, MembershipAction.REQUEST, "x", "x")


def test_owner_cannot_leave_demote_or_be_removed(community) -> None:
    with pytest.raises(PermissionDenied):
        check_membership_action(community, MembershipAction.LEAVE, "owner", "owner")
    with pytest.raises(PermissionDenied):
        check_membership_action(community, MembershipAction.REMOVE, "admin", "owner")
    with pytest.raises(PermissionDenied):
        check_membership_action(community, MembershipAction.DEMOTE, "owner", "owner")


def test_admin_only_actions(community) -> None:
    with pytest.raises(PermissionDenied):
        check_membership_action(community, MembershipAction.ACCEPT, "m", "r")
    check_membership_action(community, MembershipAction.ACCEPT, "admin", "r")
    with pytest.raises(PermissionDenied, match="creator"):
        check_membership_action(community, MembershipAction.DEMOTE, "admin", "m")
    with pytest.raises(InvalidTransition):
        check_membership_action(community, MembershipAction.PROMOTE, "owner", "stranger")


def test_accept_moves_request_into_members(community) -> None:
    updated = apply_membership_action(community, MembershipAction.ACCEPT, "r")
    assert "r" in updated.members and updated.join_requests == []


def test_remove_also_drops_admin_role(community) -> None:
    updated = apply_membership_action(community, MembershipAction.REMOVE, "admin")
    assert "admin" not in updated.members and "admin" not in updated.admins


def test_membership_writes_update_joined_circles() -> None:
    writes = membership_writes(MembershipAction.ACCEPT, "c1", "r")
    assert writes[1] == ("users", "r", {"joinedCircles": ArrayUnion("c1")})
    assert membership_writes(MembershipAction.PROMOTE, "c1", "m") == [
        ("communities", "c1", {"admins": ArrayUnion("m")})
    ]


def test_actions_require_matching_pending_state() -> None:
    stranger = User(id="a", username="A")
    for action in (FriendAction.ACCEPT, FriendAction.REJECT, FriendAction.CANCEL,
                   FriendAction.REMOVE):
        with pytest.raises(InvalidTransition):
            apply_friend_action(stranger, action, "b")

    # only a received request can be accepted
    waiting = User(id="a", username="A", sent_friend_requests=["b"])
    with pytest.raises(InvalidTransition):
        apply_friend_action(waiting, FriendAction.ACCEPT, "b")
