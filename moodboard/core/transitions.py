"""Friend-request and community membership state transitions.

Each transition exists twice: as a pure function returning an updated copy
of the local model (applied optimistically by the store) and as a write plan
of ``(collection, doc_id, updates)`` triples built from array union/remove
operators, so the remote side converges regardless of arrival order.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from ..adapters.base import ArrayRemove, ArrayUnion
from .errors import MoodboardError, PermissionDenied
from .models import Community, User

Write = tuple[str, str, dict[str, Any]]


class InvalidTransition(MoodboardError):
    """The requested change does not apply to the current relationship."""


def _add(ids: list[str], value: str) -> list[str]:
    return ids if value in ids else [*ids, value]


def _drop(ids: list[str], value: str) -> list[str]:
    return [i for i in ids if i != value]


# ----------------------------------------------------------------------
# Friends
# ----------------------------------------------------------------------
class FriendAction(str, Enum):
    SEND = "send"
    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    REMOVE = "remove"


def relationship(user: User, other_id: str) -> str:
    """Return ``friends``, ``sent``, ``received`` or ``none``."""
    if other_id in user.friends:
        return "friends"
    if other_id in user.sent_friend_requests:
        return "sent"
    if other_id in user.friend_requests:
        return "received"
    return "none"


# where ``other_id`` has to appear for each non-SEND action to apply
_REQUIRED_LIST = {
    FriendAction.ACCEPT: lambda u: u.friend_requests,
    FriendAction.REJECT: lambda u: u.friend_requests,
    FriendAction.CANCEL: lambda u: u.sent_friend_requests,
    FriendAction.REMOVE: lambda u: u.friends,
}


def apply_friend_action(user: User, action: FriendAction, other_id: str) -> User:
    """Return ``user`` as seen after performing ``action`` towards ``other_id``."""
    if action is FriendAction.SEND:
        if other_id == user.id:
            raise InvalidTransition("You cannot befriend yourself.")
        state = relationship(user, other_id)
        if state != "none":
            raise InvalidTransition(f"Cannot send a friend request while {state}.")
        return user.model_copy(
            update={"sent_friend_requests": _add(user.sent_friend_requests, other_id)}
        )
    if other_id not in _REQUIRED_LIST[action](user):
        raise InvalidTransition(
            f"Cannot {action.value} while {relationship(user, other_id)}."
        )
    if action is FriendAction.ACCEPT:
        return user.model_copy(
            update={
                "friends": _add(user.friends, other_id),
                "friend_requests": _drop(user.friend_requests, other_id),
                "sent_friend_requests": _drop(user.sent_friend_requests, other_id),
            }
        )
    if action is FriendAction.REJECT:
        return user.model_copy(
            update={"friend_requests": _drop(user.friend_requests, other_id)}
        )
    if action is FriendAction.CANCEL:
        return user.model_copy(
            update={"sent_friend_requests": _drop(user.sent_friend_requests, other_id)}
        )
    return user.model_copy(update={"friends": _drop(user.friends, other_id)})


def friend_writes(action: FriendAction, actor_id: str, other_id: str) -> list[Write]:
    """Remote updates for both user documents, actor first."""
    if action is FriendAction.SEND:
        mine = {"sentFriendRequests": ArrayUnion(other_id)}
        theirs = {"friendRequests": ArrayUnion(actor_id)}
    elif action is FriendAction.ACCEPT:
        mine = {
            "friends": ArrayUnion(other_id),
            "friendRequests": ArrayRemove(other_id),
            "sentFriendRequests": ArrayRemove(other_id),
        }
        theirs = {
            "friends": ArrayUnion(actor_id),
            "sentFriendRequests": ArrayRemove(actor_id),
            "friendRequests": ArrayRemove(actor_id),
        }
    elif action is FriendAction.REJECT:
        mine = {"friendRequests": ArrayRemove(other_id)}
        theirs = {"sentFriendRequests": ArrayRemove(actor_id)}
    elif action is FriendAction.CANCEL:
        mine = {"sentFriendRequests": ArrayRemove(other_id)}
        theirs = {"friendRequests": ArrayRemove(actor_id)}
    else:
        mine = {"friends": ArrayRemove(other_id)}
        theirs = {"friends": ArrayRemove(actor_id)}
    return [("users", actor_id, mine), ("users", other_id, theirs)]


# ----------------------------------------------------------------------
# Communities
# ----------------------------------------------------------------------
class MembershipAction(str, Enum):
    JOIN = "join"
    LEAVE = "leave"
    REQUEST = "request"
    ACCEPT = "accept"
    REJECT = "reject"
    PROMOTE = "promote"
    DEMOTE = "demote"
    REMOVE = "remove"


def check_membership_action(
    community: Community, action: MembershipAction, actor_id: str, user_id: str
) -> None:
    """Raise if ``actor_id`` may not perform ``action`` on ``user_id``."""
    if action in (MembershipAction.JOIN, MembershipAction.REQUEST):
        if community.is_member(user_id):
            raise InvalidTransition("Already a member of this community.")
        return
    if action is MembershipAction.LEAVE:
        if community.is_owner(user_id):
            raise PermissionDenied("The creator cannot leave their own community.")
        return
    if not community.is_admin(actor_id):
        raise PermissionDenied("Only community admins can do that.")
    if action is MembershipAction.DEMOTE and not community.is_owner(actor_id):
        raise PermissionDenied("Only the creator can demote admins.")
    if action in (MembershipAction.DEMOTE, MembershipAction.REMOVE) and community.is_owner(user_id):
        raise PermissionDenied("The creator cannot be demoted or removed.")
    if action is MembershipAction.PROMOTE and not community.is_member(user_id):
        raise InvalidTransition("Only members can be promoted.")


def apply_membership_action(
    community: Community, action: MembershipAction, user_id: str
) -> Community:
    """Return ``community`` after ``action`` was applied to ``user_id``."""
    members = community.members
    admins = community.admins
    requests = community.join_requests
    if action in (MembershipAction.JOIN, MembershipAction.ACCEPT):
        members, requests = _add(members, user_id), _drop(requests, user_id)
    elif action in (MembershipAction.LEAVE, MembershipAction.REMOVE):
        members, admins = _drop(members, user_id), _drop(admins, user_id)
    elif action is MembershipAction.REQUEST:
        requests = _add(requests, user_id)
    elif action is MembershipAction.REJECT:
        requests = _drop(requests, user_id)
    elif action is MembershipAction.PROMOTE:
        admins = _add(admins, user_id)
    else:
        admins = _drop(admins, user_id)
    return community.model_copy(
        update={"members": members, "admins": admins, "join_requests": requests}
    )


def membership_writes(
    action: MembershipAction, community_id: str, user_id: str
) -> list[Write]:
    """Remote updates for the community document and, where membership
    changes, the affected user's ``joinedCircles``."""
    if action in (MembershipAction.JOIN, MembershipAction.ACCEPT):
        return [
            ("communities", community_id,
             {"members": ArrayUnion(user_id), "joinRequests": ArrayRemove(user_id)}),
            ("users", user_id, {"joinedCircles": ArrayUnion(community_id)}),
        ]
    if action in (MembershipAction.LEAVE, MembershipAction.REMOVE):
        return [
            ("communities", community_id,
             {"members": ArrayRemove(user_id), "admins": ArrayRemove(user_id)}),
            ("users", user_id, {"joinedCircles": ArrayRemove(community_id)}),
        ]
    if action is MembershipAction.REQUEST:
        updates: dict[str, Any] = {"joinRequests": ArrayUnion(user_id)}
    elif action is MembershipAction.REJECT:
        updates = {"joinRequests": ArrayRemove(user_id)}
    elif action is MembershipAction.PROMOTE:
        updates = {"admins": ArrayUnion(user_id)}
    else:
        updates = {"admins": ArrayRemove(user_id)}
    return [("communities", community_id, updates)]
