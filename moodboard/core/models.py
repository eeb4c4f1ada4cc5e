"""Data models for Moodboard's core entities.

The models are implemented using :mod:`pydantic` so that they provide
runtime validation and convenient serialisation to and from the documents
held by the document store.  Documents use camelCase field names; the
models expose snake_case attributes and accept either spelling.

Every timestamp field is normalised through
:func:`moodboard.core.timestamps.to_instant` on the way in and written back
as epoch milliseconds on the way out.
"""

from __future__ import annotations

import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .timestamps import to_instant, to_millis

MAX_VIBE_TEXT = 100


def _unique(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))


Instant = Annotated[
    datetime.datetime,
    BeforeValidator(to_instant),
    PlainSerializer(to_millis, return_type=int),
]
IdSet = Annotated[list[str], AfterValidator(_unique)]


class DocumentModel(BaseModel):
    """Base for models mirrored from document store collections."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: str = ""

    def to_document(self, **kwargs: Any) -> dict[str, Any]:
        """Return the camelCase document representation."""
        return self.model_dump(by_alias=True, **kwargs)


class User(DocumentModel):
    """Represents an authenticated member and their social state.

    Attributes
    ----------
    username:
        Unique, mutable display handle.
    streak:
        Consecutive calendar days with at least one post.
    badges:
        Unlocked badge ids, in unlock order.
    joined_circles:
        Community ids the user belongs to.
    last_posted_date:
        Instant of the most recent mood post, if any.
    mood_score:
        Lifetime post count. ``None`` or ``0`` on older profiles means the
        value still has to be backfilled from the user's posts.
    friends, friend_requests, sent_friend_requests:
        Mutually consistent user id sets across the two parties.

    """

    username: str
    streak: int = Field(default=0, ge=0)
    badges: IdSet = Field(default_factory=list)
    joined_circles: IdSet = Field(default_factory=list)
    created_at: Instant | None = None
    avatar_url: str | None = None
    last_posted_date: Instant | None = None
    mood_score: int | None = Field(default=None, ge=0)
    friends: IdSet = Field(default_factory=list)
    friend_requests: IdSet = Field(default_factory=list)
    sent_friend_requests: IdSet = Field(default_factory=list)


class Vibe(DocumentModel):
    """A single mood post in the global feed."""

    user_id: str
    username: str
    mood: str
    emoji: str = ""
    text: str = Field(max_length=MAX_VIBE_TEXT)
    city: str = ""
    timestamp: Instant | None = None
    likes: int = Field(default=0, ge=0)
    liked_by: IdSet = Field(default_factory=list)

    def is_liked_by(self, user_id: str) -> bool:
        return user_id in self.liked_by


class NotificationType(str, Enum):
    LIKE = "like"
    FRIEND_REQUEST = "friend_request"
    FRIEND_ACCEPT = "friend_accept"
    COMMUNITY_INVITE = "community_invite"
    JOIN_REQUEST = "join_request"
    JOIN_ACCEPT = "join_accept"
    COMMUNITY_REMOVE = "community_remove"


class Notification(DocumentModel):
    """Directed event record; ``target_id`` is a vibe or community id."""

    type: NotificationType
    sender_id: str
    receiver_id: str
    target_id: str | None = None
    read: bool = False
    created_at: Instant | None = None


class Community(DocumentModel):
    """A mood circle with member and admin roles.

    The owner (``created_by``) is always a member and is treated as an admin
    whether or not it appears in ``admins``.  Pending ``join_requests`` never
    overlap ``members``; both rules are re-established on validation.
    """

    name: str
    description: str = ""
    banner_url: str | None = None
    created_by: str
    members: IdSet = Field(default_factory=list)
    admins: IdSet = Field(default_factory=list)
    join_requests: IdSet = Field(default_factory=list)
    created_at: Instant | None = None
    last_post_at: Instant | None = None

    @model_validator(mode="after")
    def _owner_is_member(self) -> Community:
        if self.created_by not in self.members:
            self.members.insert(0, self.created_by)
        self.join_requests = [u for u in self.join_requests if u not in self.members]
        return self

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def is_admin(self, user_id: str) -> bool:
        return user_id == self.created_by or user_id in self.admins

    def is_owner(self, user_id: str) -> bool:
        return user_id == self.created_by


class CommunityPost(DocumentModel):
    """A message inside a community feed."""

    community_id: str
    user_id: str
    username: str
    user_avatar: str | None = None
    text: str
    timestamp: Instant | None = None
    likes: int = Field(default=0, ge=0)
    liked_by: IdSet = Field(default_factory=list)
