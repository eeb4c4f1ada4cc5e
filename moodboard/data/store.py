"""Observable application state mirrored from the document store."""

from __future__ import annotations

import asyncio
import datetime
import logging
import random
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from ..adapters.base import (
    SERVER_TIMESTAMP,
    ArrayRemove,
    ArrayUnion,
    DocumentStore,
    IdentityProvider,
    SessionUser,
    Unsubscribe,
)
from ..core.badges import AD_BADGES, FOUNDING_BADGE, compute_earned_badges, merge_badges
from ..core.errors import (
    AuthError,
    MoodboardError,
    NotFoundError,
    PermissionDenied,
    RemoteError,
)
from ..core.models import (
    Community,
    CommunityPost,
    Notification,
    NotificationType,
    User,
    Vibe,
)
from ..core.moods import (
    placeholder_username,
    random_username,
    resolve_city,
    resolve_mood,
    validate_vibe_text,
)
from ..core.streak import compute_streak, has_posted_today
from ..core.timestamps import to_instant
from ..core.transitions import (
    FriendAction,
    InvalidTransition,
    MembershipAction,
    apply_friend_action,
    apply_membership_action,
    check_membership_action,
    friend_writes,
    membership_writes,
)
from .models import AppState, SessionStatus

log = logging.getLogger(__name__)

T = TypeVar("T")
Listener = Callable[[AppState], None]
Restore = Callable[[], None]

FRIEND_FIELDS = ("friends", "friend_requests", "sent_friend_requests")
THEMES = ("light", "dark")


def _local_now() -> datetime.datetime:
    return datetime.datetime.now().astimezone()


def _parse(model: type[T], docs: Iterable[dict[str, Any]]) -> list[T]:
    """Validate documents into ``model`` instances, skipping malformed ones."""
    items = []
    for doc in docs:
        try:
            items.append(model.model_validate(doc))
        except ValidationError as exc:
            log.warning("Skipping malformed %s %s: %s", model.__name__, doc.get("id"), exc)
    return items


class AppStateStore:
    """Single holder of the signed-in user, feed, notifications and communities.

    Every user intent is a coroutine on this class.  Operations come in two
    flavours:

    * **optimistic** (likes, friend requests, community membership): the
      local state changes immediately through :meth:`run_optimistic` and is
      restored if the remote write fails;
    * **confirm-then-apply** (posting, profile edits, creation/deletion):
      local state only changes once the remote write succeeded.

    Either way, failures of the primary write are re-raised to the caller.
    """

    def __init__(
        self,
        documents: DocumentStore,
        identity: IdentityProvider,
        notification_limit: int = 50,
        clock: Callable[[], datetime.datetime] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.documents = documents
        self.identity = identity
        self.notification_limit = notification_limit
        self.clock = clock or _local_now
        self.rng = rng or random.Random()
        self._state = AppState()
        self._listeners: list[Listener] = []
        self._session_unsubscribe: Unsubscribe | None = None
        self._started = False
        self._vibes_unsubscribe: Unsubscribe | None = None
        # vibe id -> (lock, number of toggles holding or waiting on it)
        self._like_locks: dict[str, tuple[asyncio.Lock, int]] = {}
        self._signup_username: str | None = None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------
    @property
    def state(self) -> AppState:
        return self._state

    @property
    def user(self) -> User | None:
        return self._state.user

    @property
    def vibes(self) -> tuple[Vibe, ...]:
        return self._state.vibes

    @property
    def notifications(self) -> tuple[Notification, ...]:
        return self._state.notifications

    @property
    def communities(self) -> tuple[Community, ...]:
        return self._state.communities

    @property
    def is_loading(self) -> bool:
        return self._state.is_loading

    @property
    def auth_error(self) -> str | None:
        return self._state.auth_error

    def subscribe(self, listener: Listener) -> Unsubscribe:
        """Call ``listener`` with every new snapshot until unsubscribed."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, **changes: Any) -> None:
        self._state = self._state.evolve(**changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                log.exception("State listener failed")

    def _patch_user(self, **fields: Any) -> None:
        if self._state.user is not None:
            self._set(user=self._state.user.model_copy(update=fields))

    def _patch_if_current(self, user_id: str, **fields: Any) -> bool:
        """Patch the signed-in user only if it is still ``user_id``."""
        current = self._state.user
        if current is None or current.id != user_id:
            return False
        self._patch_user(**fields)
        return True

    def _add_badges(self, user_id: str, badge_ids: Iterable[str]) -> None:
        # union into the current list; badges granted meanwhile are kept
        current = self._state.user
        if current is None or current.id != user_id:
            return
        missing = [b for b in badge_ids if b not in current.badges]
        if missing:
            self._patch_user(badges=[*current.badges, *missing])

    def _replace_vibe(self, vibe: Vibe) -> None:
        self._set(vibes=tuple(vibe if v.id == vibe.id else v for v in self._state.vibes))

    def _replace_community(self, community: Community) -> None:
        self._set(
            communities=tuple(
                community if c.id == community.id else c for c in self._state.communities
            )
        )

    def _require_user(self) -> User:
        user = self._state.user
        if user is None:
            raise PermissionDenied("You need to be signed in.")
        return user

    # ------------------------------------------------------------------
    # Remote call discipline
    # ------------------------------------------------------------------
    async def _remote(self, what: str, call: Awaitable[T]) -> T:
        """Await ``call``, converting unknown failures into :class:`RemoteError`."""
        try:
            return await call
        except MoodboardError:
            log.warning("%s failed", what, exc_info=True)
            raise
        except Exception as exc:
            log.exception("%s failed", what)
            raise RemoteError(f"{what} failed: {exc}") from exc

    async def run_optimistic(
        self,
        capture: Callable[[], Restore],
        apply: Callable[[], None],
        remote: Callable[[], Awaitable[T]],
        what: str = "update",
    ) -> T:
        """Apply a local change before its remote write, undoing it on failure.

        ``capture`` snapshots the slice about to change and returns the
        callback that puts it back.  ``apply`` mutates local state
        synchronously.  If ``remote()`` raises, the slice is restored and
        the error propagates.
        """
        restore = capture()
        apply()
        try:
            return await self._remote(what, remote())
        except Exception:
            log.info("Rolling back optimistic %s", what)
            restore()
            raise

    def _capture_vibe(self, vibe_id: str) -> Restore:
        before = self._state.find_vibe(vibe_id)

        def restore() -> None:
            if before is not None:
                self._replace_vibe(before)

        return restore

    def _capture_user_fields(self, *fields: str) -> Restore:
        before = self._state.user
        saved = {f: getattr(before, f) for f in fields} if before else {}

        def restore() -> None:
            current = self._state.user
            if current is not None and before is not None and current.id == before.id:
                self._patch_user(**saved)

        return restore

    def _capture_community(self, community_id: str, with_circles: bool) -> Restore:
        before = self._state.find_community(community_id)
        restore_user = self._capture_user_fields("joined_circles") if with_circles else None

        def restore() -> None:
            if before is not None:
                self._replace_community(before)
            if restore_user is not None:
                restore_user()

        return restore

    async def _create_notification(
        self,
        kind: NotificationType,
        sender_id: str,
        receiver_id: str,
        target_id: str | None = None,
    ) -> str:
        doc: dict[str, Any] = {
            "type": kind.value,
            "senderId": sender_id,
            "receiverId": receiver_id,
            "read": False,
            "createdAt": SERVER_TIMESTAMP,
        }
        if target_id is not None:
            doc["targetId"] = target_id
        return await self.documents.add("notifications", doc)

    async def _notify_quietly(
        self,
        kind: NotificationType,
        sender_id: str,
        receiver_id: str,
        target_id: str | None = None,
    ) -> None:
        """Best-effort notification; failures are logged and dropped."""
        try:
            await self._create_notification(kind, sender_id, receiver_id, target_id)
        except Exception:
            log.warning(
                "Could not deliver %s notification to %s", kind.value, receiver_id,
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Subscribe to the identity provider's session stream (once)."""
        if self._started:
            return
        self._started = True
        self._session_unsubscribe = await self.identity.observe_session(self._on_session)

    async def _on_session(self, session: SessionUser | None) -> None:
        if session is None:
            self._set(status=SessionStatus.UNAUTHENTICATED, user=None, has_posted_today=False)
            return
        try:
            user = await self._resolve_profile(session.uid)
        except Exception as exc:
            log.exception("Error fetching/creating profile for %s", session.uid)
            self._set(
                status=SessionStatus.UNAUTHENTICATED,
                user=None,
                auth_error=f"Database Error: {exc}",
            )
            return
        self._authenticate(user)

    def _authenticate(self, user: User) -> None:
        self._set(
            status=SessionStatus.AUTHENTICATED,
            user=user,
            auth_error=None,
            has_posted_today=has_posted_today(user.last_posted_date, self.clock()),
        )

    def _new_profile(self, uid: str, username: str) -> User:
        return User(
            id=uid,
            username=username,
            streak=0,
            badges=[FOUNDING_BADGE],
            joined_circles=[],
            mood_score=0,
            created_at=self.clock(),
        )

    async def _resolve_profile(self, uid: str) -> User:
        doc = await self.documents.get("users", uid)
        if doc is None:
            log.warning("Account %s has no profile; creating a default one", uid)
            username = self._signup_username or placeholder_username(self.rng)
            user = self._new_profile(uid, username)
            await self.documents.set("users", uid, user.to_document(exclude_none=True))
            return user

        user = User.model_validate(doc)
        if FOUNDING_BADGE not in user.badges:
            await self.documents.update("users", uid, {"badges": ArrayUnion(FOUNDING_BADGE)})
            user = user.model_copy(update={"badges": [*user.badges, FOUNDING_BADGE]})
        if not user.mood_score:
            count = len(await self.documents.query("vibes", where=[("userId", uid)]))
            if count > 0:
                log.info("Backfilling moodScore of %s to %d", uid, count)
                await self.documents.update("users", uid, {"moodScore": count})
                user = user.model_copy(update={"mood_score": count})
        return user

    async def sign_up(self, email: str, password: str, username: str) -> User:
        """Create an account and its profile, then sign it in."""
        self._set(auth_error=None)
        self._signup_username = username
        try:
            session = await self.identity.create_account(email, password)
            current = self._state.user
            if current is None or current.id != session.uid:
                # nobody observed the session, so create the profile here
                user = self._new_profile(session.uid, username)
                await self._remote(
                    "Create profile",
                    self.documents.set("users", session.uid, user.to_document(exclude_none=True)),
                )
                self._authenticate(user)
            return self._state.user
        except AuthError as exc:
            self._set(auth_error=exc.message)
            raise
        except Exception as exc:
            log.exception("Signup error")
            self._set(auth_error=str(exc) or "Signup failed")
            raise
        finally:
            self._signup_username = None

    async def login(self, email: str, password: str) -> None:
        """Sign in; the session stream resolves the profile."""
        self._set(auth_error=None)
        log.info("Attempting login for %s", email)
        try:
            await self.identity.sign_in(email, password)
        except AuthError as exc:
            log.warning("Login failed: %s", exc.code)
            self._set(auth_error=exc.message)
            raise

    async def logout(self) -> None:
        await self._remote("Logout", self.identity.sign_out())
        self._set(
            status=SessionStatus.UNAUTHENTICATED,
            user=None,
            auth_error=None,
            has_posted_today=False,
            notifications=(),
        )

    async def delete_account(self) -> None:
        """Delete the signed-in account and everything it owns.

        Order: vibes, owned communities, community posts, profile, identity
        account.  A failure at any step propagates and leaves local state
        untouched.
        """
        user = self._state.user
        if user is None:
            return
        uid = user.id
        await self._remote("Delete vibes", self.documents.delete_where("vibes", "userId", uid))
        await self._remote(
            "Delete communities", self.documents.delete_where("communities", "createdBy", uid)
        )
        await self._remote(
            "Delete community posts",
            self.documents.delete_where("community_posts", "userId", uid),
        )
        await self._remote("Delete profile", self.documents.delete("users", uid))
        await self._remote("Delete account", self.identity.delete_current_account())
        self._set(
            status=SessionStatus.UNAUTHENTICATED,
            user=None,
            auth_error=None,
            has_posted_today=False,
            notifications=(),
            vibes=tuple(v for v in self._state.vibes if v.user_id != uid),
            communities=tuple(c for c in self._state.communities if c.created_by != uid),
        )

    def clear_auth_error(self) -> None:
        self._set(auth_error=None)

    def set_theme(self, theme: str) -> None:
        if theme not in THEMES:
            raise ValueError(f"Unknown theme {theme!r}")
        self._set(theme=theme)

    async def close(self) -> None:
        """Tear down live subscriptions at process shutdown."""
        if self._vibes_unsubscribe is not None:
            self._vibes_unsubscribe()
            self._vibes_unsubscribe = None
        if self._session_unsubscribe is not None:
            self._session_unsubscribe()
            self._session_unsubscribe = None
        self._started = False

    # ------------------------------------------------------------------
    # Profile edits
    # ------------------------------------------------------------------
    async def username_available(self, username: str) -> bool:
        matches = await self._remote(
            "Check username", self.documents.query("users", where=[("username", username)])
        )
        me = self._state.user
        return all(me is not None and doc["id"] == me.id for doc in matches)

    async def update_username(self, username: str) -> None:
        user = self._state.user
        if user is None:
            return
        username = username.strip()
        if not username:
            raise ValueError("Username cannot be empty")
        if not await self.username_available(username):
            raise InvalidTransition("That username is already taken.")
        await self._remote(
            "Update username", self.documents.update("users", user.id, {"username": username})
        )
        self._patch_if_current(user.id, username=username)

    async def regenerate_username(self) -> str:
        name = random_username(self.rng)
        await self.update_username(name)
        return name

    async def update_profile_image(self, data_uri: str) -> None:
        """Store an inline ``data:image/...`` URI as the user's avatar."""
        user = self._state.user
        if user is None:
            return
        if not data_uri or not data_uri.startswith("data:image"):
            raise ValueError("Invalid image data")
        await self._remote(
            "Update profile image",
            self.documents.update("users", user.id, {"avatarUrl": data_uri}),
        )
        self._patch_if_current(user.id, avatar_url=data_uri)

    # ------------------------------------------------------------------
    # Vibes
    # ------------------------------------------------------------------
    async def post_mood(
        self, mood: str, text: str, city: str | None, emoji: str | None = None
    ) -> str | None:
        """Post today's vibe and advance the streak.

        The vibe is created first, then ``streak``, ``lastPostedDate`` and
        ``moodScore`` are written to the profile; the local user changes
        only after both writes succeed.  Returns the new vibe id.
        """
        user = self._state.user
        if user is None:
            return None
        label, chosen = resolve_mood(mood, emoji)
        validate_vibe_text(text)
        vibe_id = await self._remote(
            "Create post",
            self.documents.add(
                "vibes",
                {
                    "userId": user.id,
                    "username": user.username,
                    "mood": label,
                    "emoji": chosen,
                    "text": text,
                    "city": resolve_city(city),
                    "timestamp": SERVER_TIMESTAMP,
                    "likes": 0,
                    "likedBy": [],
                },
            ),
        )

        now = self.clock()
        streak = compute_streak(user.streak, user.last_posted_date, now)
        score = (user.mood_score or 0) + 1
        await self._remote(
            "Update streak",
            self.documents.update(
                "users", user.id, {"streak": streak, "lastPostedDate": now, "moodScore": score}
            ),
        )
        if self._patch_if_current(
            user.id, streak=streak, last_posted_date=to_instant(now), mood_score=score
        ):
            self._set(has_posted_today=True)
            await self._refresh_badges_quietly()
        return vibe_id

    def subscribe_to_vibes(self) -> Unsubscribe:
        """Open the live feed, replacing any previous feed subscription."""
        if self._vibes_unsubscribe is not None:
            self._vibes_unsubscribe()
        handle = self.documents.subscribe(
            "vibes", self._on_vibes, order_by="timestamp", descending=True
        )
        self._vibes_unsubscribe = handle

        def unsubscribe() -> None:
            handle()
            if self._vibes_unsubscribe is handle:
                self._vibes_unsubscribe = None

        return unsubscribe

    def _on_vibes(self, docs: list[dict[str, Any]]) -> None:
        self._set(vibes=tuple(_parse(Vibe, docs)))

    async def fetch_user_vibes(self, user_id: str) -> list[Vibe]:
        docs = await self._remote(
            "Fetch user vibes",
            self.documents.query(
                "vibes", where=[("userId", user_id)], order_by="timestamp", descending=True
            ),
        )
        return _parse(Vibe, docs)

    async def delete_vibe(self, vibe_id: str) -> None:
        user = self._require_user()
        vibe = self._state.find_vibe(vibe_id)
        if vibe is not None and vibe.user_id != user.id:
            raise PermissionDenied("You can only delete your own vibes.")
        await self._remote("Delete vibe", self.documents.delete("vibes", vibe_id))
        self._set(vibes=tuple(v for v in self._state.vibes if v.id != vibe_id))

    async def update_vibe(self, vibe_id: str, text: str) -> None:
        """Edit the text of a vibe; no other field can change."""
        user = self._require_user()
        validate_vibe_text(text)
        vibe = self._state.find_vibe(vibe_id)
        if vibe is not None and vibe.user_id != user.id:
            raise PermissionDenied("You can only edit your own vibes.")
        await self._remote("Update vibe", self.documents.update("vibes", vibe_id, {"text": text}))
        current = self._state.find_vibe(vibe_id)
        if current is not None:
            self._replace_vibe(current.model_copy(update={"text": text}))

    async def toggle_like(self, vibe_id: str) -> None:
        """Like or unlike a vibe in the local feed.

        Calls on the same vibe are serialised so each one is exactly one
        full toggle.  The remote side is a transaction that keeps ``likes``
        equal to the size of ``likedBy``.
        """
        user = self._state.user
        if user is None:
            return
        lock, users = self._like_locks.get(vibe_id, (asyncio.Lock(), 0))
        self._like_locks[vibe_id] = (lock, users + 1)
        try:
            async with lock:
                vibe = self._state.find_vibe(vibe_id)
                if vibe is None:
                    return
                liking = not vibe.is_liked_by(user.id)
                await self._toggle_like(vibe, user.id, liking)
        finally:
            lock, users = self._like_locks[vibe_id]
            if users > 1:
                self._like_locks[vibe_id] = (lock, users - 1)
            else:
                del self._like_locks[vibe_id]
        if liking and vibe.user_id != user.id:
            await self._notify_quietly(NotificationType.LIKE, user.id, vibe.user_id, vibe_id)

    async def _toggle_like(self, vibe: Vibe, user_id: str, liking: bool) -> None:
        liked_by = (
            [*vibe.liked_by, user_id] if liking
            else [u for u in vibe.liked_by if u != user_id]
        )
        toggled = vibe.model_copy(update={"liked_by": liked_by, "likes": len(liked_by)})
        await self.run_optimistic(
            lambda: self._capture_vibe(vibe.id),
            lambda: self._replace_vibe(toggled),
            lambda: self.documents.run_transaction(
                "vibes", vibe.id, lambda data: _like_updates(data, user_id, liking)
            ),
            what="like toggle",
        )

    # ------------------------------------------------------------------
    # Badges
    # ------------------------------------------------------------------
    async def refresh_badges(self, posts: Iterable[Vibe] | None = None) -> list[str]:
        """Grant every badge the user now qualifies for.

        Returns the newly granted ids; nothing is written when the stored
        set already covers everything earned.
        """
        user = self._state.user
        if user is None:
            return []
        if posts is None:
            posts = await self.fetch_user_vibes(user.id)
        merged = merge_badges(user.badges, compute_earned_badges(user, posts))
        if merged is None:
            return []
        granted = merged[len(user.badges):]
        await self._remote(
            "Award badges",
            self.documents.update("users", user.id, {"badges": ArrayUnion(*granted)}),
        )
        log.info("Awarded badges %s to %s", granted, user.id)
        self._add_badges(user.id, granted)
        return granted

    async def _refresh_badges_quietly(self) -> None:
        """Re-derive badges after a change; failures never undo that change."""
        try:
            await self.refresh_badges()
        except Exception:
            log.warning("Badge refresh failed", exc_info=True)

    async def unlock_ad_badge(self, badge_id: str) -> bool:
        """Unlock an ad-gated badge after the user watched an ad."""
        user = self._require_user()
        if badge_id not in AD_BADGES:
            raise ValueError(f"{badge_id!r} is not an ad badge")
        if badge_id in user.badges:
            return False
        await self._remote(
            "Unlock badge",
            self.documents.update("users", user.id, {"badges": ArrayUnion(badge_id)}),
        )
        self._add_badges(user.id, [badge_id])
        return True

    # ------------------------------------------------------------------
    # Friends
    # ------------------------------------------------------------------
    async def _friend_action(
        self,
        action: FriendAction,
        other_id: str,
        notify: NotificationType | None = None,
    ) -> None:
        user = self._state.user
        if user is None:
            return
        updated = apply_friend_action(user, action, other_id)

        async def remote() -> None:
            for collection, doc_id, updates in friend_writes(action, user.id, other_id):
                await self.documents.update(collection, doc_id, updates)

        await self.run_optimistic(
            lambda: self._capture_user_fields(*FRIEND_FIELDS),
            lambda: self._patch_user(**{f: getattr(updated, f) for f in FRIEND_FIELDS}),
            remote,
            what=f"friend {action.value}",
        )
        if notify is not None:
            await self._notify_quietly(notify, user.id, other_id)

    async def send_friend_request(self, target_user_id: str) -> None:
        await self._friend_action(
            FriendAction.SEND, target_user_id, NotificationType.FRIEND_REQUEST
        )

    async def accept_friend_request(self, target_user_id: str) -> None:
        await self._friend_action(
            FriendAction.ACCEPT, target_user_id, NotificationType.FRIEND_ACCEPT
        )
        await self._refresh_badges_quietly()

    async def reject_friend_request(self, target_user_id: str) -> None:
        await self._friend_action(FriendAction.REJECT, target_user_id)

    async def cancel_friend_request(self, target_user_id: str) -> None:
        await self._friend_action(FriendAction.CANCEL, target_user_id)

    async def remove_friend(self, target_user_id: str) -> None:
        await self._friend_action(FriendAction.REMOVE, target_user_id)

    async def search_users(self, prefix: str) -> list[User]:
        """Users whose username starts with ``prefix``."""
        if not prefix:
            return []
        docs = await self._remote(
            "Search users",
            self.documents.query(
                "users", order_by="username", start_at=prefix, end_at=prefix + "\uf8ff"
            ),
        )
        return _parse(User, docs)

    async def get_users(self, user_ids: Iterable[str]) -> list[User]:
        ids = list(user_ids)
        if not ids:
            return []
        docs = await self._remote(
            "Fetch users",
            asyncio.gather(*(self.documents.get("users", uid) for uid in ids)),
        )
        return _parse(User, (d for d in docs if d is not None))

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    async def fetch_notifications(self) -> tuple[Notification, ...]:
        user = self._state.user
        if user is None:
            return ()
        docs = await self._remote(
            "Fetch notifications",
            self.documents.query(
                "notifications",
                where=[("receiverId", user.id)],
                order_by="createdAt",
                descending=True,
                limit=self.notification_limit,
            ),
        )
        self._set(notifications=tuple(_parse(Notification, docs)))
        return self._state.notifications

    async def mark_notification_read(self, notification_id: str) -> None:
        await self._remote(
            "Mark notification read",
            self.documents.update("notifications", notification_id, {"read": True}),
        )
        self._set(
            notifications=tuple(
                n.model_copy(update={"read": True}) if n.id == notification_id else n
                for n in self._state.notifications
            )
        )

    # ------------------------------------------------------------------
    # Communities
    # ------------------------------------------------------------------
    async def _community(self, community_id: str) -> Community:
        community = self._state.find_community(community_id)
        if community is not None:
            return community
        doc = await self._remote(
            "Fetch community", self.documents.get("communities", community_id)
        )
        if doc is None:
            raise NotFoundError("communities", community_id)
        community = Community.model_validate(doc)
        self._set(communities=_newest_first([*self._state.communities, community]))
        return community

    async def _membership(
        self, community_id: str, action: MembershipAction, user_id: str | None = None
    ) -> Community | None:
        """Run a membership transition optimistically.

        Returns the updated community, or ``None`` when signed out or when
        the transition left the local community unchanged (the idempotent
        remote writes are still sent).
        """
        actor = self._state.user
        if actor is None:
            return None
        subject = user_id or actor.id
        community = await self._community(community_id)
        check_membership_action(community, action, actor.id, subject)
        updated = apply_membership_action(community, action, subject)
        own_circles = subject == actor.id and action in (
            MembershipAction.JOIN,
            MembershipAction.LEAVE,
        )

        def apply() -> None:
            self._replace_community(updated)
            if own_circles:
                circles = list(self._state.user.joined_circles)
                if action is MembershipAction.JOIN:
                    circles = circles if community_id in circles else [*circles, community_id]
                else:
                    circles = [c for c in circles if c != community_id]
                self._patch_user(joined_circles=circles)

        async def remote() -> None:
            for collection, doc_id, updates in membership_writes(action, community_id, subject):
                await self.documents.update(collection, doc_id, updates)

        await self.run_optimistic(
            lambda: self._capture_community(community_id, own_circles),
            apply,
            remote,
            what=f"community {action.value}",
        )
        if _roster(updated) == _roster(community):
            return None
        return updated

    async def fetch_communities(self) -> tuple[Community, ...]:
        docs = await self._remote(
            "Fetch communities",
            self.documents.query("communities", order_by="createdAt", descending=True),
        )
        self._set(communities=tuple(_parse(Community, docs)))
        return self._state.communities

    async def get_community(self, community_id: str) -> Community | None:
        try:
            return await self._community(community_id)
        except NotFoundError:
            return None

    async def create_community(
        self, name: str, description: str, banner_url: str | None = None
    ) -> Community | None:
        user = self._state.user
        if user is None:
            return None
        name = name.strip()
        if not name:
            raise ValueError("Community name cannot be empty")
        data = {
            "name": name,
            "description": description,
            "createdBy": user.id,
            "members": [user.id],
            "admins": [user.id],
            "joinRequests": [],
            "createdAt": SERVER_TIMESTAMP,
            "bannerUrl": banner_url or "",
        }
        community_id = await self._remote("Create community", self.documents.add("communities", data))
        await self._remote(
            "Join created community",
            self.documents.update("users", user.id, {"joinedCircles": ArrayUnion(community_id)}),
        )
        community = Community(
            id=community_id,
            name=name,
            description=description,
            banner_url=banner_url or "",
            created_by=user.id,
            members=[user.id],
            admins=[user.id],
            created_at=self.clock(),
        )
        self._set(communities=(community, *self._state.communities))
        if community_id not in self._state.user.joined_circles:
            self._patch_user(joined_circles=[*self._state.user.joined_circles, community_id])
        await self._refresh_badges_quietly()
        return community

    async def update_community(
        self,
        community_id: str,
        name: str | None = None,
        description: str | None = None,
        banner_url: str | None = None,
    ) -> None:
        user = self._require_user()
        community = await self._community(community_id)
        if not community.is_admin(user.id):
            raise PermissionDenied("Only community admins can edit it.")
        changes = {
            key: value
            for key, value in (("name", name), ("description", description), ("banner_url", banner_url))
            if value is not None
        }
        if not changes:
            return
        updates = {to_camel(k): v for k, v in changes.items()}
        await self._remote(
            "Update community", self.documents.update("communities", community_id, updates)
        )
        self._replace_community((await self._community(community_id)).model_copy(update=changes))

    async def delete_community(self, community_id: str) -> None:
        user = self._require_user()
        community = await self._community(community_id)
        if not community.is_owner(user.id):
            raise PermissionDenied("Only the creator can delete a community.")
        await self._remote(
            "Delete community", self.documents.delete("communities", community_id)
        )
        self._set(communities=tuple(c for c in self._state.communities if c.id != community_id))
        if community_id in self._state.user.joined_circles:
            self._patch_user(
                joined_circles=[c for c in self._state.user.joined_circles if c != community_id]
            )

    async def join_community(self, community_id: str) -> None:
        await self._membership(community_id, MembershipAction.JOIN)
        await self._refresh_badges_quietly()

    async def leave_community(self, community_id: str) -> None:
        await self._membership(community_id, MembershipAction.LEAVE)

    async def request_to_join(self, community_id: str) -> None:
        """Ask to join; every admin except the requester is notified."""
        community = await self._membership(community_id, MembershipAction.REQUEST)
        if community is None:
            return
        requester = self._state.user.id
        admins = dict.fromkeys([community.created_by, *community.admins])
        for admin_id in admins:
            if admin_id != requester:
                await self._notify_quietly(
                    NotificationType.JOIN_REQUEST, requester, admin_id, community_id
                )

    async def accept_join_request(self, community_id: str, user_id: str) -> None:
        if await self._membership(community_id, MembershipAction.ACCEPT, user_id) is not None:
            await self._notify_quietly(
                NotificationType.JOIN_ACCEPT, self._state.user.id, user_id, community_id
            )

    async def reject_join_request(self, community_id: str, user_id: str) -> None:
        await self._membership(community_id, MembershipAction.REJECT, user_id)

    async def promote_admin(self, community_id: str, user_id: str) -> None:
        await self._membership(community_id, MembershipAction.PROMOTE, user_id)

    async def demote_admin(self, community_id: str, user_id: str) -> None:
        await self._membership(community_id, MembershipAction.DEMOTE, user_id)

    async def remove_member(self, community_id: str, user_id: str) -> None:
        """Remove a member (and any admin role); they get a notification."""
        if await self._membership(community_id, MembershipAction.REMOVE, user_id) is not None:
            await self._notify_quietly(
                NotificationType.COMMUNITY_REMOVE, self._state.user.id, user_id, community_id
            )

    async def invite_to_community(self, community_id: str, user_id: str) -> str:
        user = self._require_user()
        community = await self._community(community_id)
        if not community.is_member(user.id):
            raise PermissionDenied("Only members can invite others.")
        if community.is_member(user_id):
            raise InvalidTransition("That user is already a member.")
        return await self._remote(
            "Send invite",
            self._create_notification(
                NotificationType.COMMUNITY_INVITE, user.id, user_id, community_id
            ),
        )

    async def accept_invite(self, notification_id: str, community_id: str) -> None:
        user = self._require_user()
        community = await self._community(community_id)
        if not community.is_member(user.id):
            await self.join_community(community_id)
        await self.mark_notification_read(notification_id)

    async def reject_invite(self, notification_id: str) -> None:
        await self.mark_notification_read(notification_id)

    async def get_community_members(self, community_id: str) -> list[User]:
        return await self.get_users((await self._community(community_id)).members)

    async def get_join_requests(self, community_id: str) -> list[User]:
        return await self.get_users((await self._community(community_id)).join_requests)

    async def create_community_post(self, community_id: str, text: str) -> CommunityPost:
        user = self._require_user()
        if not text or not text.strip():
            raise ValueError("Post cannot be empty")
        community = await self._community(community_id)
        if not community.is_member(user.id):
            raise PermissionDenied("Only members can post in this community.")
        data = {
            "communityId": community_id,
            "userId": user.id,
            "username": user.username,
            "userAvatar": user.avatar_url,
            "text": text,
            "timestamp": SERVER_TIMESTAMP,
            "likes": 0,
            "likedBy": [],
        }
        post_id = await self._remote("Create community post", self.documents.add("community_posts", data))
        await self._remote(
            "Touch community",
            self.documents.update("communities", community_id, {"lastPostAt": SERVER_TIMESTAMP}),
        )
        now = self.clock()
        current = self._state.find_community(community_id)
        if current is not None:
            self._replace_community(current.model_copy(update={"last_post_at": to_instant(now)}))
        return CommunityPost(
            id=post_id,
            community_id=community_id,
            user_id=user.id,
            username=user.username,
            user_avatar=user.avatar_url,
            text=text,
            timestamp=now,
        )

    async def fetch_community_posts(self, community_id: str) -> list[CommunityPost]:
        docs = await self._remote(
            "Fetch community posts",
            self.documents.query(
                "community_posts",
                where=[("communityId", community_id)],
                order_by="timestamp",
                descending=True,
            ),
        )
        return _parse(CommunityPost, docs)


def _like_updates(data: dict[str, Any], user_id: str, liking: bool) -> dict[str, Any]:
    """Transaction body for a like toggle, computed from the stored document."""
    liked_by = list(data.get("likedBy") or [])
    if liking and user_id not in liked_by:
        liked_by.append(user_id)
    elif not liking:
        liked_by = [u for u in liked_by if u != user_id]
    return {"likedBy": liked_by, "likes": len(liked_by)}


def _newest_first(communities: Iterable[Community]) -> tuple[Community, ...]:
    floor = datetime.datetime.min.replace(tzinfo=datetime.UTC)
    return tuple(sorted(communities, key=lambda c: c.created_at or floor, reverse=True))


def _roster(community: Community) -> tuple[list[str], list[str], list[str]]:
    return community.members, community.admins, community.join_requests
