from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from ..core.models import Community, Notification, User, Vibe


class SessionStatus(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class AppState:
    """Immutable snapshot of everything the UI reads from the store."""

    status: SessionStatus = SessionStatus.LOADING
    user: Optional[User] = None
    vibes: Tuple[Vibe, ...] = ()              # newest first
    notifications: Tuple[Notification, ...] = ()  # newest first, capped
    communities: Tuple[Community, ...] = ()   # newest first by creation
    auth_error: Optional[str] = None
    has_posted_today: bool = False
    theme: str = "light"                      # "light" | "dark"

    @property
    def is_loading(self) -> bool:
        return self.status is SessionStatus.LOADING

    @property
    def is_authenticated(self) -> bool:
        return self.status is SessionStatus.AUTHENTICATED and self.user is not None

    def evolve(self, **changes) -> AppState:
        return replace(self, **changes)

    def find_vibe(self, vibe_id: str) -> Optional[Vibe]:
        return next((v for v in self.vibes if v.id == vibe_id), None)

    def find_community(self, community_id: str) -> Optional[Community]:
        return next((c for c in self.communities if c.id == community_id), None)

    def vibes_by(self, user_id: str) -> Tuple[Vibe, ...]:
        return tuple(v for v in self.vibes if v.user_id == user_id)
