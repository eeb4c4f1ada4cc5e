"""Badge catalogue and derivation rules.

:func:`compute_earned_badges` is a pure function of a user profile and that
user's own posts.  Badges only ever accumulate: :func:`merge_badges` unions
the freshly computed set into the stored list and reports whether anything
new was granted.  Ad badges are outside this rule and are only unlocked by an
explicit action on the store.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from .models import User, Vibe

FOUNDING_BADGE = "special_founding"

POST_MILESTONES: tuple[tuple[int, str], ...] = (
    (1, "milestone_first_post"),
    (3, "milestone_3_posts"),
    (10, "milestone_10_posts"),
)
STREAK_MILESTONES: tuple[tuple[int, str], ...] = (
    (7, "streak_7"),
    (30, "streak_30"),
    (100, "streak_100"),
)
FRIENDS_FOR_MITRA = 5
CIRCLES_FOR_SANGHA = 3
LIKES_FOR_DIL_SE = 50
CITIES_FOR_DESI = 3


@dataclass(frozen=True)
class Badge:
    id: str
    name: str
    emoji: str
    description: str
    criteria: str
    category: str  # streak | social | mood | special | ad


BADGES: tuple[Badge, ...] = (
    Badge("streak_7", "Rishi", "🧘", "Maintained a 7-day mood streak.",
          "Log your mood for 7 consecutive days.", "streak"),
    Badge("streak_30", "Tapasya", "🔥", "Maintained a 30-day mood streak.",
          "Log your mood for 30 consecutive days.", "streak"),
    Badge("streak_100", "Yogi", "🕉️", "Maintained a 100-day mood streak.",
          "Log your mood for 100 consecutive days.", "streak"),
    Badge("social_mitra", "Mitra", "🤝", "Added 5 friends.",
          "Connect with 5 friends.", "social"),
    Badge("social_sangha", "Sangha", "🏘️", "Joined 3 Mood Circles.",
          "Join 3 different Mood Circles.", "social"),
    Badge("social_dil_se", "Dil Se", "❤️", "Received 50 likes on vibes.",
          "Get a total of 50 likes on your posts.", "social"),
    Badge("milestone_first_post", "First Vibe", "🎉", "Posted your first mood!",
          "Share your first mood to unlock.", "special"),
    Badge("milestone_3_posts", "Vibe Starter", "✨", "Posted 3 moods.",
          "Share 3 moods to unlock.", "special"),
    Badge("milestone_10_posts", "Vibe Master", "🌟", "Posted 10 moods.",
          "Share 10 moods to unlock.", "special"),
    Badge("special_desi", "Desi Vibes", "🇮🇳", "Posted a vibe from 3 different Indian cities.",
          "Post from 3 different cities.", "special"),
    Badge(FOUNDING_BADGE, "Founding Member", "🚀", "Welcome to Bharat Moodboard!",
          "Awarded to all early members.", "special"),
    Badge("ad_supporter", "Supporter", "💎", "Supported the app by watching an ad.",
          "Watch an ad to unlock.", "ad"),
    Badge("ad_super_fan", "Super Fan", "🌟", "Watched 5 ads to support the community.",
          "Watch 5 ads to unlock.", "ad"),
)

BADGES_BY_ID: dict[str, Badge] = {b.id: b for b in BADGES}
AD_BADGES: frozenset[str] = frozenset(b.id for b in BADGES if b.category == "ad")


def compute_earned_badges(user: User, posts: Iterable[Vibe]) -> set[str]:
    """Return every auto-derived badge ``user`` qualifies for.

    ``posts`` are the user's own vibes; posts by other users are ignored so
    callers may pass an unfiltered feed.
    """
    own = [p for p in posts if p.user_id == user.id]
    earned = {FOUNDING_BADGE}

    for threshold, badge_id in POST_MILESTONES:
        if len(own) >= threshold:
            earned.add(badge_id)

    for threshold, badge_id in STREAK_MILESTONES:
        if user.streak >= threshold:
            earned.add(badge_id)

    if len(user.friends) >= FRIENDS_FOR_MITRA:
        earned.add("social_mitra")
    if len(user.joined_circles) >= CIRCLES_FOR_SANGHA:
        earned.add("social_sangha")
    if sum(p.likes for p in own) >= LIKES_FOR_DIL_SE:
        earned.add("social_dil_se")

    cities = {p.city for p in own if p.city}
    if len(cities) >= CITIES_FOR_DESI:
        earned.add("special_desi")

    return earned


def merge_badges(stored: list[str], earned: set[str]) -> list[str] | None:
    """Union ``earned`` into ``stored``.

    Returns the new badge list, or ``None`` when nothing new was earned.
    Stored order is preserved and new ids are appended in catalogue order.
    """
    missing = earned.difference(stored)
    if not missing:
        return None
    order = {b.id: i for i, b in enumerate(BADGES)}
    return list(stored) + sorted(missing, key=lambda b: (order.get(b, len(order)), b))
