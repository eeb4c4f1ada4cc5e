"""Mood vocabulary and input rules for posting."""

from __future__ import annotations

import random

from .models import MAX_VIBE_TEXT

MOODS: tuple[str, ...] = ("Happy", "Stressed", "Calm", "Overthinking", "Excited", "Lonely")

MOOD_EMOJIS: dict[str, str] = {
    "Happy": "😊",
    "Stressed": "😫",
    "Calm": "😌",
    "Overthinking": "🤔",
    "Excited": "🤩",
    "Lonely": "😔",
}

FALLBACK_EMOJI = "😐"
# City used when the device location is unavailable
FALLBACK_CITY = "India"

_ADJECTIVES = ("Happy", "Calm", "Bright", "Kind", "Gentle", "Peaceful", "Joyful", "Warm")
_NOUNS = ("Lotus", "River", "Mountain", "Star", "Moon", "Cloud", "Wind", "Light")


def resolve_mood(mood: str, emoji: str | None = None) -> tuple[str, str]:
    """Validate ``mood`` and return the ``(mood, emoji)`` pair to store.

    Named moods fall back to their vocabulary emoji.  Anything else is a
    custom mood: it must be a single word and needs an explicit emoji.  A
    custom label equal to a named mood is accepted as-is.
    """
    label = (mood or "").strip()
    chosen = (emoji or "").strip()
    if not label:
        raise ValueError("Please select a mood")
    if label in MOOD_EMOJIS:
        return label, chosen or MOOD_EMOJIS[label]
    if len(label.split()) > 1:
        raise ValueError("Mood name must be one word")
    if not chosen:
        raise ValueError("Please pick an emoji")
    return label, chosen


def validate_vibe_text(text: str) -> str:
    if not text or not text.strip():
        raise ValueError("Please write a vibe")
    if len(text) > MAX_VIBE_TEXT:
        raise ValueError(f"Vibes are limited to {MAX_VIBE_TEXT} characters")
    return text


def resolve_city(city: str | None) -> str:
    return (city or "").strip() or FALLBACK_CITY


def random_username(rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    return f"{rng.choice(_ADJECTIVES)}{rng.choice(_NOUNS)}{rng.randrange(100)}"


def placeholder_username(rng: random.Random | None = None) -> str:
    """Username given to profiles synthesised for accounts without one."""
    rng = rng or random.Random()
    return f"User{rng.randrange(10000)}"
