"""Timestamp normalisation at the storage boundary.

Backends hand back instants in several shapes: ``datetime`` objects (naive
or aware), epoch milliseconds, ISO-8601 strings, ``{"seconds", "nanoseconds"}``
mappings from JSON exports, or client library timestamp objects exposing
``to_datetime()``.  Everything entering the models goes through
:func:`to_instant` so the rest of the package only ever sees aware UTC
``datetime`` values.
"""

from __future__ import annotations

import datetime
from datetime import UTC
from typing import Any


def to_instant(value: Any) -> datetime.datetime | None:
    """Convert any supported timestamp representation to an aware UTC datetime.

    ``None`` passes through unchanged.  Numbers are interpreted as epoch
    milliseconds, which is how documents are stored locally.
    """
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    if isinstance(value, bool):
        raise ValueError("Boolean is not a timestamp.")
    if isinstance(value, (int, float)):
        return datetime.datetime.fromtimestamp(value / 1000, tz=UTC)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_instant(datetime.datetime.fromisoformat(text))
    if isinstance(value, dict) and "seconds" in value:
        seconds = int(value["seconds"])
        nanos = int(value.get("nanoseconds", value.get("nanos", 0)))
        return datetime.datetime.fromtimestamp(seconds + nanos / 1e9, tz=UTC)
    to_datetime = getattr(value, "to_datetime", None)
    if callable(to_datetime):
        return to_instant(to_datetime())
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def to_millis(value: datetime.datetime | None) -> int | None:
    """Inverse of :func:`to_instant` for the local document representation."""
    if value is None:
        return None
    return int(round(to_instant(value).timestamp() * 1000))


def now_millis() -> int:
    return to_millis(datetime.datetime.now(tz=UTC))
