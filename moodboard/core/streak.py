"""Daily posting streak rules."""

from __future__ import annotations

import datetime


def local_day(instant: datetime.datetime, now: datetime.datetime) -> datetime.date:
    """Calendar day of ``instant`` in the timezone ``now`` is expressed in."""
    if now.tzinfo is None or instant.tzinfo is None:
        return instant.date()
    return instant.astimezone(now.tzinfo).date()


def compute_streak(
    previous: int,
    last_posted: datetime.datetime | None,
    now: datetime.datetime,
) -> int:
    """Return the streak after a post made at ``now``.

    * first post ever: 1
    * already posted today: unchanged
    * posted yesterday: previous + 1
    * anything older: reset to 1
    """
    if last_posted is None:
        return 1
    gap = (now.date() - local_day(last_posted, now)).days
    if gap <= 0:
        # a last post stamped in the future is treated as today
        return previous
    if gap == 1:
        return previous + 1
    return 1


def has_posted_today(last_posted: datetime.datetime | None, now: datetime.datetime) -> bool:
    if last_posted is None:
        return False
    return local_day(last_posted, now) == now.date()
