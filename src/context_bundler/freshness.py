"""Relative-time badge for source snapshots."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, ConfigDict

from context_bundler.config import FreshnessTier

JUST_NOW_LIMIT = timedelta(minutes=1)
MODERATE_LIMIT = timedelta(minutes=10)
STALE_LIMIT = timedelta(days=1)


class Freshness(BaseModel):
    """Informational age of a snapshot; never blocks an export."""

    model_config = ConfigDict(frozen=True)

    tier: FreshnessTier
    label: str
    timestamp: datetime


def _relative_label(age: timedelta) -> str:
    seconds = int(age.total_seconds())
    if seconds < 60:  # noqa: PLR2004
        return "just now"
    minutes = seconds // 60
    if minutes < 60:  # noqa: PLR2004
        return f"{minutes} min ago"
    hours = minutes // 60
    if hours < 24:  # noqa: PLR2004
        return f"{hours} h ago"
    return f"{hours // 24} d ago"


def freshness(timestamp: datetime | None, now: datetime | None = None) -> Freshness | None:
    """Bucket the age of a snapshot.

    Naive timestamps are taken as UTC; timestamps in the future count as
    "just now".

    Args:
        timestamp (datetime | None): upload time or branch head commit time
        now (datetime | None): reference time, defaults to the current time

    Returns:
        Freshness | None: the badge, or None when no timestamp is known
    """
    if timestamp is None:
        return None
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    age = max(now - timestamp, timedelta(0))
    if age < JUST_NOW_LIMIT:
        tier = FreshnessTier.JUST_NOW
    elif age < MODERATE_LIMIT:
        tier = FreshnessTier.MODERATE
    elif age < STALE_LIMIT:
        tier = FreshnessTier.STALE
    else:
        tier = FreshnessTier.OLD
    return Freshness(tier=tier, label=_relative_label(age), timestamp=timestamp)
