"""UTC normalisation helpers.

Every instant is persisted as naive UTC. Aware values are converted, naive
values are taken to already be UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def as_aware_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_valid_timezone(name: str) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False
    return True


def to_local(value: datetime, tz_name: str) -> datetime:
    return as_aware_utc(value).astimezone(ZoneInfo(tz_name))


def duration_minutes(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)
