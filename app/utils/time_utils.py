"""
Datetime helpers.

Documents store naive UTC datetimes (pymongo's default with tz_aware=False),
so everything here returns naive UTC values.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, truncated to the millisecond precision BSON stores"""
    now = datetime.now(timezone.utc)
    return now.replace(tzinfo=None, microsecond=now.microsecond // 1000 * 1000)


def from_epoch(seconds: Optional[int]) -> Optional[datetime]:
    """Convert Stripe epoch seconds to a naive UTC datetime"""
    if seconds is None:
        return None
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware or naive datetime to naive UTC"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def day_bounds(now: datetime, tz_name: str = "UTC") -> Tuple[datetime, datetime]:
    """
    Start and end (exclusive) of the calendar day containing `now` in the
    given time zone, both returned as naive UTC datetimes.

    Args:
        now: Naive UTC datetime
        tz_name: IANA time zone name that defines "today"
    """
    tz = ZoneInfo(tz_name)
    local_now = now.replace(tzinfo=timezone.utc).astimezone(tz)
    local_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    local_end = local_start + timedelta(days=1)
    return to_naive_utc(local_start), to_naive_utc(local_end)
