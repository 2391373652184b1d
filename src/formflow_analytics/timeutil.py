"""Timestamp helpers.

Everything is stored in UTC. SQLite hands datetimes back without tzinfo, so
anything read from the database goes through ``as_utc`` before arithmetic.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def local_day_bounds(date_from: date, date_to: date, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    """Inclusive local calendar dates -> half-open UTC interval [start, end)."""
    start = datetime.combine(date_from, time.min).replace(tzinfo=tz)
    end = datetime.combine(date_to + timedelta(days=1), time.min).replace(tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def hours_between(start: datetime, end: datetime) -> float:
    return (as_utc(end) - as_utc(start)).total_seconds() / 3600
