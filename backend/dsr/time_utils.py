from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def parse_business_date(value) -> date:
    """
    Normalize a report date to a calendar date.

    Accepts a date, or a "YYYY-MM-DD" string. Datetimes are rejected on
    purpose: callers holding a timestamp must go through business_date_of()
    so the timezone truncation is explicit.
    """
    if isinstance(value, datetime):
        raise ValueError("expected a calendar date, got a datetime")
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if not s:
            raise ValueError("date is required")
        return date.fromisoformat(s)
    raise ValueError("invalid date")


def business_date_of(value, tz_name: str) -> Optional[date]:
    """
    Bucket a timestamp into the business calendar day of tz_name.

    - None -> None
    - naive datetime -> treated as UTC (canonical storage format)
    - aware datetime -> converted
    - ISO string -> parsed with parse_iso_datetime first
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = parse_iso_datetime(value)
        if value is None:
            return None
    if not isinstance(value, datetime):
        raise ValueError("invalid timestamp")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(ZoneInfo(tz_name)).date()


def business_day_bounds(day: date, tz_name: str) -> tuple[datetime, datetime]:
    """
    UTC-naive [start, end) bounds of a business day, for indexed range queries.
    """
    tz = ZoneInfo(tz_name)
    start_local = datetime.combine(day, time.min, tzinfo=tz)
    end_local = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return (
        start_local.astimezone(timezone.utc).replace(tzinfo=None),
        end_local.astimezone(timezone.utc).replace(tzinfo=None),
    )


def business_now(tz_name: str, now: Optional[datetime] = None) -> datetime:
    """Current wall-clock time in the business timezone (aware)."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name))


def parse_cutoff_time(value: str) -> time:
    """Parse 'HH:MM' into a time."""
    hours, _, minutes = value.strip().partition(":")
    return time(int(hours), int(minutes or 0))
