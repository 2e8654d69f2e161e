# Overview: UTC helpers. Timestamps are stored UTC-naive and serialized with a trailing "Z".

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str], *, end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse a report/filter bound into a UTC-naive datetime.

    Accepts "YYYY-MM-DD", naive "YYYY-MM-DDTHH:MM[:SS]" (taken as UTC) and
    offset-aware forms including a trailing "Z". A bare date is the start of
    that day, or its last microsecond when end_of_day is set, so an inclusive
    "end=2026-10-18" covers the whole day.

    Raises ValueError for anything else; None or blank returns None.
    """
    if value is None or not value.strip():
        return None
    s = value.strip()

    if len(s) == 10:
        day = date.fromisoformat(s)
        if end_of_day:
            return datetime.combine(day + timedelta(days=1), time.min) - timedelta(microseconds=1)
        return datetime.combine(day, time.min)

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return _as_utc_naive(datetime.fromisoformat(s))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = _as_utc_naive(dt)
    return dt.replace(microsecond=0).isoformat() + "Z"
