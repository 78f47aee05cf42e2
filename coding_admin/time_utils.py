"""Utilities for working with timestamps in UTC."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Union

DateLike = Union[date, datetime, str]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware ``datetime`` in UTC."""

    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Normalise ``dt`` to a timezone-aware UTC ``datetime``."""

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_z(dt: datetime) -> str:
    """Render ``dt`` as ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""

    dt_utc = ensure_utc(dt)
    text = dt_utc.strftime("%Y-%m-%dT%H:%M:%S")
    return f"{text}.{dt_utc.microsecond // 1000:03d}Z"


def to_utc_datetime(value: DateLike) -> datetime:
    """Coerce a date, datetime or ISO string to a UTC ``datetime``.

    Bare dates resolve to midnight UTC, matching how browsers parse
    ``YYYY-MM-DD`` strings.
    """

    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if not text:
        raise ValueError("empty date value")
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    if len(text) == 10:
        return datetime.combine(date.fromisoformat(text), time.min, tzinfo=timezone.utc)
    return ensure_utc(datetime.fromisoformat(text))


__all__ = ["utc_now", "ensure_utc", "isoformat_z", "to_utc_datetime"]
