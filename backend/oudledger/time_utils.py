# Overview: UTC helpers; every datetime stored or compared by the app is UTC-naive.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a UTC-naive datetime (the form stored in every column)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_datetime(dt: Optional[datetime]) -> Optional[datetime]:
    """Aware -> UTC-naive; naive values are taken to be UTC already."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    ISO-8601 text -> UTC-naive datetime.

    Blank or None gives None. A trailing "Z" and "+HH:MM" offsets are
    honored; text without an offset is read as UTC. Malformed text raises
    ValueError for the caller to turn into its own error.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"
    return normalize_datetime(datetime.fromisoformat(text))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Whole-second ISO-8601 string ending in "Z" (naive input is UTC)."""
    if dt is None:
        return None
    stamp = normalize_datetime(dt).replace(microsecond=0)
    return stamp.isoformat() + "Z"


def add_years(dt: datetime, years: int) -> datetime:
    """Same calendar date `years` later; Feb 29 falls back to Feb 28."""
    try:
        return dt.replace(year=dt.year + years)
    except ValueError:
        return dt.replace(year=dt.year + years, day=28)
