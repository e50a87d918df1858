# Overview: UTC time helpers; every stored timestamp is naive UTC.

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def expires_in(seconds: int, now: Optional[datetime] = None) -> datetime:
    """Absolute expiry for a hold lasting `seconds`."""
    return (now or utcnow()) + timedelta(seconds=seconds)


def hours_ago(hours: float, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) - timedelta(hours=hours)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    "2026-03-01T10:00", "...Z" and "...+05:30" all become naive UTC.

    Blank input yields None; a value without an offset is taken as UTC.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Whole-second ISO-8601 with a trailing Z, for JSON payloads."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
