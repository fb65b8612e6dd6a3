# Overview: UTC clock, business-day derivation, and ISO-8601 conversion helpers.

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime uses this form."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_date(now: Optional[datetime] = None) -> date:
    """Register day for ``now`` (default: current time). Days roll over at UTC midnight."""
    return (now or utcnow()).date()


def _as_utc(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Query-string datetime to naive UTC.

    Blank input gives None. Offsets and a trailing "Z" are honored; a value
    without an offset is already UTC. Malformed input raises ValueError.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    return _as_utc(datetime.fromisoformat(text)).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """JSON form of a stored datetime: second precision, "Z" suffix."""
    if dt is None:
        return None
    return _as_utc(dt).replace(microsecond=0, tzinfo=None).isoformat() + "Z"
