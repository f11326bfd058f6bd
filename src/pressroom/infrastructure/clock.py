"""Time normalization and record id helpers."""

from __future__ import annotations

import random
import string
import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pressroom.infrastructure.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Fixed-width UTC ISO string. Lexical order of these strings is chronological."""
    if dt.tzinfo is None:
        raise ValueError("naive datetime cannot be stored; localize it first")
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(utcnow())


def from_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def get_zone(tz: str) -> ZoneInfo:
    """Resolve an IANA zone name, raising ValidationError for unknown names."""
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {tz}", {"timezone": tz})


def localize(value: datetime | str, tz: str) -> datetime:
    """Interpret ``value`` in the author's zone and return the UTC instant.

    Naive values are wall-clock time in ``tz``; aware values keep their offset.
    """
    zone = get_zone(tz)
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise ValidationError(f"Invalid timestamp: {value}", {"value": value})
    if value.tzinfo is None:
        value = value.replace(tzinfo=zone)
    return value.astimezone(timezone.utc)


def make_id(prefix: str) -> str:
    rand = "".join(random.choices(string.ascii_lowercase + string.digits, k=8))
    return f"{prefix}-{int(time.time())}-{rand}"
