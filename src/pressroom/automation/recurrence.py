"""Schedule kinds to cron, and next-occurrence evaluation in the schedule's timezone."""

from __future__ import annotations

import re
from datetime import datetime

from croniter import croniter

from pressroom.infrastructure.clock import from_iso, get_zone, to_iso, utcnow
from pressroom.infrastructure.errors import ValidationError

PRESETS: dict[str, str] = {
    "EVERY_5_MIN": "*/5 * * * *",
    "EVERY_10_MIN": "*/10 * * * *",
    "EVERY_30_MIN": "*/30 * * * *",
    "HOURLY": "0 * * * *",
    "EVERY_2_HOURS": "0 */2 * * *",
    "EVERY_6_HOURS": "0 */6 * * *",
    "EVERY_12_HOURS": "0 */12 * * *",
}
SCHEDULE_KINDS: tuple[str, ...] = ("ONE_SHOT", "DAILY", "WEEKLY", "CUSTOM", *PRESETS)

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_DAYS = {"sun": 0, "mon": 1, "tue": 2, "wed": 3, "thu": 4, "fri": 5, "sat": 6}


def _parse_time(value: str) -> tuple[int, int]:
    match = _TIME_RE.match(value.strip())
    if not match:
        raise ValidationError(f"Invalid time of day: {value}", {"recurrence": value})
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValidationError(f"Invalid time of day: {value}", {"recurrence": value})
    return hour, minute


def _parse_weekday(value: str) -> int:
    key = value.strip().lower()
    if key.isdigit() and 0 <= int(key) <= 6:
        return int(key)
    day = _DAYS.get(key[:3])
    if day is None:
        raise ValidationError(f"Invalid weekday: {value}", {"recurrence": value})
    return day


def _validate_cron(expr: str) -> str:
    expr = " ".join(expr.split())
    if len(expr.split(" ")) != 5 or not croniter.is_valid(expr):
        raise ValidationError(f"Invalid cron expression: {expr}", {"recurrence": expr})
    return expr


def normalize(kind: str, recurrence: str | None) -> str | None:
    """Turn a kind plus its user-facing recurrence into a stored cron expression.

    ONE_SHOT has no recurrence and returns None. Raises ValidationError for
    anything that would not produce a valid timer.
    """
    if kind not in SCHEDULE_KINDS:
        raise ValidationError(f"Unknown schedule kind: {kind}", {"kind": kind})
    value = (recurrence or "").strip()

    if kind == "ONE_SHOT":
        return None
    if kind in PRESETS:
        return PRESETS[kind]
    if kind == "CUSTOM":
        if not value:
            raise ValidationError("CUSTOM schedules require a cron expression")
        return _validate_cron(value)

    if kind == "DAILY":
        if not value:
            return "0 8 * * *"
        if _TIME_RE.match(value):
            hour, minute = _parse_time(value)
            return f"{minute} {hour} * * *"
        return _validate_cron(value)

    # WEEKLY: "<dow> HH:MM"
    if not value:
        return "0 8 * * 1"
    parts = value.split()
    if len(parts) == 2 and _TIME_RE.match(parts[1]):
        day = _parse_weekday(parts[0])
        hour, minute = _parse_time(parts[1])
        return f"{minute} {hour} * * {day}"
    return _validate_cron(value)


def compute_next_run(
    kind: str,
    recurrence: str | None,
    tz: str,
    due_at: str | None = None,
    after: datetime | None = None,
) -> str | None:
    """Next firing instant (UTC ISO) strictly after ``after``.

    Recurring kinds are evaluated on the wall clock of ``tz``, so a 09:00
    schedule stays at 09:00 local across daylight-saving changes. ONE_SHOT
    returns its fixed due time, or None once that has passed.
    """
    after = after or utcnow()
    if kind == "ONE_SHOT":
        if not due_at:
            return None
        return due_at if from_iso(due_at) > after else None

    if not recurrence:
        return None
    return to_iso(next_fire_time(kind, recurrence, tz, after))


def next_fire_time(kind: str, recurrence: str | None, tz: str, after: datetime | None = None) -> datetime:
    """Next occurrence of a recurring schedule as an aware datetime."""
    if kind == "ONE_SHOT" or not recurrence:
        raise ValueError(f"{kind} schedules have no recurrence")
    zone = get_zone(tz)
    cron = croniter(recurrence, (after or utcnow()).astimezone(zone))
    return cron.get_next(datetime)
