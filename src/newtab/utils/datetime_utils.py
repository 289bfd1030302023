"""Datetime parsing and conversion helpers shared by providers and the session.

Instants are timezone-aware. "Local" means the interpreter's local zone, so a
naive value is interpreted the way a browser would interpret it.
"""

from __future__ import annotations

import datetime
from typing import Optional

END_OF_DAY = datetime.time(23, 59, 59)


def local_now() -> datetime.datetime:
    """Return the current instant in the local timezone."""

    return datetime.datetime.now().astimezone()


def to_local(value: datetime.datetime) -> datetime.datetime:
    """Attach the local zone to naive values and convert aware ones."""

    return value.astimezone()


def iso_millis(dt_value: datetime.datetime) -> str:
    """Render an instant as UTC ISO-8601 with millisecond precision.

    ``2025-12-25T10:00:00.000Z`` is the form Google and Todoist echo back.
    """
    utc_value = dt_value.astimezone(datetime.timezone.utc)
    return utc_value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_value.microsecond // 1000:03d}Z"


def to_epoch_ms(dt_value: datetime.datetime) -> int:
    """Return epoch milliseconds for an aware (or local naive) datetime."""

    return round(to_local(dt_value).timestamp() * 1000)


def from_epoch_ms(value: int | float) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(value / 1000).astimezone()


def end_of_day(date_value: datetime.date) -> datetime.datetime:
    """23:59:59 local time on ``date_value``."""

    return datetime.datetime.combine(date_value, END_OF_DAY).astimezone()


def today_bounds(
    now: Optional[datetime.datetime] = None,
) -> tuple[datetime.datetime, datetime.datetime]:
    """Local midnight and 23:59:59.999 local on the current day."""

    current = to_local(now) if now is not None else local_now()
    start = current.replace(hour=0, minute=0, second=0, microsecond=0)
    end = current.replace(hour=23, minute=59, second=59, microsecond=999000)
    return start, end


def parse_event_time(value: Optional[dict]) -> Optional[datetime.datetime]:
    """Parse a Google Calendar ``start``/``end`` object.

    ``dateTime`` values keep their offset. ``date`` values become local midnight.
    """
    if not value:
        return None
    date_time = value.get("dateTime")
    if date_time:
        try:
            return to_local(datetime.datetime.fromisoformat(date_time))
        except ValueError:
            return None
    date_only = value.get("date")
    if date_only:
        try:
            parsed = datetime.date.fromisoformat(date_only)
        except ValueError:
            return None
        return datetime.datetime.combine(parsed, datetime.time()).astimezone()
    return None


__all__ = [
    "END_OF_DAY",
    "local_now",
    "to_local",
    "iso_millis",
    "to_epoch_ms",
    "from_epoch_ms",
    "end_of_day",
    "today_bounds",
    "parse_event_time",
]
