"""Domain models representing calendars and today's events."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(slots=True)
class CalendarInfo:
    """Metadata describing a Google calendar."""

    id: str
    name: str
    color: str = ""
    primary: bool = False


@dataclass(slots=True)
class CalendarEvent:
    """Event ready for display; flags are relative to the evaluation time."""

    id: str
    start_time: datetime.datetime
    end_time: datetime.datetime
    title: str = "(No title)"
    description: str = ""
    location: str = ""
    hangout_link: str = ""
    html_link: str = ""
    is_all_day: bool = False
    is_past: bool = False
    is_ongoing: bool = False
    calendar_name: str = ""
    calendar_color: str = ""


@dataclass(slots=True)
class CalendarSyncResult:
    """Raw calendars and events merged by one sync."""

    calendars: List[Dict[str, Any]] = field(default_factory=list)
    events: List[Dict[str, Any]] = field(default_factory=list)
