"""Calendar routes: today's events, calendar choices and instant Meet links."""

from __future__ import annotations

import datetime
import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from newtab.dashboard import Dashboard, get_dashboard
from newtab.errors import ProviderError
from newtab.events.models import CalendarEvent
from newtab.providers import CalendarProvider

from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calendar", tags=["calendar"])


class CalendarEventResponse(BaseModel):
    id: str
    title: str
    description: str = ""
    location: str = ""
    hangout_link: str = ""
    html_link: str = ""
    start_time: datetime.datetime
    end_time: datetime.datetime
    is_all_day: bool = False
    is_past: bool = False
    is_ongoing: bool = False
    calendar_name: str = ""
    calendar_color: str = ""

    @classmethod
    def from_event(cls, event: CalendarEvent) -> "CalendarEventResponse":
        return cls(
            id=event.id,
            title=event.title,
            description=event.description,
            location=event.location,
            hangout_link=event.hangout_link,
            html_link=event.html_link,
            start_time=event.start_time,
            end_time=event.end_time,
            is_all_day=event.is_all_day,
            is_past=event.is_past,
            is_ongoing=event.is_ongoing,
            calendar_name=event.calendar_name,
            calendar_color=event.calendar_color,
        )


class CalendarEventsResponse(BaseModel):
    events: List[CalendarEventResponse]
    stale: bool = False


class CalendarInfoResponse(BaseModel):
    id: str
    name: str
    color: str = ""
    primary: bool = False


class MeetLinkResponse(BaseModel):
    meet_link: str


def get_calendar_provider(
    dashboard: Dashboard = Depends(get_dashboard),
) -> CalendarProvider:
    return dashboard.calendar


@router.get("/events", response_model=CalendarEventsResponse)
async def list_events(
    refresh: Annotated[bool, Query(description="Sync before answering")] = False,
    calendar_ids: Annotated[Optional[List[str]], Query()] = None,
    provider: CalendarProvider = Depends(get_calendar_provider),
) -> CalendarEventsResponse:
    """Today's events, all-day first; syncs when the cache is stale."""

    if refresh or calendar_ids or provider.is_cache_stale():
        try:
            await provider.sync(calendar_ids)
        except ProviderError as exc:
            if refresh or calendar_ids:
                raise to_http_exception(exc) from exc
            logger.warning("Serving cached events after failed sync: %s", exc)

    return CalendarEventsResponse(
        events=[CalendarEventResponse.from_event(event) for event in provider.get_events()],
        stale=provider.is_cache_stale(),
    )


@router.get("/calendars")
async def list_synced_calendars(
    provider: CalendarProvider = Depends(get_calendar_provider),
) -> List[dict]:
    return provider.get_calendars()


@router.get("/calendars/available", response_model=List[CalendarInfoResponse])
async def list_available_calendars(
    provider: CalendarProvider = Depends(get_calendar_provider),
) -> List[CalendarInfoResponse]:
    try:
        calendars = await provider.fetch_calendar_list()
    except ProviderError as exc:
        raise to_http_exception(exc) from exc
    return [
        CalendarInfoResponse(
            id=calendar.id,
            name=calendar.name,
            color=calendar.color,
            primary=calendar.primary,
        )
        for calendar in calendars
    ]


@router.post("/meet-link", response_model=MeetLinkResponse)
async def create_meet_link(
    provider: CalendarProvider = Depends(get_calendar_provider),
) -> MeetLinkResponse:
    try:
        link = await provider.create_meet_link()
    except ProviderError as exc:
        raise to_http_exception(exc) from exc
    return MeetLinkResponse(meet_link=link)


__all__ = ["router"]
