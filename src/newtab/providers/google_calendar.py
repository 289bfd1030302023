"""Google Calendar provider: today's events across the user's selected calendars."""

from __future__ import annotations

import asyncio
import datetime
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence

from newtab.errors import AuthError, ProviderError, ValidationError, classify_google_error
from newtab.events.models import CalendarEvent, CalendarInfo, CalendarSyncResult
from newtab.services.google_auth.api import build_calendar_service
from newtab.services.google_auth.session import GoogleSessionManager
from newtab.storage import StorageArea
from newtab.utils.datetime_utils import local_now, parse_event_time, today_bounds

from .base import DEFAULT_TTL, SnapshotCache

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_DATA_KEY = "google_calendar_data"
NOT_SIGNED_IN_MESSAGE = "Not signed in to Google account"
MEET_EVENT_DURATION = datetime.timedelta(hours=1)


def _empty_snapshot() -> Dict[str, Any]:
    return {"calendars": [], "events": []}


def _event_from_item(item: Dict[str, Any], now: datetime.datetime) -> Optional[CalendarEvent]:
    start = parse_event_time(item.get("start"))
    end = parse_event_time(item.get("end"))
    if start is None:
        return None
    if end is None:
        end = start
    is_all_day = "date" in (item.get("start") or {}) and "dateTime" not in item["start"]

    return CalendarEvent(
        id=str(item.get("id", "")),
        title=item.get("summary") or "(No title)",
        description=item.get("description", ""),
        location=item.get("location", ""),
        hangout_link=item.get("hangoutLink", ""),
        html_link=item.get("htmlLink", ""),
        start_time=start,
        end_time=end,
        is_all_day=is_all_day,
        is_past=not is_all_day and end < now,
        is_ongoing=not is_all_day and start <= now <= end,
        calendar_name=item.get("calendarName", ""),
        calendar_color=item.get("calendarColor", ""),
    )


def _meet_link(event: Dict[str, Any]) -> Optional[str]:
    if event.get("hangoutLink"):
        return event["hangoutLink"]
    entry_points = (event.get("conferenceData") or {}).get("entryPoints") or []
    for entry in entry_points:
        if entry.get("entryPointType") == "video" and entry.get("uri"):
            return entry["uri"]
    return None


class GoogleCalendarProvider:
    """Calendars and today's events, cached in the local area for five minutes."""

    def __init__(
        self,
        storage: StorageArea,
        session: GoogleSessionManager,
        *,
        time_zone: str = "UTC",
        service_factory: Callable[[str], Any] = build_calendar_service,
        now: Callable[[], datetime.datetime] = local_now,
    ) -> None:
        self._session = session
        self._time_zone = time_zone
        self._service_factory = service_factory
        self._now = now
        self._cache = SnapshotCache(
            storage, GOOGLE_CALENDAR_DATA_KEY, empty=_empty_snapshot, ttl=DEFAULT_TTL, now=now
        )

    @property
    def data(self) -> Dict[str, Any]:
        return self._cache.data

    async def load(self) -> None:
        await self._cache.load()

    def is_cache_stale(self) -> bool:
        return self._cache.is_stale()

    def invalidate_cache(self) -> None:
        self._cache.invalidate()

    async def clear_local_data(self) -> None:
        await self._cache.clear()
        logger.info("Cleared Google Calendar local data")

    def is_signed_in(self) -> bool:
        return self._session.is_signed_in()

    async def _token(self) -> str:
        if not self._session.is_signed_in():
            raise AuthError.not_signed_in(NOT_SIGNED_IN_MESSAGE)
        return await self._session.ensure_valid_token()

    @staticmethod
    async def _execute(call: Any) -> Dict[str, Any]:
        return await asyncio.to_thread(call.execute)

    async def _list_calendars(self, token: str) -> List[Dict[str, Any]]:
        client = self._service_factory(token)
        try:
            response = await self._execute(client.calendarList().list(maxResults=50))
        except Exception as exc:
            raise classify_google_error(exc, "List calendars") from exc
        return [item for item in (response or {}).get("items", []) if item.get("id")]

    async def _fetch_events(
        self,
        token: str,
        calendar: Dict[str, Any],
        time_min: datetime.datetime,
        time_max: datetime.datetime,
    ) -> List[Dict[str, Any]]:
        client = self._service_factory(token)
        response = await self._execute(
            client.events().list(
                calendarId=calendar["id"],
                timeMin=time_min.isoformat(),
                timeMax=time_max.isoformat(),
                singleEvents=True,
                orderBy="startTime",
            )
        )
        return [
            {
                **item,
                "calendarName": calendar.get("summary", ""),
                "calendarColor": calendar.get("backgroundColor", ""),
            }
            for item in (response or {}).get("items", [])
        ]

    async def sync(self, calendar_ids: Optional[Sequence[str]] = None) -> CalendarSyncResult:
        """Fetch today's events from selected calendars and commit once."""

        await self._cache.load()
        token = await self._token()

        try:
            calendars = [
                item for item in await self._list_calendars(token) if item.get("selected")
            ]
            targets = calendars
            if calendar_ids:
                wanted = set(calendar_ids)
                targets = [item for item in calendars if item["id"] in wanted]

            time_min, time_max = today_bounds(self._now())
            results = await asyncio.gather(
                *(
                    self._fetch_events(token, calendar, time_min, time_max)
                    for calendar in targets
                ),
                return_exceptions=True,
            )
            events: List[Dict[str, Any]] = []
            for calendar, result in zip(targets, results):
                if isinstance(result, BaseException):
                    logger.warning(
                        "Failed to fetch events for calendar %s: %s", calendar.get("id"), result
                    )
                    continue
                events.extend(result)

            await self._cache.commit(calendars=calendars, events=events)
        except ProviderError:
            raise
        except Exception as exc:
            logger.error("Google Calendar sync failed: %s", exc)
            raise classify_google_error(exc, "Google Calendar sync") from exc

        logger.info(
            "Google Calendar sync successful (calendars=%d, events=%d)",
            len(calendars),
            len(events),
        )
        return CalendarSyncResult(calendars=calendars, events=events)

    def get_events(self) -> List[CalendarEvent]:
        now = self._now()
        events: List[CalendarEvent] = []
        for item in self.data.get("events", []):
            if not isinstance(item, dict) or item.get("status") == "cancelled":
                continue
            try:
                event = _event_from_item(item, now)
            except (AttributeError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed event %r: %s", item.get("id"), exc)
                continue
            if event is None:
                logger.debug("Skipping event %s without a start time", item.get("id"))
                continue
            events.append(event)

        events.sort(key=lambda event: (not event.is_all_day, event.start_time))
        return events

    def get_calendars(self) -> List[Dict[str, Any]]:
        return [item for item in self.data.get("calendars", []) if isinstance(item, dict)]

    async def fetch_calendar_list(self) -> List[CalendarInfo]:
        """All calendars on the account, for choosing which ones to show."""

        token = await self._token()
        items = await self._list_calendars(token)
        return [
            CalendarInfo(
                id=item["id"],
                name=item.get("summary", ""),
                color=item.get("backgroundColor", ""),
                primary=bool(item.get("primary", False)),
            )
            for item in items
        ]

    async def create_meet_link(self) -> str:
        """Create a Meet link through a throwaway one-hour event on ``primary``."""

        token = await self._token()
        client = self._service_factory(token)
        start = self._now()
        end = start + MEET_EVENT_DURATION
        body = {
            "summary": "Instant Meeting",
            "start": {"dateTime": start.isoformat(), "timeZone": self._time_zone},
            "end": {"dateTime": end.isoformat(), "timeZone": self._time_zone},
            "conferenceData": {
                "createRequest": {
                    "requestId": str(uuid.uuid4()),
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            },
        }

        try:
            event = await self._execute(
                client.events().insert(
                    calendarId="primary", body=body, conferenceDataVersion=1
                )
            )
        except Exception as exc:
            logger.error("Creating Meet event failed: %s", exc)
            raise classify_google_error(exc, "Create Meet link") from exc

        link = _meet_link(event or {})
        event_id = (event or {}).get("id")
        if event_id:
            try:
                await self._execute(
                    client.events().delete(calendarId="primary", eventId=event_id)
                )
            except Exception as exc:
                logger.warning("Failed to delete temporary Meet event %s: %s", event_id, exc)

        if not link:
            raise ValidationError.invalid_response("No Meet link returned from Google")
        return link


__all__ = ["GOOGLE_CALENDAR_DATA_KEY", "GoogleCalendarProvider"]
