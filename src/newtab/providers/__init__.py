"""Task and calendar providers sharing one snapshot cache contract."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from newtab.config import Settings
from newtab.errors import ValidationError
from newtab.services.google_auth.session import GoogleSessionManager
from newtab.storage import StorageArea

from .base import CachedProvider, CalendarProvider, SnapshotCache, TaskProvider
from .google_calendar import GoogleCalendarProvider
from .google_tasks import GoogleTasksProvider
from .local import LocalTaskProvider
from .todoist import TodoistProvider


class ProviderKind(str, Enum):
    LOCAL = "local"
    TODOIST = "todoist"
    GOOGLE_TASKS = "google-tasks"
    GOOGLE_CALENDAR = "google-calendar"


def create_task_provider(
    kind: ProviderKind | str,
    *,
    storage: StorageArea,
    session: Optional[GoogleSessionManager] = None,
    settings: Settings,
) -> TaskProvider:
    """Build the task provider selected by ``kind``."""

    kind = ProviderKind(kind)
    if kind is ProviderKind.LOCAL:
        return LocalTaskProvider(storage)
    if kind is ProviderKind.TODOIST:
        token = settings.todoist_api_token
        if token is None or not token.get_secret_value():
            raise ValidationError("Todoist backend selected but TODOIST_API_TOKEN is not set")
        return TodoistProvider(
            storage,
            token.get_secret_value(),
            base_url=settings.todoist_base_url,
            timeout=settings.request_timeout,
        )
    if kind is ProviderKind.GOOGLE_TASKS:
        if session is None:
            raise ValidationError("Google Tasks backend requires a Google session")
        return GoogleTasksProvider(storage, session)
    raise ValidationError(f"{kind.value} is not a task provider")


def create_calendar_provider(
    kind: ProviderKind | str = ProviderKind.GOOGLE_CALENDAR,
    *,
    storage: StorageArea,
    session: GoogleSessionManager,
    settings: Settings,
) -> CalendarProvider:
    kind = ProviderKind(kind)
    if kind is not ProviderKind.GOOGLE_CALENDAR:
        raise ValidationError(f"{kind.value} is not a calendar provider")
    return GoogleCalendarProvider(storage, session, time_zone=settings.time_zone)


__all__ = [
    "CachedProvider",
    "CalendarProvider",
    "GoogleCalendarProvider",
    "GoogleTasksProvider",
    "LocalTaskProvider",
    "ProviderKind",
    "SnapshotCache",
    "TaskProvider",
    "TodoistProvider",
    "create_calendar_provider",
    "create_task_provider",
]
