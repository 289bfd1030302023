"""Calendar event domain package."""

from .models import CalendarEvent, CalendarInfo, CalendarSyncResult

__all__ = ["CalendarEvent", "CalendarInfo", "CalendarSyncResult"]
