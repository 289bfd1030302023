"""Provider contracts and the snapshot cache every provider composes."""

from __future__ import annotations

import copy
import datetime
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence

from pydantic import ValidationError as ModelValidationError

from newtab.errors import ProviderError
from newtab.events.models import CalendarEvent, CalendarInfo, CalendarSyncResult
from newtab.storage import StorageArea
from newtab.tasks.models import EnrichedTask, RawTask
from newtab.utils.datetime_utils import local_now, to_epoch_ms

logger = logging.getLogger(__name__)

DEFAULT_TTL = datetime.timedelta(minutes=5)


class CachedProvider(Protocol):
    async def load(self) -> None: ...

    def is_cache_stale(self) -> bool: ...

    def invalidate_cache(self) -> None: ...

    async def clear_local_data(self) -> None: ...


class TaskProvider(CachedProvider, Protocol):
    async def sync(self, resource_types: Optional[Sequence[str]] = None) -> Any: ...

    def get_tasks(self) -> List[EnrichedTask]: ...

    async def add_task(self, content: str, due: Optional[str] = None) -> Any: ...

    async def complete_task(self, task_id: str) -> None: ...

    async def uncomplete_task(self, task_id: str) -> None: ...

    async def delete_task(self, task_id: str) -> None: ...

    def get_project_name(self, project_id: Optional[str]) -> str: ...

    def get_label_names(self, label_ids: List[str]) -> List[str]: ...


class CalendarProvider(CachedProvider, Protocol):
    async def sync(
        self, calendar_ids: Optional[Sequence[str]] = None
    ) -> CalendarSyncResult: ...

    def get_events(self) -> List[CalendarEvent]: ...

    def get_calendars(self) -> List[Dict[str, Any]]: ...

    async def fetch_calendar_list(self) -> List[CalendarInfo]: ...

    async def create_meet_link(self) -> str: ...


def coerce_raw_tasks(
    items: Iterable[Any], convert: Callable[[Dict[str, Any]], Dict[str, Any]] = dict
) -> List[RawTask]:
    """Validate stored task payloads, dropping any that no longer parse."""

    tasks: List[RawTask] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            tasks.append(RawTask.model_validate(convert(item)))
        except (ModelValidationError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed task %r: %s", item.get("id"), exc)
    return tasks


class SnapshotCache:
    """In-memory snapshot mirrored under one storage key.

    ``timestamp`` (epoch ms) records the last successful commit; ``ttl`` of
    ``None`` means the snapshot never goes stale.
    """

    def __init__(
        self,
        storage: StorageArea,
        key: str,
        *,
        empty: Callable[[], Dict[str, Any]],
        ttl: Optional[datetime.timedelta] = DEFAULT_TTL,
        now: Callable[[], datetime.datetime] = local_now,
    ) -> None:
        self._storage = storage
        self.key = key
        self._empty = empty
        self._ttl = ttl
        self._now = now
        self._loaded = False
        self.data: Dict[str, Any] = self._fresh()

    def _fresh(self) -> Dict[str, Any]:
        snapshot = self._empty()
        snapshot.setdefault("timestamp", 0)
        return snapshot

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def timestamp(self) -> int:
        return int(self.data.get("timestamp") or 0)

    def _is_well_formed(self, stored: Any) -> bool:
        if not isinstance(stored, dict):
            return False
        template = self._fresh()
        for name, default in template.items():
            if name in stored and not isinstance(stored[name], type(default)):
                return False
        return True

    async def load(self) -> Dict[str, Any]:
        """Read the stored snapshot once; bad data degrades to empty."""

        if self._loaded:
            return self.data
        try:
            stored = await self._storage.get(self.key, None)
        except ProviderError as exc:
            logger.error("Failed to read cached snapshot %s: %s", self.key, exc)
            stored = None

        if stored is None:
            self.data = self._fresh()
        elif self._is_well_formed(stored):
            snapshot = self._fresh()
            snapshot.update(copy.deepcopy(stored))
            self.data = snapshot
        else:
            logger.warning("Discarding malformed cached snapshot %s", self.key)
            self.data = self._fresh()

        self._loaded = True
        return self.data

    async def commit(self, **entities: Any) -> Dict[str, Any]:
        """Replace entities, stamp the time and write exactly once."""

        snapshot = dict(self.data)
        snapshot.update(entities)
        snapshot["timestamp"] = to_epoch_ms(self._now())
        await self._storage.set(self.key, snapshot)
        self.data = snapshot
        return snapshot

    async def save(self) -> None:
        await self._storage.set(self.key, self.data)

    def is_stale(self) -> bool:
        if self._ttl is None:
            return False
        if not self.timestamp:
            return True
        age_ms = to_epoch_ms(self._now()) - self.timestamp
        return age_ms >= self._ttl.total_seconds() * 1000

    def invalidate(self) -> None:
        self.data["timestamp"] = 0

    async def clear(self) -> None:
        await self._storage.remove(self.key)
        self.data = self._fresh()


__all__ = [
    "DEFAULT_TTL",
    "CachedProvider",
    "TaskProvider",
    "CalendarProvider",
    "SnapshotCache",
    "coerce_raw_tasks",
]
