"""Offline task provider whose storage snapshot is the source of truth."""

from __future__ import annotations

import datetime
import logging
import uuid
from typing import Callable, List, Optional, Sequence

from newtab.storage import StorageArea
from newtab.tasks.enrichment import build_task_view, require_iso_due
from newtab.tasks.models import EnrichedTask, RawTask, TaskDue
from newtab.utils.datetime_utils import iso_millis, local_now

from .base import SnapshotCache, coerce_raw_tasks

logger = logging.getLogger(__name__)

LOCAL_TASKS_KEY = "local_tasks"


class LocalTaskProvider:
    """Tasks kept only in the local storage area."""

    def __init__(
        self,
        storage: StorageArea,
        *,
        now: Callable[[], datetime.datetime] = local_now,
    ) -> None:
        self._now = now
        self._cache = SnapshotCache(
            storage, LOCAL_TASKS_KEY, empty=lambda: {"items": []}, ttl=None, now=now
        )

    @property
    def items(self) -> list:
        return self._cache.data["items"]

    async def load(self) -> None:
        await self._cache.load()

    async def sync(self, resource_types: Optional[Sequence[str]] = None) -> None:
        await self._cache.load()

    def is_cache_stale(self) -> bool:
        return False

    def invalidate_cache(self) -> None:
        return None

    async def clear_local_data(self) -> None:
        # No-op: the local snapshot is the source of truth.
        return None

    def get_tasks(self) -> List[EnrichedTask]:
        return build_task_view(coerce_raw_tasks(self.items), self._now())

    def get_project_name(self, project_id: Optional[str]) -> str:
        return ""

    def get_label_names(self, label_ids: List[str]) -> List[str]:
        return []

    def _find(self, task_id: str) -> Optional[dict]:
        for item in self.items:
            if isinstance(item, dict) and item.get("id") == task_id:
                return item
        return None

    async def add_task(self, content: str, due: Optional[str] = None) -> RawTask:
        if due:
            require_iso_due(due)
        await self._cache.load()
        task = RawTask(
            id=str(uuid.uuid4()),
            content=content,
            due=TaskDue(date=due) if due else None,
            child_order=len(self.items),
        )
        self.items.append(task.model_dump())
        await self._cache.save()
        logger.info("Added local task %s", task.id)
        return task

    async def complete_task(self, task_id: str) -> None:
        await self._cache.load()
        item = self._find(task_id)
        if item is None:
            logger.debug("Complete ignored for unknown local task %s", task_id)
            return
        item["checked"] = True
        item["completed_at"] = iso_millis(self._now())
        await self._cache.save()

    async def uncomplete_task(self, task_id: str) -> None:
        await self._cache.load()
        item = self._find(task_id)
        if item is None:
            return
        item["checked"] = False
        item["completed_at"] = None
        await self._cache.save()

    async def delete_task(self, task_id: str) -> None:
        await self._cache.load()
        item = self._find(task_id)
        if item is None:
            return
        self.items.remove(item)
        await self._cache.save()


__all__ = ["LOCAL_TASKS_KEY", "LocalTaskProvider"]
