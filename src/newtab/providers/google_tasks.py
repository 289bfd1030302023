"""Google Tasks provider backed by the shared Google session."""

from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from newtab.errors import AuthError, ProviderError, classify_google_error
from newtab.services.google_auth.api import build_tasks_service
from newtab.services.google_auth.session import AuthState, GoogleSessionManager
from newtab.storage import StorageArea
from newtab.tasks.enrichment import build_task_view, require_iso_due
from newtab.tasks.models import EnrichedTask
from newtab.utils.datetime_utils import iso_millis, local_now

from .base import DEFAULT_TTL, SnapshotCache, coerce_raw_tasks

logger = logging.getLogger(__name__)

GOOGLE_TASKS_DATA_KEY = "google_tasks_data"
DEFAULT_TASKLIST_KEY = "google_tasks_default_list"
DEFAULT_TASKLIST = "@default"
DEFAULT_RESOURCE_TYPES = ("tasklists", "tasks")
NOT_SIGNED_IN_MESSAGE = "Not signed in to Google account"


def _empty_snapshot() -> Dict[str, Any]:
    return {"tasklists": [], "tasks": []}


def _position(task: Dict[str, Any]) -> int:
    position = str(task.get("position") or "")
    return int(position) if position.isdigit() else 0


def _to_raw(task: Dict[str, Any]) -> Dict[str, Any]:
    due = task.get("due")
    return {
        "id": task["id"],
        "content": task.get("title", ""),
        "checked": task.get("status") == "completed",
        "completed_at": task.get("completed"),
        # Google Tasks stores dates only; the time part is always midnight UTC.
        "due": {"date": str(due)[:10]} if due else None,
        "project_id": task.get("tasklistId"),
        "labels": [],
        "child_order": _position(task),
        "is_deleted": bool(task.get("deleted", False)),
    }


def _due_payload(due: str) -> str:
    due = require_iso_due(due)
    return f"{due.split('T', 1)[0]}T00:00:00.000Z"


class GoogleTasksProvider:
    """Task lists and tasks from the Google Tasks API, cached for five minutes."""

    def __init__(
        self,
        storage: StorageArea,
        session: GoogleSessionManager,
        *,
        service_factory: Callable[[str], Any] = build_tasks_service,
        now: Callable[[], datetime.datetime] = local_now,
    ) -> None:
        self._storage = storage
        self._session = session
        self._service_factory = service_factory
        self._now = now
        self._cache = SnapshotCache(
            storage, GOOGLE_TASKS_DATA_KEY, empty=_empty_snapshot, ttl=DEFAULT_TTL, now=now
        )
        self.default_tasklist_id = DEFAULT_TASKLIST

    @property
    def data(self) -> Dict[str, Any]:
        return self._cache.data

    async def load(self) -> None:
        await self._cache.load()
        try:
            stored = await self._storage.get(DEFAULT_TASKLIST_KEY, None)
        except ProviderError as exc:
            logger.error("Failed to read default task list: %s", exc)
            stored = None
        if stored:
            self.default_tasklist_id = str(stored)

    def is_cache_stale(self) -> bool:
        return self._cache.is_stale()

    def invalidate_cache(self) -> None:
        self._cache.invalidate()

    async def clear_local_data(self) -> None:
        await self._cache.clear()
        await self._storage.remove(DEFAULT_TASKLIST_KEY)
        self.default_tasklist_id = DEFAULT_TASKLIST
        logger.info("Cleared Google Tasks local data")

    # Session delegation -------------------------------------------------

    async def sign_in(self) -> AuthState:
        return await self._session.sign_in()

    async def sign_out(self) -> None:
        await self._session.sign_out()
        await self.clear_local_data()

    def is_signed_in(self) -> bool:
        return self._session.is_signed_in()

    @property
    def user_email(self) -> Optional[str]:
        return self._session.user_email

    async def ensure_valid_token(self) -> str:
        return await self._session.ensure_valid_token()

    async def _token(self) -> str:
        if not self._session.is_signed_in():
            raise AuthError.not_signed_in(NOT_SIGNED_IN_MESSAGE)
        return await self._session.ensure_valid_token()

    @staticmethod
    async def _execute(call: Any) -> Dict[str, Any]:
        return await asyncio.to_thread(call.execute)

    # Sync ---------------------------------------------------------------

    async def _fetch_tasklists(self, token: str) -> List[Dict[str, Any]]:
        client = self._service_factory(token)
        try:
            response = await self._execute(client.tasklists().list(maxResults=20))
        except Exception as exc:
            raise classify_google_error(exc, "List task lists") from exc
        return [item for item in (response or {}).get("items", []) if item.get("id")]

    async def _fetch_tasks(
        self, token: str, tasklist: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        client = self._service_factory(token)
        response = await self._execute(
            client.tasks().list(
                tasklist=tasklist["id"],
                showCompleted=True,
                showHidden=True,
                maxResults=100,
            )
        )
        return [
            {
                **item,
                "tasklistId": tasklist["id"],
                "tasklistName": tasklist.get("title", ""),
            }
            for item in (response or {}).get("items", [])
            if item.get("id")
        ]

    async def _update_default_tasklist(self, tasklists: List[Dict[str, Any]]) -> None:
        if not tasklists:
            return
        valid_ids = {item["id"] for item in tasklists}
        if self.default_tasklist_id in valid_ids:
            return
        self.default_tasklist_id = tasklists[0]["id"]
        await self._storage.set(DEFAULT_TASKLIST_KEY, self.default_tasklist_id)

    async def sync(self, resource_types: Optional[Sequence[str]] = None) -> None:
        """Refresh task lists and/or tasks, committing the snapshot once."""

        await self._cache.load()
        token = await self._token()

        wanted = set(resource_types or DEFAULT_RESOURCE_TYPES)
        tasklists: List[Dict[str, Any]] = list(self.data.get("tasklists", []))
        tasks: List[Dict[str, Any]] = list(self.data.get("tasks", []))

        try:
            if "tasklists" in wanted:
                tasklists = await self._fetch_tasklists(token)
                await self._update_default_tasklist(tasklists)

            if "tasks" in wanted:
                results = await asyncio.gather(
                    *(self._fetch_tasks(token, tasklist) for tasklist in tasklists),
                    return_exceptions=True,
                )
                tasks = []
                for tasklist, result in zip(tasklists, results):
                    if isinstance(result, BaseException):
                        logger.warning(
                            "Failed to fetch tasks for list %s: %s", tasklist.get("id"), result
                        )
                        continue
                    tasks.extend(result)

            await self._cache.commit(tasklists=tasklists, tasks=tasks)
        except ProviderError:
            raise
        except Exception as exc:
            logger.error("Google Tasks sync failed: %s", exc)
            raise classify_google_error(exc, "Google Tasks sync") from exc

        logger.info(
            "Google Tasks sync successful (lists=%d, tasks=%d)", len(tasklists), len(tasks)
        )

    # Reads --------------------------------------------------------------

    def get_tasks(self) -> List[EnrichedTask]:
        raw = coerce_raw_tasks(self.data.get("tasks", []), _to_raw)
        return build_task_view(
            raw,
            self._now(),
            project_name=self.get_project_name,
            label_names=self.get_label_names,
        )

    def get_tasklist_name(self, tasklist_id: Optional[str]) -> str:
        for tasklist in self.data.get("tasklists", []):
            if isinstance(tasklist, dict) and tasklist.get("id") == tasklist_id:
                return tasklist.get("title", "")
        return ""

    def get_project_name(self, project_id: Optional[str]) -> str:
        return self.get_tasklist_name(project_id)

    def get_label_names(self, label_ids: List[str]) -> List[str]:
        return []

    # Mutations ----------------------------------------------------------

    def _tasklist_for(self, task_id: str) -> str:
        for task in self.data.get("tasks", []):
            if isinstance(task, dict) and task.get("id") == task_id and task.get("tasklistId"):
                return task["tasklistId"]
        return self.default_tasklist_id

    async def _mutate(
        self, operation: str, build_call: Callable[[Any], Any]
    ) -> Dict[str, Any]:
        try:
            client = self._service_factory(await self._token())
            return await self._execute(build_call(client)) or {}
        except ProviderError:
            raise
        except Exception as exc:
            logger.error("%s failed: %s", operation, exc)
            raise classify_google_error(exc, operation) from exc

    async def add_task(self, content: str, due: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"title": content}
        if due:
            body["due"] = _due_payload(due)
        tasklist = self.default_tasklist_id
        return await self._mutate(
            "Add task", lambda client: client.tasks().insert(tasklist=tasklist, body=body)
        )

    async def complete_task(self, task_id: str) -> None:
        tasklist = self._tasklist_for(task_id)
        body = {"status": "completed", "completed": iso_millis(self._now())}
        await self._mutate(
            "Complete task",
            lambda client: client.tasks().patch(tasklist=tasklist, task=task_id, body=body),
        )

    async def uncomplete_task(self, task_id: str) -> None:
        tasklist = self._tasklist_for(task_id)
        body = {"status": "needsAction", "completed": None}
        await self._mutate(
            "Uncomplete task",
            lambda client: client.tasks().patch(tasklist=tasklist, task=task_id, body=body),
        )

    async def delete_task(self, task_id: str) -> None:
        tasklist = self._tasklist_for(task_id)
        await self._mutate(
            "Delete task",
            lambda client: client.tasks().delete(tasklist=tasklist, task=task_id),
        )


__all__ = [
    "GOOGLE_TASKS_DATA_KEY",
    "DEFAULT_TASKLIST_KEY",
    "DEFAULT_TASKLIST",
    "NOT_SIGNED_IN_MESSAGE",
    "GoogleTasksProvider",
]
