"""Todoist task provider using the REST v2 API.

API Docs: https://developer.todoist.com/rest/v2/
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from newtab.errors import (
    NetworkError,
    ProviderError,
    ValidationError,
    classify_status,
    wrap_error,
)
from newtab.storage import StorageArea
from newtab.tasks.enrichment import build_task_view
from newtab.tasks.models import EnrichedTask
from newtab.utils.datetime_utils import local_now

from .base import DEFAULT_TTL, SnapshotCache, coerce_raw_tasks

logger = logging.getLogger(__name__)

TODOIST_DATA_KEY = "todoist_data"
TODOIST_BASE_URL = "https://api.todoist.com/rest/v2"


def _empty_snapshot() -> Dict[str, Any]:
    return {"tasks": [], "labels": [], "projects": []}


def _to_raw(task: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(task["id"]),
        "content": task.get("content", ""),
        "checked": bool(task.get("is_completed", False)),
        "completed_at": task.get("completed_at"),
        "due": task.get("due"),
        "project_id": str(task["project_id"]) if task.get("project_id") else None,
        "labels": [str(label) for label in task.get("labels") or []],
        "child_order": task.get("order") or 0,
    }


class TodoistProvider:
    """Todoist tasks cached in the local area for five minutes."""

    def __init__(
        self,
        storage: StorageArea,
        api_token: str,
        *,
        base_url: str = TODOIST_BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        now: Callable[[], datetime.datetime] = local_now,
    ) -> None:
        self._token = api_token
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._timeout = timeout
        self._now = now
        self._cache = SnapshotCache(
            storage, TODOIST_DATA_KEY, empty=_empty_snapshot, ttl=DEFAULT_TTL, now=now
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
        logger.info("Cleared Todoist local data")

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._token}"}
        if self._client is not None:
            return await self._client.request(method, url, headers=headers, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.request(method, url, headers=headers, **kwargs)

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        url = f"{self._base_url}{endpoint}"
        try:
            response = await self._send(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Todoist request %s %s failed: %s", method, endpoint, exc)
            raise NetworkError.from_exception(exc) from exc

        if response.is_success:
            return response

        status = response.status_code
        if status in (401, 403):
            message = f"Todoist API authentication failed: {status}"
        elif status == 429:
            message = "Todoist rate limit exceeded"
        else:
            message = f"Todoist API request failed: {status} {response.reason_phrase}"
        logger.error("Todoist request %s %s returned %s", method, endpoint, status)
        raise classify_status(
            status,
            message=message,
            retry_after=response.headers.get("Retry-After"),
            reason=response.reason_phrase,
        )

    async def _get_json(self, endpoint: str) -> List[Dict[str, Any]]:
        response = await self._request("GET", endpoint)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ValidationError.parse_error(
                f"Todoist returned malformed JSON for {endpoint}", exc
            ) from exc
        if not isinstance(payload, list):
            raise ValidationError.invalid_response(
                f"Todoist returned an unexpected payload for {endpoint}"
            )
        return payload

    async def sync(self, resource_types: Optional[Sequence[str]] = None) -> None:
        """Fetch tasks, projects and labels together, then commit once."""

        await self._cache.load()
        logger.debug("Syncing with Todoist REST API v2")
        try:
            tasks, projects, labels = await asyncio.gather(
                self._get_json("/tasks"),
                self._get_json("/projects"),
                self._get_json("/labels"),
            )
            await self._cache.commit(tasks=tasks, projects=projects, labels=labels)
        except ProviderError:
            raise
        except Exception as exc:
            logger.error("Todoist sync failed: %s", exc)
            raise wrap_error(exc, "Todoist sync") from exc

        logger.info(
            "Todoist sync successful (tasks=%d, projects=%d, labels=%d)",
            len(tasks),
            len(projects),
            len(labels),
        )

    def get_tasks(self) -> List[EnrichedTask]:
        raw = coerce_raw_tasks(self.data.get("tasks", []), _to_raw)
        return build_task_view(
            raw,
            self._now(),
            project_name=self.get_project_name,
            label_names=self.get_label_names,
        )

    def get_project_name(self, project_id: Optional[str]) -> str:
        if not project_id:
            return ""
        for project in self.data.get("projects", []):
            if isinstance(project, dict) and str(project.get("id")) == project_id:
                return project.get("name", "")
        return ""

    def get_label_names(self, label_ids: List[str]) -> List[str]:
        labels = [label for label in self.data.get("labels", []) if isinstance(label, dict)]
        names: List[str] = []
        for label_id in label_ids or []:
            for label in labels:
                if str(label.get("id")) == label_id:
                    names.append(label.get("name", ""))
                    break
        return [name for name in names if name]

    async def _mutate(
        self, operation: str, method: str, endpoint: str, **kwargs: Any
    ) -> httpx.Response:
        try:
            return await self._request(method, endpoint, **kwargs)
        except ProviderError:
            raise
        except Exception as exc:
            logger.error("%s failed: %s", operation, exc)
            raise wrap_error(exc, operation) from exc

    async def add_task(self, content: str, due: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"content": content}
        if due:
            body["due_string"] = due
        response = await self._mutate("Add task", "POST", "/tasks", json=body)
        logger.info("Todoist task added")
        try:
            return response.json()
        except ValueError:
            return {}

    async def complete_task(self, task_id: str) -> None:
        await self._mutate("Complete task", "POST", f"/tasks/{task_id}/close")
        logger.info("Todoist task %s completed", task_id)

    async def uncomplete_task(self, task_id: str) -> None:
        await self._mutate("Uncomplete task", "POST", f"/tasks/{task_id}/reopen")
        logger.info("Todoist task %s reopened", task_id)

    async def delete_task(self, task_id: str) -> None:
        await self._mutate("Delete task", "DELETE", f"/tasks/{task_id}")
        logger.info("Todoist task %s deleted", task_id)


__all__ = ["TODOIST_DATA_KEY", "TodoistProvider"]
