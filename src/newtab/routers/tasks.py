"""API routes for the active task provider."""

from __future__ import annotations

import datetime
import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from newtab.dashboard import Dashboard, get_dashboard
from newtab.errors import ProviderError
from newtab.providers import TaskProvider
from newtab.tasks.models import EnrichedTask, TaskDue

from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


class TaskResponse(BaseModel):
    id: str
    content: str
    checked: bool
    completed_at: Optional[str] = None
    due: Optional[TaskDue] = None
    due_date: Optional[datetime.datetime] = None
    has_time: bool = False
    project_id: Optional[str] = None
    project_name: str = ""
    labels: List[str] = Field(default_factory=list)
    label_names: List[str] = Field(default_factory=list)
    child_order: int = 0

    @classmethod
    def from_task(cls, task: EnrichedTask) -> "TaskResponse":
        return cls(
            id=task.id,
            content=task.content,
            checked=task.checked,
            completed_at=task.completed_at,
            due=task.due,
            due_date=task.due_date,
            has_time=task.has_time,
            project_id=task.project_id,
            project_name=task.project_name,
            labels=list(task.labels),
            label_names=list(task.label_names),
            child_order=task.child_order,
        )


class TaskListResponse(BaseModel):
    tasks: List[TaskResponse]
    stale: bool = False


class TaskCreatePayload(BaseModel):
    content: str = Field(min_length=1)
    due: Optional[str] = Field(
        default=None,
        description="YYYY-MM-DD or an ISO date-time; Todoist also accepts natural language",
    )


def get_task_provider(dashboard: Dashboard = Depends(get_dashboard)) -> TaskProvider:
    return dashboard.tasks


def _task_list(provider: TaskProvider) -> TaskListResponse:
    return TaskListResponse(
        tasks=[TaskResponse.from_task(task) for task in provider.get_tasks()],
        stale=provider.is_cache_stale(),
    )


@router.get("", response_model=TaskListResponse)
async def list_tasks(
    refresh: Annotated[bool, Query(description="Sync before answering")] = False,
    provider: TaskProvider = Depends(get_task_provider),
) -> TaskListResponse:
    """Return visible tasks, syncing first when the cache is stale."""

    if refresh or provider.is_cache_stale():
        try:
            await provider.sync()
        except ProviderError as exc:
            if refresh:
                raise to_http_exception(exc) from exc
            logger.warning("Serving cached tasks after failed sync: %s", exc)
    return _task_list(provider)


@router.post("/sync", response_model=TaskListResponse)
async def sync_tasks(
    provider: TaskProvider = Depends(get_task_provider),
) -> TaskListResponse:
    try:
        await provider.sync()
    except ProviderError as exc:
        raise to_http_exception(exc) from exc
    return _task_list(provider)


@router.post("", response_model=TaskListResponse, status_code=status.HTTP_201_CREATED)
async def add_task(
    payload: TaskCreatePayload,
    provider: TaskProvider = Depends(get_task_provider),
) -> TaskListResponse:
    try:
        await provider.add_task(payload.content, payload.due)
    except ProviderError as exc:
        raise to_http_exception(exc) from exc
    provider.invalidate_cache()
    return _task_list(provider)


@router.post("/{task_id}/complete", response_model=TaskListResponse)
async def complete_task(
    task_id: str,
    provider: TaskProvider = Depends(get_task_provider),
) -> TaskListResponse:
    try:
        await provider.complete_task(task_id)
    except ProviderError as exc:
        raise to_http_exception(exc) from exc
    provider.invalidate_cache()
    return _task_list(provider)


@router.post("/{task_id}/uncomplete", response_model=TaskListResponse)
async def uncomplete_task(
    task_id: str,
    provider: TaskProvider = Depends(get_task_provider),
) -> TaskListResponse:
    try:
        await provider.uncomplete_task(task_id)
    except ProviderError as exc:
        raise to_http_exception(exc) from exc
    provider.invalidate_cache()
    return _task_list(provider)


@router.delete("/{task_id}", response_model=TaskListResponse)
async def delete_task(
    task_id: str,
    provider: TaskProvider = Depends(get_task_provider),
) -> TaskListResponse:
    try:
        await provider.delete_task(task_id)
    except ProviderError as exc:
        raise to_http_exception(exc) from exc
    provider.invalidate_cache()
    return _task_list(provider)


__all__ = ["router"]
