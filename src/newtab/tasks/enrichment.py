"""Pure functions that turn raw tasks into the ordered, UI-ready view.

Every provider funnels its records through :func:`build_task_view`, so the
visibility window, due-date parsing and ordering are identical across backends.
"""

from __future__ import annotations

import datetime
import logging
from typing import Callable, Iterable, List, Optional, Sequence

from ..errors import ValidationError
from ..utils.datetime_utils import end_of_day, to_local
from .models import EnrichedTask, RawTask, TaskDue

logger = logging.getLogger(__name__)

RECENT_COMPLETION_WINDOW = datetime.timedelta(minutes=5)

_FAR_FUTURE = float("inf")


def parse_due(due: Optional[TaskDue]) -> tuple[Optional[datetime.datetime], bool]:
    """Return the due instant and whether it carries an explicit time.

    Date-only values land on 23:59:59 local time; date-time values are kept
    exactly as given (naive values are read as local time).
    """
    if due is None or not due.date:
        return None, False

    value = due.date
    try:
        if "T" in value:
            return to_local(datetime.datetime.fromisoformat(value)), True
        return end_of_day(datetime.date.fromisoformat(value)), False
    except ValueError:
        logger.debug("Ignoring unparseable due date %r", value)
        return None, False


def require_iso_due(value: str) -> str:
    """Return ``value`` if it is an ISO date or date-time, else raise ``ValidationError``."""

    instant, _ = parse_due(TaskDue(date=value))
    if instant is None:
        raise ValidationError(
            f"Unsupported due date {value!r}; use YYYY-MM-DD or an ISO date-time"
        )
    return value


def is_recently_completed(
    completed_at: Optional[str], now: datetime.datetime
) -> bool:
    """True when ``completed_at`` lies within the last five minutes of ``now``."""

    if not completed_at:
        return False
    try:
        completed = to_local(datetime.datetime.fromisoformat(completed_at))
    except ValueError:
        return False
    return now - completed < RECENT_COMPLETION_WINDOW


def is_visible(task: RawTask, now: datetime.datetime) -> bool:
    if task.is_deleted:
        return False
    if not task.checked:
        return True
    return is_recently_completed(task.completed_at, now)


def enrich_task(
    task: RawTask,
    *,
    project_name: str = "",
    label_names: Optional[List[str]] = None,
) -> EnrichedTask:
    due_date, has_time = parse_due(task.due)
    return EnrichedTask(
        id=task.id,
        content=task.content,
        checked=task.checked,
        completed_at=task.completed_at,
        due=task.due,
        project_id=task.project_id,
        child_order=task.child_order,
        project_name=project_name,
        labels=list(task.labels),
        label_names=list(label_names or []),
        due_date=due_date,
        has_time=has_time,
    )


def _completion_rank(task: EnrichedTask) -> float:
    if not task.checked:
        return 0.0
    if not task.completed_at:
        return _FAR_FUTURE
    try:
        completed = to_local(datetime.datetime.fromisoformat(task.completed_at))
    except ValueError:
        return _FAR_FUTURE
    # Newer completions sort first.
    return -completed.timestamp()


def _sort_key(task: EnrichedTask) -> tuple:
    has_due = task.due_date is not None
    return (
        task.checked,
        _completion_rank(task),
        not has_due,
        task.due_date.timestamp() if has_due else 0.0,
        (not has_due) and task.has_project,
        task.child_order,
    )


def sort_tasks(tasks: Iterable[EnrichedTask]) -> List[EnrichedTask]:
    """Return tasks in the canonical order shared by all providers.

    1. unchecked before checked
    2. checked: most recently completed first
    3. tasks with a due date before tasks without
    4. earlier due date first
    5. no due date: no project (or Inbox) before a project
    6. provider ordering key ascending
    """
    return sorted(tasks, key=_sort_key)


def build_task_view(
    tasks: Sequence[RawTask],
    now: datetime.datetime,
    *,
    project_name: Callable[[Optional[str]], str] = lambda _project_id: "",
    label_names: Callable[[List[str]], List[str]] = lambda _labels: [],
) -> List[EnrichedTask]:
    """Filter, enrich and sort ``tasks`` as seen at ``now``."""

    enriched = [
        enrich_task(
            task,
            project_name=project_name(task.project_id),
            label_names=label_names(task.labels),
        )
        for task in tasks
        if is_visible(task, now)
    ]
    return sort_tasks(enriched)


__all__ = [
    "RECENT_COMPLETION_WINDOW",
    "parse_due",
    "require_iso_due",
    "is_recently_completed",
    "is_visible",
    "enrich_task",
    "sort_tasks",
    "build_task_view",
]
