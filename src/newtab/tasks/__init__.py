"""Task domain package: raw/enriched models and the sort/enrichment engine."""

from .enrichment import (
    build_task_view,
    enrich_task,
    is_recently_completed,
    is_visible,
    parse_due,
    require_iso_due,
    sort_tasks,
)
from .models import EnrichedTask, RawTask, TaskDue

__all__ = [
    "RawTask",
    "TaskDue",
    "EnrichedTask",
    "build_task_view",
    "enrich_task",
    "is_recently_completed",
    "is_visible",
    "parse_due",
    "require_iso_due",
    "sort_tasks",
]
