"""Domain models representing tasks before and after enrichment."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskDue(BaseModel):
    """Due specification: a date-only (``YYYY-MM-DD``) or date-time string."""

    model_config = ConfigDict(extra="ignore")

    date: str
    string: Optional[str] = None
    is_recurring: bool = False
    timezone: Optional[str] = None


class RawTask(BaseModel):
    """Backend-native task normalized to one shape; never shown to the UI."""

    model_config = ConfigDict(extra="ignore")

    id: str
    content: str = ""
    checked: bool = False
    completed_at: Optional[str] = None
    due: Optional[TaskDue] = None
    project_id: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    child_order: int = 0
    is_deleted: bool = False


@dataclass(slots=True)
class EnrichedTask:
    """UI-ready task recomputed from a raw task and lookup tables on every read."""

    id: str
    content: str
    checked: bool
    completed_at: Optional[str]
    due: Optional[TaskDue]
    project_id: Optional[str]
    child_order: int
    project_name: str = ""
    labels: List[str] = field(default_factory=list)
    label_names: List[str] = field(default_factory=list)
    due_date: Optional[datetime.datetime] = None
    has_time: bool = False

    @property
    def has_project(self) -> bool:
        """True when the task belongs to a project other than the Inbox."""

        return bool(self.project_id) and self.project_name != "Inbox"
