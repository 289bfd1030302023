"""Tests for task visibility, due-date parsing and ordering."""

from __future__ import annotations

import datetime

from newtab.tasks.enrichment import (
    build_task_view,
    enrich_task,
    is_recently_completed,
    parse_due,
)
from newtab.tasks.models import RawTask, TaskDue
from newtab.utils.datetime_utils import iso_millis

NOW = datetime.datetime(2025, 12, 20, 12, 0).astimezone()


def _task(task_id: str, **fields) -> RawTask:
    return RawTask(id=task_id, content=task_id, **fields)


def _completed(minutes_ago: float) -> str:
    return iso_millis(NOW - datetime.timedelta(minutes=minutes_ago))


class TestVisibility:
    def test_completed_within_window_is_visible(self):
        assert is_recently_completed(_completed(4 + 59 / 60), NOW)

    def test_completed_outside_window_is_hidden(self):
        assert not is_recently_completed(_completed(5 + 1 / 60), NOW)

    def test_missing_completion_time_is_hidden(self):
        view = build_task_view([_task("a", checked=True)], NOW)
        assert view == []

    def test_deleted_tasks_are_hidden(self):
        view = build_task_view([_task("a", is_deleted=True), _task("b")], NOW)
        assert [task.id for task in view] == ["b"]


class TestParseDue:
    def test_date_only_is_end_of_local_day(self):
        due_date, has_time = parse_due(TaskDue(date="2025-12-25"))

        assert has_time is False
        assert due_date == datetime.datetime(2025, 12, 25, 23, 59, 59).astimezone()

    def test_date_time_has_time(self):
        due_date, has_time = parse_due(TaskDue(date="2025-12-25T10:00:00Z"))

        assert has_time is True
        assert due_date == datetime.datetime(
            2025, 12, 25, 10, 0, tzinfo=datetime.timezone.utc
        )

    def test_missing_and_invalid(self):
        assert parse_due(None) == (None, False)
        assert parse_due(TaskDue(date="someday")) == (None, False)


def test_enrich_copies_lookups():
    task = _task("a", project_id="p1", labels=["l1"])

    enriched = enrich_task(task, project_name="Work", label_names=["Urgent"])

    assert enriched.project_name == "Work"
    assert enriched.label_names == ["Urgent"]
    assert enriched.has_project


def test_inbox_does_not_count_as_project():
    enriched = enrich_task(_task("a", project_id="inbox"), project_name="Inbox")

    assert not enriched.has_project


def test_full_ordering():
    names = {"p1": "Work", "inbox": "Inbox"}
    tasks = [
        _task("done-old", checked=True, completed_at=_completed(4), child_order=0),
        _task("no-due-project", project_id="p1", child_order=1),
        _task("due-later", due=TaskDue(date="2025-12-24")),
        _task("done-new", checked=True, completed_at=_completed(1)),
        _task("no-due-inbox-2", project_id="inbox", child_order=5),
        _task("due-soon", due=TaskDue(date="2025-12-21T09:00:00")),
        _task("no-due-inbox-1", child_order=2),
    ]

    view = build_task_view(
        tasks,
        NOW,
        project_name=lambda project_id: names.get(project_id or "", ""),
    )

    assert [task.id for task in view] == [
        "due-soon",
        "due-later",
        "no-due-inbox-1",
        "no-due-inbox-2",
        "no-due-project",
        "done-new",
        "done-old",
    ]


def test_recomputed_on_every_read():
    tasks = [_task("a", checked=True, completed_at=_completed(4))]

    assert len(build_task_view(tasks, NOW)) == 1
    assert build_task_view(tasks, NOW + datetime.timedelta(minutes=2)) == []
