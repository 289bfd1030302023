"""Tests for the offline task provider."""

from __future__ import annotations

import pytest

from newtab.errors import ValidationError
from newtab.providers.local import LOCAL_TASKS_KEY, LocalTaskProvider


@pytest.mark.asyncio
async def test_add_task_persists_and_enriches(local_storage, clock):
    provider = LocalTaskProvider(local_storage, now=clock)
    await provider.load()

    task = await provider.add_task("Buy milk", "2025-12-20")

    tasks = provider.get_tasks()
    assert [t.content for t in tasks] == ["Buy milk"]
    assert tasks[0].has_time is False
    assert tasks[0].due_date.date().isoformat() == "2025-12-20"

    stored = await local_storage.get(LOCAL_TASKS_KEY, None)
    assert stored["items"][0]["id"] == task.id


@pytest.mark.asyncio
async def test_complete_task_then_hide_after_window(local_storage, clock):
    provider = LocalTaskProvider(local_storage, now=clock)
    task = await provider.add_task("Water plants")

    await provider.complete_task(task.id)
    assert provider.get_tasks()[0].checked

    clock.advance(minutes=6)
    assert provider.get_tasks() == []

    await provider.uncomplete_task(task.id)
    assert [t.id for t in provider.get_tasks()] == [task.id]


@pytest.mark.asyncio
async def test_delete_and_unknown_ids(local_storage, clock):
    provider = LocalTaskProvider(local_storage, now=clock)
    task = await provider.add_task("Temp")

    await provider.complete_task("missing")
    await provider.delete_task(task.id)

    assert provider.get_tasks() == []


@pytest.mark.asyncio
async def test_cache_contract_is_inert(local_storage, clock):
    provider = LocalTaskProvider(local_storage, now=clock)
    await provider.add_task("Keep me")

    provider.invalidate_cache()
    await provider.clear_local_data()

    assert not provider.is_cache_stale()
    reopened = LocalTaskProvider(local_storage, now=clock)
    await reopened.sync()
    assert [t.content for t in reopened.get_tasks()] == ["Keep me"]


@pytest.mark.asyncio
async def test_add_task_rejects_natural_language_due(local_storage, clock):
    provider = LocalTaskProvider(local_storage, now=clock)
    await provider.load()

    with pytest.raises(ValidationError, match="Unsupported due date"):
        await provider.add_task("Call mom", "tomorrow")

    assert provider.get_tasks() == []
    await provider.add_task("Call mom", "2025-12-21T09:30:00")
    assert provider.get_tasks()[0].has_time is True
