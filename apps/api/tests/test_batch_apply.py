from __future__ import annotations

import asyncio

import pytest

from app.organize.apply import BatchApplier, suggestion_patch
from app.realtime.cache import QueryCache
from app.schemas import Suggestion


def _suggestion(task_id: str, details: dict) -> Suggestion:
  return Suggestion.model_validate(
    {"taskId": task_id, "taskTitle": task_id, "details": details, "reason": "r", "confidence": 80, "included": True}
  )


MOVE = {
  "type": "column_move",
  "currentBoardId": "b1",
  "currentBoardName": "Work",
  "currentColumnId": "c1",
  "currentColumnName": "To Do",
  "suggestedBoardId": "b1",
  "suggestedBoardName": "Work",
  "suggestedColumnId": "c2",
  "suggestedColumnName": "In Progress",
}
PRIORITY = {"type": "priority_change", "currentPriority": "low", "suggestedPriority": "high"}
DUE = {"type": "due_date_adjust", "currentDueDate": None, "suggestedDueDate": "2026-03-06T00:00:00Z"}


class RecordingUpdater:
  def __init__(self, fail: set[str] | None = None) -> None:
    self.fail = fail or set()
    self.calls: list[tuple[str, dict]] = []

  async def update_task(self, task_id: str, patch: dict) -> dict:
    self.calls.append((task_id, patch))
    await asyncio.sleep(0)
    if task_id in self.fail:
      raise RuntimeError(f"Failed to update task {task_id}")
    return {"id": task_id}


def test_patch_per_variant() -> None:
  assert suggestion_patch(_suggestion("t", MOVE).details) == {"columnId": "c2"}
  assert suggestion_patch(_suggestion("t", PRIORITY).details) == {"priority": "high"}
  assert suggestion_patch(_suggestion("t", DUE).details) == {"dueDate": "2026-03-06T00:00:00Z"}


@pytest.mark.anyio
async def test_partial_failure_is_attributed_to_its_suggestion() -> None:
  updater = RecordingUpdater(fail={"t2"})
  batch = [_suggestion("t1", MOVE), _suggestion("t2", PRIORITY), _suggestion("t3", DUE)]
  result = await BatchApplier(updater).apply(batch)
  assert result.applied == 2
  assert result.failed == 1
  assert [e.taskId for e in result.errors] == ["t2"]
  assert result.errors[0].error == "Failed to update task t2"
  assert sorted(tid for tid, _ in updater.calls) == ["t1", "t2", "t3"]


@pytest.mark.anyio
async def test_all_succeed_omits_errors() -> None:
  result = await BatchApplier(RecordingUpdater()).apply([_suggestion("t1", MOVE), _suggestion("t2", PRIORITY)])
  assert (result.applied, result.failed, result.errors) == (2, 0, None)
  assert "errors" not in result.model_dump(exclude_none=True)


@pytest.mark.anyio
async def test_all_fail() -> None:
  result = await BatchApplier(RecordingUpdater(fail={"t1", "t2"})).apply([_suggestion("t1", MOVE), _suggestion("t2", DUE)])
  assert (result.applied, result.failed) == (0, 2)
  assert [e.taskId for e in result.errors] == ["t1", "t2"]


@pytest.mark.anyio
async def test_exception_without_message_reports_unknown_error() -> None:
  class Silent:
    async def update_task(self, task_id: str, patch: dict) -> None:
      raise RuntimeError()

  result = await BatchApplier(Silent()).apply([_suggestion("t1", MOVE)])
  assert result.errors[0].error == "Unknown error"


@pytest.mark.anyio
async def test_updates_run_concurrently() -> None:
  started = 0
  release = asyncio.Event()

  class Gate:
    async def update_task(self, task_id: str, patch: dict) -> None:
      nonlocal started
      started += 1
      if started == 3:
        release.set()
      await asyncio.wait_for(release.wait(), timeout=1)

  result = await BatchApplier(Gate()).apply([_suggestion(f"t{i}", PRIORITY) for i in range(3)])
  assert result.applied == 3


@pytest.mark.anyio
async def test_cached_views_invalidated_after_settle() -> None:
  cache = QueryCache()
  cache.set(("tasks", "work"), ["stale"])
  cache.set(("calendar", "2026-03"), ["stale"])
  cache.set(("boards", "work"), ["stale"])
  cache.set(("inbox",), ["kept"])
  result = await BatchApplier(RecordingUpdater(fail={"t1"}), cache=cache).apply([_suggestion("t1", MOVE)])
  assert result.failed == 1
  assert cache.keys() == [("inbox",)]


@pytest.mark.anyio
async def test_excluded_suggestions_are_never_sent() -> None:
  updater = RecordingUpdater()
  skipped = _suggestion("t2", PRIORITY).model_copy(update={"included": False})
  result = await BatchApplier(updater).apply([_suggestion("t1", MOVE), skipped])
  assert [tid for tid, _ in updater.calls] == ["t1"]
  assert (result.applied, result.failed) == (1, 0)
