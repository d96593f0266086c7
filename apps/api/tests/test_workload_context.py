from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.organize.context import (
  NO_BOARDS_SUMMARY,
  NO_ONGOING_SUMMARY,
  BoardRecord,
  ColumnRecord,
  DueWindow,
  TaskRecord,
  WorkloadContext,
  WorkloadContextBuilder,
  is_completion_column,
)
from app.organize.errors import GENERATION_FAILED_MESSAGE, OrganizeError
from app.schemas import AutoOrganizeIn, AutoOrganizeOut

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class MemoryStore:
  def __init__(self, boards=(), columns=(), tasks=()) -> None:
    self.boards = list(boards)
    self.columns = list(columns)
    self.tasks = list(tasks)

  async def list_boards(self, *, user_id, space, board_id=None):
    return [b for b in self.boards if b.space == space and (board_id is None or b.id == board_id)]

  async def list_columns(self, *, board_ids):
    return [c for c in self.columns if c.board_id in board_ids]

  async def list_tasks(self, *, user_id, column_ids, window):
    return [t for t in self.tasks if t.column_id in column_ids and window.matches(t.due_date)]


class BrokenStore(MemoryStore):
  async def list_columns(self, *, board_ids):
    raise ConnectionError("db down")


def _board_store(todo_count: int, done_count: int, *, done_name: str = "Done") -> MemoryStore:
  boards = [BoardRecord(id="b1", name="Work", space="work")]
  columns = [
    ColumnRecord(id="c-todo", name="To Do", board_id="b1", wip_limit=3, position=0),
    ColumnRecord(id="c-done", name=done_name, board_id="b1", position=1),
  ]
  tasks = [TaskRecord(id=f"t{i}", title=f"Todo {i}", column_id="c-todo", board_id="b1", priority="low") for i in range(todo_count)]
  tasks += [TaskRecord(id=f"d{i}", title=f"Done {i}", column_id="c-done", board_id="b1") for i in range(done_count)]
  return MemoryStore(boards, columns, tasks)


@pytest.mark.anyio
async def test_zero_boards_returns_sentinel() -> None:
  out = await WorkloadContextBuilder(MemoryStore()).build(user_id="u1", request=AutoOrganizeIn(space="personal"), now=NOW)
  assert isinstance(out, AutoOrganizeOut)
  assert out.suggestions == []
  assert out.summary == NO_BOARDS_SUMMARY
  assert out.totalTasksAnalyzed == 0
  assert out.completedTasksSkipped == 0


@pytest.mark.anyio
@pytest.mark.parametrize("done_name", ["Done", "DONE", "done"])
async def test_done_columns_counted_in_any_case(done_name: str) -> None:
  store = _board_store(5, 10, done_name=done_name)
  ctx = await WorkloadContextBuilder(store).build(user_id="u1", request=AutoOrganizeIn(space="work"), now=NOW)
  assert isinstance(ctx, WorkloadContext)
  assert len(ctx.ongoing_tasks) == 5
  assert ctx.completed_tasks_skipped == 10
  todo = ctx.boards_with_columns[0].columns[0]
  assert (todo.name, todo.wip_limit, todo.task_count) == ("To Do", 3, 5)
  assert ctx.boards_with_columns[0].columns[1].task_count == 0


@pytest.mark.anyio
async def test_only_completed_tasks_returns_sentinel_with_skipped_count() -> None:
  out = await WorkloadContextBuilder(_board_store(0, 4)).build(user_id="u1", request=AutoOrganizeIn(space="work"), now=NOW)
  assert isinstance(out, AutoOrganizeOut)
  assert out.summary == NO_ONGOING_SUMMARY
  assert out.completedTasksSkipped == 4
  assert out.totalTasksAnalyzed == 0


@pytest.mark.anyio
async def test_ongoing_tasks_carry_resolved_names() -> None:
  ctx = await WorkloadContextBuilder(_board_store(1, 0)).build(user_id="u1", request=AutoOrganizeIn(space="work"), now=NOW)
  task = ctx.ongoing_tasks[0].as_context()
  assert task["boardName"] == "Work"
  assert task["columnName"] == "To Do"
  assert task["dueDate"] is None


@pytest.mark.anyio
async def test_board_filter_narrows_scope() -> None:
  store = _board_store(2, 0)
  store.boards.append(BoardRecord(id="b2", name="Side", space="work"))
  out = await WorkloadContextBuilder(store).build(user_id="u1", request=AutoOrganizeIn(space="work", boardId="b2"), now=NOW)
  assert isinstance(out, AutoOrganizeOut)
  assert out.summary == NO_ONGOING_SUMMARY


@pytest.mark.anyio
async def test_storage_failure_becomes_organize_error() -> None:
  store = BrokenStore([BoardRecord(id="b1", name="Work", space="work")])
  with pytest.raises(OrganizeError) as ei:
    await WorkloadContextBuilder(store).build(user_id="u1", request=AutoOrganizeIn(space="work"), now=NOW)
  assert ei.value.message == GENERATION_FAILED_MESSAGE
  assert isinstance(ei.value.__cause__, ConnectionError)


def test_due_window_bounds() -> None:
  start = NOW + timedelta(days=1)
  end = NOW + timedelta(days=7)
  overdue = NOW - timedelta(days=2)
  inside = NOW + timedelta(days=3)
  after = NOW + timedelta(days=10)
  between_now_and_start = NOW + timedelta(hours=2)

  both = DueWindow(now=NOW, start=start, end=end)
  assert both.matches(inside)
  assert both.matches(overdue)
  assert not both.matches(after)
  assert not both.matches(between_now_and_start)
  assert not both.matches(None)

  only_start = DueWindow(now=NOW, start=start)
  assert only_start.matches(after)
  assert only_start.matches(overdue)
  assert not only_start.matches(between_now_and_start)

  only_end = DueWindow(now=NOW, end=end)
  assert only_end.matches(inside)
  assert only_end.matches(overdue)
  assert not only_end.matches(after)

  unbounded = DueWindow(now=NOW)
  assert unbounded.matches(None)
  assert unbounded.matches(after)


def test_due_window_from_epoch() -> None:
  w = DueWindow.from_epoch(now=NOW, start=int(NOW.timestamp()), end=None)
  assert w.start == NOW
  assert w.end is None


def test_completion_column_name() -> None:
  assert is_completion_column("Done")
  assert is_completion_column(" done ")
  assert not is_completion_column("Done soon")
  assert not is_completion_column(None)
