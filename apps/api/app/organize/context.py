from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models import Board, Column, Task, as_utc
from app.organize.errors import OrganizeError
from app.schemas import AutoOrganizeIn, AutoOrganizeOut

logger = logging.getLogger(__name__)

NO_BOARDS_SUMMARY = "No boards found in this space"
NO_ONGOING_SUMMARY = "No ongoing tasks found to organize"


@dataclass(frozen=True)
class BoardRecord:
  id: str
  name: str
  space: str
  description: str | None = None


@dataclass(frozen=True)
class ColumnRecord:
  id: str
  name: str
  board_id: str
  wip_limit: int | None = None
  position: int = 0


@dataclass(frozen=True)
class TaskRecord:
  id: str
  title: str
  column_id: str
  board_id: str
  description: str | None = None
  due_date: datetime | None = None
  priority: str | None = None
  labels: tuple[str, ...] = ()


@dataclass(frozen=True)
class DueWindow:
  """Date predicate for the task scan.

  start+end: due in [start, end] or overdue. start only: due >= start or
  overdue. end only: due <= end. Neither: everything in scope. Tasks without
  a due date only pass when no bound is given.
  """

  now: datetime
  start: datetime | None = None
  end: datetime | None = None

  @classmethod
  def from_epoch(cls, *, now: datetime, start: int | None, end: int | None) -> DueWindow:
    return cls(
      now=now,
      start=datetime.fromtimestamp(start, tz=timezone.utc) if start is not None else None,
      end=datetime.fromtimestamp(end, tz=timezone.utc) if end is not None else None,
    )

  @property
  def unbounded(self) -> bool:
    return self.start is None and self.end is None

  def matches(self, due: datetime | None) -> bool:
    if self.unbounded:
      return True
    due = as_utc(due)
    if due is None:
      return False
    overdue = due < self.now
    if self.start is not None and self.end is not None:
      return (self.start <= due <= self.end) or overdue
    if self.start is not None:
      return due >= self.start or overdue
    return due <= self.end

  def clause(self, due_col: Any) -> Any | None:
    if self.unbounded:
      return None
    overdue = and_(due_col.isnot(None), due_col < self.now)
    if self.start is not None and self.end is not None:
      return or_(and_(due_col >= self.start, due_col <= self.end), overdue)
    if self.start is not None:
      return or_(due_col >= self.start, overdue)
    return due_col <= self.end


class WorkloadStore(Protocol):
  async def list_boards(self, *, user_id: str, space: str, board_id: str | None = None) -> list[BoardRecord]: ...

  async def list_columns(self, *, board_ids: list[str]) -> list[ColumnRecord]: ...

  async def list_tasks(self, *, user_id: str, column_ids: list[str], window: DueWindow) -> list[TaskRecord]: ...


class SqlWorkloadStore:
  def __init__(self, db: AsyncSession) -> None:
    self.db = db

  async def list_boards(self, *, user_id: str, space: str, board_id: str | None = None) -> list[BoardRecord]:
    q = select(Board).where(Board.user_id == user_id, Board.space == space)
    if board_id:
      q = q.where(Board.id == board_id)
    res = await self.db.execute(q.order_by(Board.created_at.asc()))
    return [BoardRecord(id=b.id, name=b.name, space=b.space, description=b.description) for b in res.scalars().all()]

  async def list_columns(self, *, board_ids: list[str]) -> list[ColumnRecord]:
    if not board_ids:
      return []
    res = await self.db.execute(select(Column).where(Column.board_id.in_(board_ids)).order_by(Column.position.asc()))
    return [
      ColumnRecord(id=c.id, name=c.name, board_id=c.board_id, wip_limit=c.wip_limit, position=c.position)
      for c in res.scalars().all()
    ]

  async def list_tasks(self, *, user_id: str, column_ids: list[str], window: DueWindow) -> list[TaskRecord]:
    if not column_ids:
      return []
    q = select(Task).where(Task.user_id == user_id, Task.column_id.in_(column_ids))
    due_clause = window.clause(Task.due_date)
    if due_clause is not None:
      q = q.where(due_clause)
    res = await self.db.execute(q.order_by(Task.created_at.asc()))
    return [
      TaskRecord(
        id=t.id,
        title=t.title,
        column_id=t.column_id,
        board_id=t.board_id,
        description=t.description,
        due_date=as_utc(t.due_date),
        priority=t.priority,
        labels=tuple(t.labels or ()),
      )
      for t in res.scalars().all()
    ]


@dataclass
class ColumnLoad:
  id: str
  name: str
  wip_limit: int | None = None
  task_count: int = 0

  def as_context(self) -> dict[str, Any]:
    return {"id": self.id, "name": self.name, "wipLimit": self.wip_limit, "taskCount": self.task_count}


@dataclass
class BoardWithColumns:
  id: str
  name: str
  description: str | None
  columns: list[ColumnLoad] = field(default_factory=list)

  def as_context(self) -> dict[str, Any]:
    return {
      "id": self.id,
      "name": self.name,
      "description": self.description,
      "columns": [c.as_context() for c in self.columns],
    }


@dataclass(frozen=True)
class OngoingTask:
  id: str
  title: str
  description: str | None
  due_date: datetime | None
  priority: str | None
  labels: tuple[str, ...]
  board_id: str
  board_name: str
  column_id: str
  column_name: str

  def as_context(self) -> dict[str, Any]:
    return {
      "id": self.id,
      "title": self.title,
      "description": self.description,
      "dueDate": self.due_date.isoformat() if self.due_date else None,
      "priority": self.priority,
      "labels": list(self.labels),
      "boardId": self.board_id,
      "boardName": self.board_name,
      "columnId": self.column_id,
      "columnName": self.column_name,
    }


@dataclass
class WorkloadContext:
  now: datetime
  boards_with_columns: list[BoardWithColumns]
  ongoing_tasks: list[OngoingTask]
  completed_tasks_skipped: int

  def task(self, task_id: str) -> OngoingTask | None:
    return next((t for t in self.ongoing_tasks if t.id == task_id), None)


def is_completion_column(name: str | None) -> bool:
  return (name or "").strip().lower() == settings.organize_completion_column.strip().lower()


def _column_counts(tasks: Iterable[OngoingTask]) -> Counter[str]:
  return Counter(t.column_id for t in tasks)


class WorkloadContextBuilder:
  def __init__(self, store: WorkloadStore) -> None:
    self.store = store

  async def build(self, *, user_id: str, request: AutoOrganizeIn, now: datetime | None = None) -> WorkloadContext | AutoOrganizeOut:
    now = now or datetime.now(timezone.utc)
    window = DueWindow.from_epoch(now=now, start=request.startDate, end=request.endDate)
    try:
      boards = await self.store.list_boards(user_id=user_id, space=request.space, board_id=request.boardId)
      if not boards:
        return AutoOrganizeOut(suggestions=[], summary=NO_BOARDS_SUMMARY, totalTasksAnalyzed=0, completedTasksSkipped=0)
      columns = await self.store.list_columns(board_ids=[b.id for b in boards])
      tasks = await self.store.list_tasks(user_id=user_id, column_ids=[c.id for c in columns], window=window)
    except Exception as exc:
      logger.exception("workload read failed for user=%s space=%s", user_id, request.space)
      raise OrganizeError() from exc

    board_by_id = {b.id: b for b in boards}
    column_by_id = {c.id: c for c in columns}

    ongoing: list[OngoingTask] = []
    completed = 0
    for t in tasks:
      col = column_by_id.get(t.column_id)
      if col is None:
        continue
      if is_completion_column(col.name):
        completed += 1
        continue
      board = board_by_id.get(col.board_id)
      ongoing.append(
        OngoingTask(
          id=t.id,
          title=t.title,
          description=t.description,
          due_date=t.due_date,
          priority=t.priority,
          labels=tuple(t.labels),
          board_id=col.board_id,
          board_name=board.name if board else "",
          column_id=col.id,
          column_name=col.name,
        )
      )

    if not ongoing:
      return AutoOrganizeOut(suggestions=[], summary=NO_ONGOING_SUMMARY, totalTasksAnalyzed=0, completedTasksSkipped=completed)

    counts = _column_counts(ongoing)
    boards_with_columns = [
      BoardWithColumns(
        id=b.id,
        name=b.name,
        description=b.description,
        columns=[
          ColumnLoad(id=c.id, name=c.name, wip_limit=c.wip_limit, task_count=counts.get(c.id, 0))
          for c in columns
          if c.board_id == b.id
        ],
      )
      for b in boards
    ]
    logger.info(
      "workload built: boards=%d ongoing=%d completed_skipped=%d",
      len(boards_with_columns),
      len(ongoing),
      completed,
    )
    return WorkloadContext(
      now=now,
      boards_with_columns=boards_with_columns,
      ongoing_tasks=ongoing,
      completed_tasks_skipped=completed,
    )
