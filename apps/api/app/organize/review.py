from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Protocol

from app.organize.apply import BatchApplier
from app.organize.errors import OrganizeError, ReviewStateError
from app.organize.validator import unique_by_task
from app.realtime.cache import QueryCache
from app.schemas import (
  AutoOrganizeIn,
  AutoOrganizeOut,
  BatchApplyResult,
  BoardOut,
  ColumnMoveDetails,
  ColumnOut,
  Suggestion,
)

logger = logging.getLogger(__name__)


class ReviewState(str, Enum):
  IDLE = "idle"
  GENERATING = "generating"
  REVIEWING = "reviewing"
  APPLYING = "applying"
  CLOSED = "closed"
  ERROR = "error"


class SuggestionSource(Protocol):
  async def auto_organize(self, request: AutoOrganizeIn) -> AutoOrganizeOut: ...


class BoardSource(Protocol):
  async def list_boards(self, space: str) -> list[BoardOut]: ...


class ReviewSession:
  """One review dialog: holds the editable suggestion list from a single generation.

  A session is created per generation and thrown away on close; nothing is
  staged server-side, so the edited list itself is what gets applied.
  """

  def __init__(
    self,
    *,
    source: SuggestionSource,
    applier: BatchApplier,
    boards: BoardSource,
    cache: QueryCache | None = None,
  ) -> None:
    self.source = source
    self.applier = applier
    self.boards = boards
    self.cache = cache if cache is not None else QueryCache()
    self.state = ReviewState.IDLE
    self.suggestions: list[Suggestion] = []
    self.summary: str | None = None
    self.total_tasks_analyzed = 0
    self.completed_tasks_skipped = 0
    self.space: str | None = None
    self.error: str | None = None
    self.result: BatchApplyResult | None = None
    self._apply_task: asyncio.Future[BatchApplyResult] | None = None

  def _require(self, *states: ReviewState) -> None:
    if self.state not in states:
      raise ReviewStateError(f"not allowed while {self.state.value}")

  async def generate(self, request: AutoOrganizeIn) -> AutoOrganizeOut:
    self._require(ReviewState.IDLE, ReviewState.ERROR)
    self.state = ReviewState.GENERATING
    self.error = None
    try:
      out = await self.source.auto_organize(request)
    except OrganizeError as exc:
      self._fail(exc)
      raise
    except Exception as exc:
      logger.exception("suggestion generation failed")
      err = OrganizeError()
      self._fail(err)
      raise err from exc
    self.space = request.space
    self.suggestions = [s.model_copy() for s in unique_by_task(out.suggestions)]
    self.summary = out.summary
    self.total_tasks_analyzed = out.totalTasksAnalyzed
    self.completed_tasks_skipped = out.completedTasksSkipped
    self.state = ReviewState.REVIEWING
    return out

  def _fail(self, exc: OrganizeError) -> None:
    self.suggestions = []
    self.error = exc.message
    self.state = ReviewState.ERROR

  def dismiss_error(self) -> None:
    self._require(ReviewState.ERROR)
    self.error = None
    self.state = ReviewState.IDLE

  @property
  def included_count(self) -> int:
    return sum(1 for s in self.suggestions if s.included)

  @property
  def can_apply(self) -> bool:
    return self.state == ReviewState.REVIEWING and self.included_count > 0

  @property
  def apply_label(self) -> str:
    n = self.included_count
    return f"Apply {n} Changes" if n > 0 else "Apply Changes"

  def accepted(self) -> list[Suggestion]:
    return [s for s in self.suggestions if s.included]

  def toggle_included(self, task_id: str) -> None:
    self._require(ReviewState.REVIEWING)
    self.suggestions = [s.model_copy(update={"included": not s.included}) if s.taskId == task_id else s for s in self.suggestions]

  def update_suggestion(self, task_id: str, suggestion: Suggestion) -> None:
    self._require(ReviewState.REVIEWING)
    if suggestion.taskId != task_id:
      raise ValueError(f"replacement is for task {suggestion.taskId}, not {task_id}")
    self.suggestions = [suggestion if s.taskId == task_id else s for s in self.suggestions]

  async def board_options(self) -> list[BoardOut]:
    # Fetched on first edit; the generation context is not reused here.
    space = self.space or "work"
    return await self.cache.fetch(("boards", space), lambda: self.boards.list_boards(space))

  def _column_move(self, task_id: str) -> Suggestion:
    s = next((x for x in self.suggestions if x.taskId == task_id and isinstance(x.details, ColumnMoveDetails)), None)
    if s is None:
      raise KeyError(f"no column move suggestion for task {task_id}")
    return s

  def _replace_details(self, old: Suggestion, details: ColumnMoveDetails) -> None:
    new = old.model_copy(update={"details": details})
    self.suggestions = [new if s is old else s for s in self.suggestions]

  async def retarget_board(self, task_id: str, board_id: str) -> Suggestion:
    """Point a column move at another board; its target column resets to that board's first column."""
    self._require(ReviewState.REVIEWING)
    s = self._column_move(task_id)
    board = next((b for b in await self.board_options() if b.id == board_id), None)
    if board is None:
      raise ValueError(f"unknown board {board_id}")
    if not board.columns:
      return s
    first = board.columns[0]
    self._replace_details(
      s,
      s.details.model_copy(
        update={
          "suggestedBoardId": board.id,
          "suggestedBoardName": board.name,
          "suggestedColumnId": first.id,
          "suggestedColumnName": first.name,
        }
      ),
    )
    return self._column_move(task_id)

  async def column_options(self, task_id: str) -> list[ColumnOut]:
    s = self._column_move(task_id)
    board = next((b for b in await self.board_options() if b.id == s.details.suggestedBoardId), None)
    return list(board.columns) if board else []

  async def retarget_column(self, task_id: str, column_id: str) -> Suggestion:
    self._require(ReviewState.REVIEWING)
    s = self._column_move(task_id)
    column = next((c for c in await self.column_options(task_id) if c.id == column_id), None)
    if column is None:
      raise ValueError(f"column {column_id} is not on the selected board")
    self._replace_details(s, s.details.model_copy(update={"suggestedColumnId": column.id, "suggestedColumnName": column.name}))
    return self._column_move(task_id)

  def _finish_apply(self, fut: asyncio.Future[BatchApplyResult]) -> None:
    if not fut.cancelled() and fut.exception() is None:
      self.result = fut.result()
    self.suggestions = []
    self.state = ReviewState.CLOSED

  async def apply(self) -> BatchApplyResult:
    self._require(ReviewState.REVIEWING)
    batch = self.accepted()
    if not batch:
      raise ReviewStateError("nothing selected to apply")
    self.state = ReviewState.APPLYING
    self._apply_task = asyncio.ensure_future(self.applier.apply(batch))
    self._apply_task.add_done_callback(self._finish_apply)
    # Closing the dialog or cancelling the caller does not stop in-flight updates.
    return await asyncio.shield(self._apply_task)

  async def wait_applied(self) -> BatchApplyResult | None:
    if self._apply_task is None:
      return None
    return await self._apply_task

  def close(self) -> None:
    if self.state == ReviewState.APPLYING:
      logger.info("review closed while applying; batch keeps running")
      return
    self.suggestions = []
    self.state = ReviewState.CLOSED
