from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, Sequence

from app.realtime.cache import ORGANIZE_INVALIDATION_KEYS, QueryCache
from app.schemas import (
  ApplyErrorOut,
  BatchApplyResult,
  ColumnMoveDetails,
  DueDateAdjustDetails,
  PriorityChangeDetails,
  Suggestion,
  SuggestionDetails,
)

logger = logging.getLogger(__name__)


class TaskUpdater(Protocol):
  async def update_task(self, task_id: str, patch: dict[str, Any]) -> Any: ...


def suggestion_patch(details: SuggestionDetails) -> dict[str, Any]:
  if isinstance(details, ColumnMoveDetails):
    return {"columnId": details.suggestedColumnId}
  if isinstance(details, PriorityChangeDetails):
    return {"priority": details.suggestedPriority}
  if isinstance(details, DueDateAdjustDetails):
    return {"dueDate": details.suggestedDueDate}
  raise TypeError(f"unknown suggestion detail: {type(details).__name__}")


def _error_text(exc: BaseException) -> str:
  return str(exc) or "Unknown error"


class BatchApplier:
  """Applies accepted suggestions as independent single-task updates.

  Updates run concurrently with no transaction: each one lands or fails on
  its own and failures are reported per task.
  """

  def __init__(self, updater: TaskUpdater, *, cache: QueryCache | None = None) -> None:
    self.updater = updater
    self.cache = cache

  async def _apply_one(self, s: Suggestion) -> None:
    await self.updater.update_task(s.taskId, suggestion_patch(s.details))

  async def apply(self, suggestions: Sequence[Suggestion]) -> BatchApplyResult:
    batch = [s for s in suggestions if s.included]
    try:
      results = await asyncio.gather(*(self._apply_one(s) for s in batch), return_exceptions=True)
    finally:
      if self.cache is not None:
        self.cache.invalidate_many(ORGANIZE_INVALIDATION_KEYS)

    errors: list[ApplyErrorOut] = []
    for s, res in zip(batch, results):
      if isinstance(res, BaseException):
        logger.warning("auto-organize update failed for task %s: %s", s.taskId, res)
        errors.append(ApplyErrorOut(taskId=s.taskId, error=_error_text(res)))

    applied = len(batch) - len(errors)
    logger.info("auto-organize batch applied=%d failed=%d", applied, len(errors))
    return BatchApplyResult(applied=applied, failed=len(errors), errors=errors or None)
