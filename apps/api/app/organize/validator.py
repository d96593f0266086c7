from __future__ import annotations

import logging
from dataclasses import dataclass

from app.config import settings
from app.organize.context import WorkloadContext
from app.schemas import (
  ColumnMoveDetails,
  DueDateAdjustDetails,
  PriorityChangeDetails,
  RawSuggestion,
  Suggestion,
  SuggestionDetails,
  parse_iso_utc,
)

logger = logging.getLogger(__name__)


def is_noop(details: SuggestionDetails) -> bool:
  if isinstance(details, ColumnMoveDetails):
    return details.currentColumnId == details.suggestedColumnId
  if isinstance(details, PriorityChangeDetails):
    return details.currentPriority == details.suggestedPriority
  if isinstance(details, DueDateAdjustDetails):
    current = parse_iso_utc(details.currentDueDate)
    return current is not None and current == parse_iso_utc(details.suggestedDueDate)
  raise TypeError(f"unknown suggestion detail: {type(details).__name__}")


def unique_by_task(suggestions: list[Suggestion]) -> list[Suggestion]:
  """One suggestion per task: the highest-confidence one, first on ties, in received order."""
  best: dict[str, int] = {}
  for i, s in enumerate(suggestions):
    j = best.get(s.taskId)
    if j is None or s.confidence > suggestions[j].confidence:
      best[s.taskId] = i
  keep = set(best.values())
  return [s for i, s in enumerate(suggestions) if i in keep]


@dataclass
class SuggestionValidator:
  min_confidence: int = 0
  max_suggestions: int | None = None

  @classmethod
  def from_settings(cls) -> SuggestionValidator:
    return cls(min_confidence=settings.organize_min_confidence, max_suggestions=settings.organize_max_suggestions)

  def validate(self, raw: list[RawSuggestion], ctx: WorkloadContext | None = None) -> list[Suggestion]:
    """Drop no-ops and unknown tasks, enforce confidence floor and cap.

    Survivors keep the order the oracle returned them in. Repeated task ids
    and the cap both resolve in favour of the highest-confidence entries.
    """
    kept: list[Suggestion] = []
    dropped = 0
    for s in raw:
      if is_noop(s.details) or s.confidence < self.min_confidence:
        dropped += 1
        continue
      title = s.taskTitle
      description = s.taskDescription
      if ctx is not None:
        task = ctx.task(s.taskId)
        if task is None:
          dropped += 1
          continue
        title = title or task.title
        description = description if description is not None else task.description
      kept.append(
        Suggestion(
          taskId=s.taskId,
          taskTitle=title or "",
          taskDescription=description,
          details=s.details,
          reason=s.reason,
          confidence=s.confidence,
          included=True,
        )
      )

    # A batch holds at most one change per task.
    unique = unique_by_task(kept)
    dropped += len(kept) - len(unique)
    kept = unique

    if self.max_suggestions is not None and len(kept) > self.max_suggestions:
      ranked = sorted(range(len(kept)), key=lambda i: kept[i].confidence, reverse=True)
      keep_idx = set(ranked[: self.max_suggestions])
      dropped += len(kept) - len(keep_idx)
      kept = [s for i, s in enumerate(kept) if i in keep_idx]

    if dropped:
      logger.info("validator dropped %d of %d suggestion(s)", dropped, len(raw))
    return kept
