from __future__ import annotations

import logging
from datetime import datetime

from app.organize.context import WorkloadContext, WorkloadContextBuilder, WorkloadStore
from app.organize.oracle import SuggestionOracleClient
from app.organize.validator import SuggestionValidator
from app.schemas import AutoOrganizeIn, AutoOrganizeOut

logger = logging.getLogger(__name__)


async def generate_suggestions(
  *,
  store: WorkloadStore,
  oracle: SuggestionOracleClient,
  user_id: str,
  request: AutoOrganizeIn,
  validator: SuggestionValidator | None = None,
  now: datetime | None = None,
) -> AutoOrganizeOut:
  built = await WorkloadContextBuilder(store).build(user_id=user_id, request=request, now=now)
  if not isinstance(built, WorkloadContext):
    return built

  output = await oracle.generate(built)
  suggestions = (validator or SuggestionValidator.from_settings()).validate(output.suggestions, built)
  logger.info(
    "auto-organize user=%s space=%s analyzed=%d suggestions=%d",
    user_id,
    request.space,
    len(built.ongoing_tasks),
    len(suggestions),
  )
  return AutoOrganizeOut(
    suggestions=suggestions,
    summary=output.summary,
    totalTasksAnalyzed=len(built.ongoing_tasks),
    completedTasksSkipped=built.completed_tasks_skipped,
  )
