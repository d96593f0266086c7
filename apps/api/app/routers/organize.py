from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.ai.providers import get_ai_provider
from app.audit import write_audit
from app.deps import get_current_user, get_db
from app.models import User
from app.organize.context import SqlWorkloadStore
from app.organize.oracle import SuggestionOracleClient
from app.organize.service import generate_suggestions
from app.organize.validator import SuggestionValidator
from app.schemas import AutoOrganizeIn, AutoOrganizeOut

router = APIRouter(prefix="/tasks", tags=["organize"])


def get_oracle() -> SuggestionOracleClient:
  return SuggestionOracleClient(get_ai_provider())


def get_validator() -> SuggestionValidator:
  return SuggestionValidator.from_settings()


@router.post("/auto-organize", response_model=AutoOrganizeOut)
async def auto_organize(
  payload: AutoOrganizeIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  oracle: SuggestionOracleClient = Depends(get_oracle),
  validator: SuggestionValidator = Depends(get_validator),
) -> AutoOrganizeOut:
  # Read-only for tasks: suggestions are returned for review and never stored.
  out = await generate_suggestions(
    store=SqlWorkloadStore(db),
    oracle=oracle,
    user_id=user.id,
    request=payload,
    validator=validator,
  )
  await write_audit(
    db,
    event_type="ai.organize.preview",
    entity_type="User",
    entity_id=user.id,
    board_id=payload.boardId,
    actor_id=user.id,
    payload={
      "space": payload.space,
      "suggestions": len(out.suggestions),
      "analyzed": out.totalTasksAnalyzed,
      "skipped": out.completedTasksSkipped,
    },
  )
  await db.commit()
  return out
