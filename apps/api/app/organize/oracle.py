from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from app.ai.providers import AIProvider
from app.config import settings
from app.organize.context import WorkloadContext
from app.organize.errors import OrganizeError
from app.schemas import OracleOutput

logger = logging.getLogger(__name__)

ANALYSIS_GUIDANCE = """## Analysis Instructions

Analyze the above tasks and provide intelligent organization suggestions based on:

1. **Deadline Urgency**: Identify tasks due soon that need priority escalation or column movement
2. **Workload Balancing**: Look for overloaded columns (compare taskCount to wipLimit if set)
3. **Content Similarity**: Find related tasks that should be grouped together

For each suggestion:
- Provide a clear, actionable reason
- Include confidence score (only suggest if >= {min_confidence})
- Limit to maximum {max_suggestions} suggestions (prioritize highest confidence)

Focus on changes that will have the most positive impact on productivity."""


def _local_now(now: datetime) -> datetime:
  # organize_timezone is checked when settings load.
  return now.astimezone(ZoneInfo(settings.organize_timezone))


def oracle_context(ctx: WorkloadContext) -> dict[str, Any]:
  return {
    "kind": "auto_organize",
    "now": _local_now(ctx.now).isoformat(timespec="seconds"),
    "timezone": settings.organize_timezone,
    "boards": [b.as_context() for b in ctx.boards_with_columns],
    "tasks": [t.as_context() for t in ctx.ongoing_tasks],
    "minConfidence": settings.organize_min_confidence,
    "maxSuggestions": settings.organize_max_suggestions,
  }


def render_prompt(context: dict[str, Any]) -> str:
  local = datetime.fromisoformat(context["now"])
  sections = [
    "## Current Date and Time",
    f"- Current time ({context['timezone']}): {context['now']}",
    f"- Current date: {local.date().isoformat()}",
    f"- Day of week: {local.strftime('%A')}",
    "",
    "Use this for calculating all deadline urgency and workload distribution.",
    "",
    "## Board Structure",
    json.dumps(context["boards"], indent=2),
    "",
    f"## Ongoing Tasks to Analyze ({len(context['tasks'])} tasks)",
    json.dumps(context["tasks"], indent=2),
    "",
    ANALYSIS_GUIDANCE.format(min_confidence=context["minConfidence"], max_suggestions=context["maxSuggestions"]),
  ]
  return "\n".join(sections)


def parse_oracle_output(text: str) -> OracleOutput:
  if not isinstance(text, str) or not text.strip():
    raise ValueError("empty oracle output")
  return OracleOutput.model_validate_json(text)


class SuggestionOracleClient:
  def __init__(self, provider: AIProvider, *, timeout: float | None = None) -> None:
    self.provider = provider
    self.timeout = timeout if timeout is not None else settings.ai_timeout_seconds

  async def generate(self, ctx: WorkloadContext) -> OracleOutput:
    context = oracle_context(ctx)
    prompt = render_prompt(context)
    try:
      text = await asyncio.wait_for(self.provider.generate(prompt=prompt, context=context), timeout=self.timeout)
      output = parse_oracle_output(text)
    except asyncio.TimeoutError as exc:
      logger.warning("oracle timed out after %.1fs", self.timeout)
      raise OrganizeError() from exc
    except (ValidationError, ValueError) as exc:
      logger.warning("oracle output rejected: %s", exc)
      raise OrganizeError() from exc
    except Exception as exc:
      logger.exception("oracle call failed")
      raise OrganizeError() from exc
    logger.info("oracle returned %d raw suggestion(s)", len(output.suggestions))
    return output
