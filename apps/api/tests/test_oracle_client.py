from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import pytest

from app.organize.context import BoardWithColumns, ColumnLoad, OngoingTask, WorkloadContext
from app.organize.errors import GENERATION_FAILED_MESSAGE, OrganizeError
from app.organize.oracle import SuggestionOracleClient, oracle_context, render_prompt

NOW = datetime(2026, 3, 2, 0, 30, tzinfo=timezone.utc)


def _ctx() -> WorkloadContext:
  task = OngoingTask(
    id="t1",
    title="Pay rent",
    description=None,
    due_date=datetime(2026, 3, 3, tzinfo=timezone.utc),
    priority="low",
    labels=("finance",),
    board_id="b1",
    board_name="Home",
    column_id="c1",
    column_name="To Do",
  )
  board = BoardWithColumns(id="b1", name="Home", description=None, columns=[ColumnLoad(id="c1", name="To Do", wip_limit=3, task_count=1)])
  return WorkloadContext(now=NOW, boards_with_columns=[board], ongoing_tasks=[task], completed_tasks_skipped=0)


class FixedProvider:
  def __init__(self, text: str) -> None:
    self.text = text
    self.prompts: list[str] = []

  async def generate(self, *, prompt: str, context: dict) -> str:
    self.prompts.append(prompt)
    return self.text


class SlowProvider:
  async def generate(self, *, prompt: str, context: dict) -> str:
    await asyncio.sleep(5)
    return "{}"


class FailingProvider:
  async def generate(self, *, prompt: str, context: dict) -> str:
    raise RuntimeError("upstream 500")


VALID = {
  "summary": "One change",
  "suggestions": [
    {
      "taskId": "t1",
      "taskTitle": "Pay rent",
      "details": {"type": "priority_change", "currentPriority": "low", "suggestedPriority": "urgent"},
      "reason": "Due within 24 hours",
      "confidence": 90,
    }
  ],
}


def test_context_and_prompt_rendering() -> None:
  context = oracle_context(_ctx())
  # 00:30 UTC is 09:30 in Tokyo on the same day.
  assert context["now"] == "2026-03-02T09:30:00+09:00"
  assert context["boards"][0]["columns"][0] == {"id": "c1", "name": "To Do", "wipLimit": 3, "taskCount": 1}
  assert context["tasks"][0]["boardName"] == "Home"

  prompt = render_prompt(context)
  assert "## Current Date and Time" in prompt
  assert "Day of week: Monday" in prompt
  assert "## Board Structure" in prompt
  assert "## Ongoing Tasks to Analyze (1 tasks)" in prompt
  assert "Deadline Urgency" in prompt
  assert ">= 60" in prompt
  assert "maximum 20 suggestions" in prompt


@pytest.mark.anyio
async def test_valid_output_parses() -> None:
  provider = FixedProvider(json.dumps(VALID))
  out = await SuggestionOracleClient(provider, timeout=1).generate(_ctx())
  assert out.summary == "One change"
  assert out.suggestions[0].details.suggestedPriority == "urgent"
  assert len(provider.prompts) == 1


@pytest.mark.anyio
@pytest.mark.parametrize(
  "text",
  [
    "",
    "not json at all",
    json.dumps({"suggestions": []}),
    json.dumps({"summary": "x", "suggestions": [{**VALID["suggestions"][0], "confidence": 150}]}),
    json.dumps({"summary": "x", "suggestions": [{**VALID["suggestions"][0], "details": {"type": "archive"}}]}),
  ],
)
async def test_malformed_output_fails_whole_request(text: str) -> None:
  with pytest.raises(OrganizeError) as ei:
    await SuggestionOracleClient(FixedProvider(text), timeout=1).generate(_ctx())
  assert ei.value.message == GENERATION_FAILED_MESSAGE


@pytest.mark.anyio
async def test_timeout_fails() -> None:
  with pytest.raises(OrganizeError):
    await SuggestionOracleClient(SlowProvider(), timeout=0.05).generate(_ctx())


@pytest.mark.anyio
async def test_provider_error_fails() -> None:
  with pytest.raises(OrganizeError) as ei:
    await SuggestionOracleClient(FailingProvider(), timeout=1).generate(_ctx())
  assert isinstance(ei.value.__cause__, RuntimeError)
