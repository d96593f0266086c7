from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import httpx

from app.config import settings
from app.schemas import PRIORITY_RANK, OracleOutput, parse_iso_utc


class AIProvider(Protocol):
  async def generate(self, *, prompt: str, context: dict[str, Any]) -> str: ...


ORGANIZER_INSTRUCTIONS = """You are an intelligent task organizer for a personal productivity app.

Analyze the provided ongoing tasks and suggest optimal reorganizations. Completed tasks are already excluded.

Each suggestion changes exactly one field of one task:
- "column_move": move the task to another column (optionally on another board of the same space)
- "priority_change": change priority (low, medium, high, urgent)
- "due_date_adjust": change the due date (ISO 8601 with offset)

Rules:
- Deadline urgency first: due within 24 hours -> urgent, within 3 days -> high, overdue -> urgent and move to "In Progress".
- Workload balancing: compare each column's taskCount with its wipLimit; move lower-priority tasks out of overloaded columns.
- Content similarity: group related tasks (bugs, features, docs, meetings, reviews) on the same board.
- Never downgrade priority, never suggest the same priority, never move a task to its current column.
- Never suggest cross-space moves.
- Only suggest changes with confidence >= 60. At most 20 suggestions, highest confidence first.

Respond with ONLY a JSON object (no markdown, no code fences) matching this JSON schema:
"""


def organizer_system_prompt() -> str:
  return ORGANIZER_INSTRUCTIONS + json.dumps(OracleOutput.model_json_schema(), indent=2)


CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
  "bug": ("bug", "fix", "error", "issue", "broken"),
  "feature": ("feature", "implement", "build"),
  "docs": ("docs", "documentation", "readme", "document"),
  "meeting": ("meeting", "call", "discuss", "sync", "standup"),
  "review": ("review", "pr", "approve"),
}


def _words(value: str) -> set[str]:
  return {x for x in "".join(ch.lower() if ch.isalnum() else " " for ch in (value or "")).split() if x}


def _category(task: dict[str, Any]) -> str | None:
  words = _words(f"{task.get('title') or ''} {task.get('description') or ''}")
  for cat, keys in CATEGORY_KEYWORDS.items():
    if words.intersection(keys):
      return cat
  return None


def _rank(priority: str | None) -> int:
  return PRIORITY_RANK.get(priority or "", -1)


def _find_column(columns: list[dict[str, Any]], name: str) -> dict[str, Any] | None:
  return next((c for c in columns if str(c.get("name") or "").strip().lower() == name), None)


@dataclass
class LocalDeterministicProvider:
  """Offline organizer applying the three heuristics without a model.

  Output follows the same JSON contract as a remote model, so it goes through
  the exact same parsing and validation path.
  """

  async def generate(self, *, prompt: str, context: dict[str, Any]) -> str:
    now = parse_iso_utc(context.get("now")) or datetime.now(timezone.utc)
    boards: list[dict[str, Any]] = list(context.get("boards") or [])
    tasks: list[dict[str, Any]] = list(context.get("tasks") or [])
    limit = int(context.get("maxSuggestions") or settings.organize_max_suggestions)

    board_by_id = {b["id"]: b for b in boards}
    moved: set[str] = set()
    out: list[dict[str, Any]] = []
    counts = Counter()

    def move(t: dict[str, Any], board: dict[str, Any], col: dict[str, Any], reason: str, confidence: int) -> None:
      moved.add(t["id"])
      out.append(
        {
          "taskId": t["id"],
          "taskTitle": t.get("title"),
          "details": {
            "type": "column_move",
            "currentBoardId": t["boardId"],
            "currentBoardName": t["boardName"],
            "currentColumnId": t["columnId"],
            "currentColumnName": t["columnName"],
            "suggestedBoardId": board["id"],
            "suggestedBoardName": board["name"],
            "suggestedColumnId": col["id"],
            "suggestedColumnName": col["name"],
          },
          "reason": reason,
          "confidence": confidence,
        }
      )

    # Deadline urgency.
    for t in tasks:
      due = parse_iso_utc(t.get("dueDate"))
      if due is None:
        continue
      left = due - now
      if left < timedelta(0):
        target, reason, confidence = "urgent", f"Overdue by {max(1, -left.days)} day(s), needs immediate action", 95
      elif left <= timedelta(hours=24):
        target, reason, confidence = "urgent", "Due within 24 hours, needs immediate attention", 90
      elif left <= timedelta(days=3):
        target, reason, confidence = "high", "Due within 3 days, should be prioritized", 75
      else:
        continue
      current = t.get("priority")
      if current in PRIORITY_RANK and _rank(target) > _rank(current):
        out.append(
          {
            "taskId": t["id"],
            "taskTitle": t.get("title"),
            "details": {"type": "priority_change", "currentPriority": current, "suggestedPriority": target},
            "reason": reason,
            "confidence": confidence,
          }
        )
        counts["deadline"] += 1
      if left < timedelta(0):
        board = board_by_id.get(t["boardId"])
        col = _find_column(board["columns"], "in progress") if board else None
        if board and col and col["id"] != t["columnId"]:
          move(t, board, col, "Overdue task should be actively worked on", 90)
          counts["deadline"] += 1

    # Workload balancing against WIP limits.
    for board in boards:
      backlog = _find_column(board["columns"], "to do")
      for col in board["columns"]:
        wip = col.get("wipLimit")
        if not wip or col.get("taskCount", 0) <= wip or not backlog or backlog["id"] == col["id"]:
          continue
        excess = int(col["taskCount"]) - int(wip)
        candidates = [t for t in tasks if t["columnId"] == col["id"] and t["id"] not in moved]
        candidates.sort(key=lambda t: (_rank(t.get("priority")), t.get("dueDate") is not None, -(parse_iso_utc(t.get("dueDate")) or now).timestamp()))
        for t in candidates[:excess]:
          move(t, board, backlog, f"Column exceeds WIP limit ({col['taskCount']}/{wip}); moving lower priority work back", 80)
          counts["workload"] += 1

    # Content similarity grouping across boards.
    groups: dict[str, list[dict[str, Any]]] = {}
    for t in tasks:
      cat = _category(t)
      if cat:
        groups.setdefault(cat, []).append(t)
    for cat, members in groups.items():
      per_board = Counter(t["boardId"] for t in members)
      if len(per_board) < 2:
        continue
      home_id, home_count = per_board.most_common(1)[0]
      if home_count < 2:
        continue
      home = board_by_id.get(home_id)
      if not home:
        continue
      for t in members:
        if t["boardId"] == home_id or t["id"] in moved:
          continue
        col = _find_column(home["columns"], str(t.get("columnName") or "").strip().lower()) or next(
          (c for c in home["columns"] if str(c.get("name") or "").strip().lower() != settings.organize_completion_column),
          None,
        )
        if col:
          move(t, home, col, f"Related {cat} task, better grouped with similar work on {home['name']}", 65)
          counts["grouping"] += 1

    out.sort(key=lambda s: s["confidence"], reverse=True)
    out = out[:limit]
    if out:
      parts = [f"{n} {k}" for k, n in counts.items() if n]
      summary = f"Found {len(out)} suggestion(s) to improve organization ({', '.join(parts)})"
    else:
      summary = "Tasks are already well organized"
    return json.dumps({"summary": summary, "suggestions": out})


@dataclass
class OpenAICompatibleProvider:
  api_key: str
  base_url: str
  model: str = "gpt-4o-mini"
  timeout: float = 60.0

  async def generate(self, *, prompt: str, context: dict[str, Any]) -> str:
    headers = {"Authorization": f"Bearer {self.api_key}"}
    async with httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=self.timeout) as client:
      # OpenAI-compatible chat completions API.
      r = await client.post(
        "/chat/completions",
        json={
          "model": self.model,
          "messages": [
            {"role": "system", "content": organizer_system_prompt()},
            {"role": "user", "content": prompt},
          ],
          "response_format": {"type": "json_object"},
          "temperature": 0.2,
        },
      )
      r.raise_for_status()
      data = r.json()
      return data["choices"][0]["message"]["content"]


def get_ai_provider() -> AIProvider:
  if settings.ai_provider.lower() == "openai":
    if not settings.openai_api_key:
      raise RuntimeError("AI_PROVIDER=openai requires OPENAI_API_KEY")
    return OpenAICompatibleProvider(
      api_key=settings.openai_api_key,
      base_url=settings.openai_base_url,
      model=settings.openai_model,
      timeout=settings.ai_timeout_seconds,
    )
  return LocalDeterministicProvider()
