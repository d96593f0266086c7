from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field
from pydantic import field_validator


_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

Space = Literal["work", "personal"]
Priority = Literal["low", "medium", "high", "urgent"]

PRIORITY_RANK: dict[str, int] = {"low": 0, "medium": 1, "high": 2, "urgent": 3}


def _parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


def parse_iso_utc(value: str | None) -> datetime | None:
  dt = _parse_dt_utc(value)
  return dt if isinstance(dt, datetime) else None


class ColumnCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=120)
  wipLimit: int | None = Field(default=None, ge=0)


class ColumnOut(BaseModel):
  id: str
  name: str
  boardId: str
  wipLimit: int | None = None
  position: int = 0


class BoardCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=120)
  description: str | None = Field(default=None, max_length=2000)
  space: Space = "work"
  columns: list[ColumnCreateIn] | None = None


class BoardOut(BaseModel):
  id: str
  name: str
  description: str | None = None
  space: Space
  columns: list[ColumnOut] = []


class TaskCreateIn(BaseModel):
  columnId: str
  title: str = Field(min_length=1, max_length=500)
  description: str | None = Field(default=None, max_length=20000)
  priority: Priority | None = None
  labels: list[str] = []
  dueDate: datetime | None = None

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskUpdateIn(BaseModel):
  title: str | None = Field(default=None, min_length=1, max_length=500)
  description: str | None = Field(default=None, max_length=20000)
  columnId: str | None = None
  priority: Priority | None = None
  labels: list[str] | None = None
  dueDate: datetime | None = None

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskOut(BaseModel):
  id: str
  title: str
  description: str | None = None
  dueDate: datetime | None = None
  priority: Priority | None = None
  labels: list[str] = []
  columnId: str
  boardId: str
  createdAt: datetime
  updatedAt: datetime


class ColumnMoveDetails(BaseModel):
  type: Literal["column_move"]
  currentBoardId: str
  currentBoardName: str
  currentColumnId: str
  currentColumnName: str
  suggestedBoardId: str
  suggestedBoardName: str
  suggestedColumnId: str
  suggestedColumnName: str


class PriorityChangeDetails(BaseModel):
  type: Literal["priority_change"]
  currentPriority: Priority
  suggestedPriority: Priority


class DueDateAdjustDetails(BaseModel):
  type: Literal["due_date_adjust"]
  currentDueDate: str | None = None
  suggestedDueDate: str

  @field_validator("currentDueDate", "suggestedDueDate")
  @classmethod
  def _iso_datetime(cls, v: str | None) -> str | None:
    if v is None:
      return None
    try:
      parsed = _parse_dt_utc(v)
    except ValueError as exc:
      raise ValueError("must be an ISO 8601 date/time") from exc
    if parsed is None:
      raise ValueError("must be an ISO 8601 date/time")
    return v


SuggestionDetails = Annotated[
  Union[ColumnMoveDetails, PriorityChangeDetails, DueDateAdjustDetails],
  Field(discriminator="type"),
]


class RawSuggestion(BaseModel):
  taskId: str
  taskTitle: str | None = None
  taskDescription: str | None = None
  details: SuggestionDetails
  reason: str
  confidence: int = Field(ge=0, le=100)


class OracleOutput(BaseModel):
  summary: str
  suggestions: list[RawSuggestion]


class Suggestion(BaseModel):
  taskId: str
  taskTitle: str
  taskDescription: str | None = None
  details: SuggestionDetails
  reason: str
  confidence: int = Field(ge=0, le=100)
  included: bool = True


class AutoOrganizeIn(BaseModel):
  space: Space
  boardId: str | None = None
  startDate: int | None = Field(default=None, description="Unix timestamp (seconds)")
  endDate: int | None = Field(default=None, description="Unix timestamp (seconds)")


class AutoOrganizeOut(BaseModel):
  suggestions: list[Suggestion] = []
  summary: str
  totalTasksAnalyzed: int = 0
  completedTasksSkipped: int = 0


class ApplyErrorOut(BaseModel):
  taskId: str
  error: str


class BatchApplyResult(BaseModel):
  applied: int = 0
  failed: int = 0
  errors: list[ApplyErrorOut] | None = None
