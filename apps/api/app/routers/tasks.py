from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.audit import write_audit
from app.deps import get_current_user, get_db, require_board_owner, require_task_owner
from app.models import Board, Column, Task, User, as_utc, utcnow
from app.realtime.broadcast import hub
from app.schemas import TaskCreateIn, TaskOut, TaskUpdateIn

router = APIRouter(tags=["tasks"])


def _task_out(t: Task) -> TaskOut:
  return TaskOut(
    id=t.id,
    title=t.title,
    description=t.description,
    dueDate=as_utc(t.due_date),
    priority=t.priority,
    labels=list(t.labels or []),
    columnId=t.column_id,
    boardId=t.board_id,
    createdAt=as_utc(t.created_at),
    updatedAt=as_utc(t.updated_at),
  )


async def _owned_column(column_id: str, user: User, db: AsyncSession) -> tuple[Column, Board]:
  res = await db.execute(select(Column, Board).join(Board, Board.id == Column.board_id).where(Column.id == column_id))
  row = res.first()
  if not row or row[1].user_id != user.id:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid columnId")
  return row[0], row[1]


@router.post("/boards/{board_id}/tasks", response_model=TaskOut)
async def create_task(board_id: str, payload: TaskCreateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  board = await require_board_owner(board_id, user, db)
  column, _ = await _owned_column(payload.columnId, user, db)
  if column.board_id != board.id:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Column is not on this board")
  title = payload.title.strip()
  if not title:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="title is required")

  t = Task(
    user_id=user.id,
    board_id=board.id,
    column_id=column.id,
    title=title,
    description=payload.description,
    priority=payload.priority,
    labels=[x.strip() for x in payload.labels if x.strip()],
    due_date=payload.dueDate,
  )
  db.add(t)
  await db.flush()
  await write_audit(
    db,
    event_type="task.created",
    entity_type="Task",
    entity_id=t.id,
    board_id=board.id,
    task_id=t.id,
    actor_id=user.id,
    payload={"title": t.title, "columnId": column.id},
  )
  await db.commit()
  hub.broadcast_task_update(user_id=user.id, task_id=t.id, board_id=board.id, space=board.space, action="created")
  return _task_out(t)


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  return _task_out(await require_task_owner(task_id, user, db))


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def update_task(task_id: str, payload: TaskUpdateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  t = await require_task_owner(task_id, user, db)
  fields_set = payload.model_fields_set
  changed: dict = {}

  board: Board | None = None
  if "columnId" in fields_set:
    if not payload.columnId:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="columnId cannot be empty")
    column, board = await _owned_column(payload.columnId, user, db)
    if column.id != t.column_id:
      # A column on another board carries the task across with it.
      if column.board_id != t.board_id:
        changed["boardId"] = column.board_id
      t.column_id = column.id
      t.board_id = column.board_id
      changed["columnId"] = column.id

  if "title" in fields_set:
    title = (payload.title or "").strip()
    if not title:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="title cannot be empty")
    t.title = title
    changed["title"] = title

  mapping = [
    ("description", "description"),
    ("priority", "priority"),
    ("due_date", "dueDate"),
  ]
  for model_attr, field_name in mapping:
    if field_name in fields_set:
      val = getattr(payload, field_name)
      setattr(t, model_attr, val)
      changed[field_name] = val[:500] if field_name == "description" and isinstance(val, str) else val

  if "labels" in fields_set:
    t.labels = [x.strip() for x in (payload.labels or []) if x.strip()]
    changed["labels"] = t.labels

  if not changed:
    return _task_out(t)

  t.updated_at = utcnow()
  await write_audit(
    db,
    event_type="task.updated",
    entity_type="Task",
    entity_id=t.id,
    board_id=t.board_id,
    task_id=t.id,
    actor_id=user.id,
    payload={"changed": list(changed.keys()), "fields": changed},
  )
  await db.commit()

  if board is None or board.id != t.board_id:
    res = await db.execute(select(Board).where(Board.id == t.board_id))
    board = res.scalar_one()
  hub.broadcast_task_update(user_id=user.id, task_id=t.id, board_id=t.board_id, space=board.space, action="updated")
  return _task_out(t)
