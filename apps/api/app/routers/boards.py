from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.audit import write_audit
from app.deps import get_current_user, get_db, require_board_owner
from app.models import Board, Column, User
from app.realtime.broadcast import hub
from app.schemas import BoardCreateIn, BoardOut, ColumnCreateIn, ColumnOut, Space

router = APIRouter(prefix="/boards", tags=["boards"])

DEFAULT_COLUMNS = (
  ColumnCreateIn(name="To Do"),
  ColumnCreateIn(name="In Progress"),
  ColumnCreateIn(name="Done"),
)


def _column_out(c: Column) -> ColumnOut:
  return ColumnOut(id=c.id, name=c.name, boardId=c.board_id, wipLimit=c.wip_limit, position=c.position)


def _board_out(b: Board, columns: list[Column]) -> BoardOut:
  return BoardOut(
    id=b.id,
    name=b.name,
    description=b.description,
    space=b.space,
    columns=[_column_out(c) for c in columns],
  )


async def _columns_by_board(db: AsyncSession, board_ids: list[str]) -> dict[str, list[Column]]:
  out: dict[str, list[Column]] = {bid: [] for bid in board_ids}
  if not board_ids:
    return out
  res = await db.execute(select(Column).where(Column.board_id.in_(board_ids)).order_by(Column.position.asc(), Column.created_at.asc()))
  for c in res.scalars().all():
    out.setdefault(c.board_id, []).append(c)
  return out


@router.get("", response_model=list[BoardOut])
async def list_boards(
  space: Space | None = Query(default=None),
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[BoardOut]:
  q = select(Board).where(Board.user_id == user.id)
  if space:
    q = q.where(Board.space == space)
  res = await db.execute(q.order_by(Board.created_at.asc()))
  boards = res.scalars().all()
  columns = await _columns_by_board(db, [b.id for b in boards])
  return [_board_out(b, columns.get(b.id, [])) for b in boards]


@router.post("", response_model=BoardOut)
async def create_board(payload: BoardCreateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> BoardOut:
  name = payload.name.strip()
  if not name:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="name is required")

  b = Board(user_id=user.id, name=name, description=payload.description, space=payload.space)
  db.add(b)
  await db.flush()

  columns: list[Column] = []
  for idx, col_in in enumerate(payload.columns or DEFAULT_COLUMNS):
    c = Column(board_id=b.id, name=col_in.name.strip(), wip_limit=col_in.wipLimit, position=idx)
    db.add(c)
    columns.append(c)
  await db.flush()

  await write_audit(
    db,
    event_type="board.created",
    entity_type="Board",
    entity_id=b.id,
    board_id=b.id,
    actor_id=user.id,
    payload={"name": b.name, "space": b.space, "columns": [c.name for c in columns]},
  )
  await db.commit()
  hub.broadcast_board_update(user_id=user.id, board_id=b.id, action="created")
  return _board_out(b, columns)


@router.get("/{board_id}", response_model=BoardOut)
async def get_board(board_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> BoardOut:
  b = await require_board_owner(board_id, user, db)
  columns = await _columns_by_board(db, [b.id])
  return _board_out(b, columns.get(b.id, []))
