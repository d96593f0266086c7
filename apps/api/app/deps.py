from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import SessionLocal
from app.models import ApiToken, Board, Task, User
from app.security import api_token_hash


async def get_db() -> AsyncSession:
  async with SessionLocal() as session:
    yield session


async def user_from_token(token: str | None, db: AsyncSession) -> User | None:
  t = (token or "").strip()
  if not t:
    return None
  res = await db.execute(select(ApiToken).where(ApiToken.token_hash == api_token_hash(t), ApiToken.revoked_at.is_(None)))
  row = res.scalar_one_or_none()
  if not row:
    return None
  ures = await db.execute(select(User).where(User.id == row.user_id))
  return ures.scalar_one_or_none()


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
  auth = request.headers.get("authorization")
  if not auth or not auth.lower().startswith("bearer "):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
  u = await user_from_token(auth.split(" ", 1)[1], db)
  if not u:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  return u


async def require_board_owner(board_id: str, user: User, db: AsyncSession) -> Board:
  res = await db.execute(select(Board).where(Board.id == board_id))
  b = res.scalar_one_or_none()
  if not b:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Board not found")
  if b.user_id != user.id:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No board access")
  return b


async def require_task_owner(task_id: str, user: User, db: AsyncSession) -> Task:
  res = await db.execute(select(Task).where(Task.id == task_id))
  t = res.scalar_one_or_none()
  if not t or t.user_id != user.id:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
  return t
