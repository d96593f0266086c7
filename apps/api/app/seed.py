from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import select

from app.db import SessionLocal
from app.models import ApiToken, Board, Column, Task, User
from app.security import api_token_hash, api_token_hint, api_token_new


async def seed() -> None:
  async with SessionLocal() as db:
    email = "demo@flowboard.local"
    boot_lines: list[str] = []

    res = await db.execute(select(User).where(User.email == email))
    user = res.scalar_one_or_none()
    if not user:
      user = User(email=email, name="Demo", timezone="Asia/Tokyo")
      db.add(user)
      await db.flush()

    tres = await db.execute(select(ApiToken.id).where(ApiToken.user_id == user.id, ApiToken.revoked_at.is_(None)).limit(1))
    if not tres.scalar_one_or_none():
      token = (os.getenv("SEED_API_TOKEN") or "").strip() or api_token_new()
      db.add(ApiToken(user_id=user.id, name="seed", token_hash=api_token_hash(token), token_hint=api_token_hint(token)))
      boot_lines.append(f"{email} token={token}")

    if os.getenv("SEED_DEMO_BOARD", "").strip().lower() in ("1", "true", "yes", "y"):
      board_name = "Flowboard Demo"
      bres = await db.execute(select(Board).where(Board.name == board_name, Board.user_id == user.id))
      board = bres.scalar_one_or_none()
      if not board:
        board = Board(user_id=user.id, name=board_name, description="Sample board for auto-organize", space="work")
        db.add(board)
        await db.flush()
        for idx, (name, wip) in enumerate([("To Do", None), ("In Progress", 3), ("Done", None)]):
          db.add(Column(board_id=board.id, name=name, wip_limit=wip, position=idx))
        await db.flush()

      # Demo tasks only on an empty board; a mix of overdue, due-soon and finished work.
      any_task = (await db.execute(select(Task.id).where(Task.board_id == board.id).limit(1))).scalar_one_or_none()
      if not any_task:
        cres = await db.execute(select(Column).where(Column.board_id == board.id).order_by(Column.position.asc()))
        by_name = {c.name: c for c in cres.scalars().all()}
        todo = by_name["To Do"]
        doing = by_name["In Progress"]
        done = by_name["Done"]

        now = datetime.now(timezone.utc)
        samples = [
          (todo, "Send invoice to client", "low", ["billing"], now - timedelta(days=1)),
          (todo, "Prepare quarterly report", "medium", ["report"], now + timedelta(hours=12)),
          (todo, "Draft release notes", "low", ["docs"], now + timedelta(days=2)),
          (doing, "Fix login redirect bug", "high", ["bug"], now + timedelta(days=5)),
          (doing, "Review pull requests", "medium", ["review"], None),
          (done, "Set up CI pipeline", "medium", ["infra"], now - timedelta(days=3)),
        ]
        for column, title, priority, labels, due in samples:
          db.add(
            Task(
              user_id=user.id,
              board_id=board.id,
              column_id=column.id,
              title=title,
              priority=priority,
              labels=labels,
              due_date=due,
            )
          )

    await db.commit()
    if boot_lines:
      out_dir = Path(os.getenv("BOOTSTRAP_CREDENTIALS_DIR", "data"))
      out_dir.mkdir(parents=True, exist_ok=True)
      out_file = out_dir / "bootstrap_credentials.txt"
      stamp = datetime.now(timezone.utc).isoformat()
      out_file.write_text(f"[{stamp}]\n" + "\n".join(boot_lines) + "\n", encoding="utf-8")
      print("Flowboard seed credentials created:")
      for ln in boot_lines:
        print(f"  {ln}")
      print(f"Saved to {out_file}")


def main() -> None:
  asyncio.run(seed())


if __name__ == "__main__":
  main()
