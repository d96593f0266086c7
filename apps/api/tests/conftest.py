from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any, Callable

import pytest
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{ROOT / 'flowboard_test.db'}")
os.environ.setdefault("AI_PROVIDER", "local")

from app.config import settings
from app.db import SessionLocal, engine
from app.main import app
from app.models import ApiToken, Base, User
from app.organize.oracle import SuggestionOracleClient
from app.routers.organize import get_oracle
from app.security import api_token_hash, api_token_hint, api_token_new


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


async def _reset_db() -> None:
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.drop_all)
    await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
async def fresh_db() -> None:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  if "test" not in db_name:
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database (e.g. flowboard_test)."
    )
  await _reset_db()
  yield
  await engine.dispose()


async def create_user(email: str, name: str = "User") -> tuple[str, str]:
  """Insert a user with a fresh API token; returns (user_id, token)."""
  token = api_token_new()
  async with SessionLocal() as db:
    u = User(email=email, name=name)
    db.add(u)
    await db.flush()
    db.add(ApiToken(user_id=u.id, name="tests", token_hash=api_token_hash(token), token_hint=api_token_hint(token)))
    await db.commit()
    return u.id, token


@pytest.fixture
async def user(fresh_db) -> tuple[str, str]:
  return await create_user("owner@flowboard.local", "Owner")


@pytest.fixture
async def client(user) -> AsyncClient:
  _, token = user
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost", headers={"Authorization": f"Bearer {token}"}) as c:
    yield c
  app.dependency_overrides.clear()


class StubProvider:
  """Oracle provider returning whatever `respond(context)` builds."""

  def __init__(self, respond: Callable[[dict[str, Any]], Any]) -> None:
    self.respond = respond
    self.calls: list[dict[str, Any]] = []

  async def generate(self, *, prompt: str, context: dict[str, Any]) -> str:
    self.calls.append({"prompt": prompt, "context": context})
    out = self.respond(context)
    return out if isinstance(out, str) else json.dumps(out)


def use_stub_oracle(respond: Callable[[dict[str, Any]], Any]) -> StubProvider:
  provider = StubProvider(respond)
  app.dependency_overrides[get_oracle] = lambda: SuggestionOracleClient(provider, timeout=5)
  return provider


async def make_board(client: AsyncClient, name: str, *, space: str = "work", columns: list[dict] | None = None) -> dict:
  payload: dict[str, Any] = {"name": name, "space": space}
  if columns is not None:
    payload["columns"] = columns
  res = await client.post("/boards", json=payload)
  assert res.status_code == 200, res.text
  return res.json()


def column_id(board: dict, name: str) -> str:
  return next(c["id"] for c in board["columns"] if c["name"] == name)


async def make_task(client: AsyncClient, board: dict, column: str, title: str, **fields: Any) -> dict:
  res = await client.post(f"/boards/{board['id']}/tasks", json={"columnId": column_id(board, column), "title": title, **fields})
  assert res.status_code == 200, res.text
  return res.json()
