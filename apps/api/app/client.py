from __future__ import annotations

from typing import Any

import httpx

from app.organize.errors import OrganizeError
from app.schemas import AutoOrganizeIn, AutoOrganizeOut, BoardOut


class TaskUpdateError(RuntimeError):
  def __init__(self, task_id: str, status_code: int | None = None) -> None:
    super().__init__(f"Failed to update task {task_id}")
    self.task_id = task_id
    self.status_code = status_code


def normalize_base_url(base_url: str) -> str:
  b = (base_url or "").strip().rstrip("/")
  if not b:
    b = "http://localhost:8000"
  if not (b.startswith("http://") or b.startswith("https://")):
    b = "http://" + b
  return b


class FlowboardClient:
  """Caller-side access to the API: generation, per-task updates, board lookup."""

  def __init__(
    self,
    *,
    base_url: str,
    api_token: str,
    timeout: float = 30,
    transport: httpx.AsyncBaseTransport | None = None,
  ) -> None:
    self.base_url = normalize_base_url(base_url)
    self.api_token = (api_token or "").strip()
    self.timeout = timeout
    self.transport = transport

  def _client(self) -> httpx.AsyncClient:
    return httpx.AsyncClient(
      base_url=self.base_url,
      timeout=self.timeout,
      transport=self.transport,
      headers={"Authorization": f"Bearer {self.api_token}", "User-Agent": "Flowboard/1.0"},
    )

  async def auto_organize(self, request: AutoOrganizeIn) -> AutoOrganizeOut:
    try:
      async with self._client() as client:
        res = await client.post("/tasks/auto-organize", json=request.model_dump(exclude_none=True))
    except httpx.HTTPError as exc:
      raise OrganizeError() from exc
    if res.status_code != 200:
      raise OrganizeError()
    try:
      return AutoOrganizeOut.model_validate(res.json())
    except ValueError as exc:
      # pydantic's ValidationError and json decode errors are both ValueErrors.
      raise OrganizeError() from exc

  async def update_task(self, task_id: str, patch: dict[str, Any]) -> dict[str, Any]:
    async with self._client() as client:
      res = await client.patch(f"/tasks/{task_id}", json=patch)
    if not res.is_success:
      raise TaskUpdateError(task_id, res.status_code)
    return res.json()

  async def list_boards(self, space: str) -> list[BoardOut]:
    async with self._client() as client:
      res = await client.get("/boards", params={"space": space})
      res.raise_for_status()
    return [BoardOut.model_validate(b) for b in res.json()]
