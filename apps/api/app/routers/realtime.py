from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from app.db import SessionLocal
from app.deps import user_from_token
from app.realtime.broadcast import hub, user_channel

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


async def _forward(ws: WebSocket, q: asyncio.Queue) -> None:
  while True:
    message = await q.get()
    await ws.send_json(message)


@router.websocket("/ws")
async def updates(ws: WebSocket, token: str | None = Query(default=None)) -> None:
  async with SessionLocal() as db:
    user = await user_from_token(token, db)
  if user is None:
    await ws.close(code=status.WS_1008_POLICY_VIOLATION)
    return

  await ws.accept()
  channel = user_channel(user.id)
  q = hub.subscribe(channel)
  forward = asyncio.create_task(_forward(ws, q))
  try:
    # Inbound frames are ignored; receiving only detects the disconnect.
    while True:
      await ws.receive_text()
  except WebSocketDisconnect:
    pass
  finally:
    forward.cancel()
    hub.unsubscribe(channel, q)
    logger.debug("websocket closed for %s", channel)
