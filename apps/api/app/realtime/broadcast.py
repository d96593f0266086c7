from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from app.config import settings

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "global"


def user_channel(user_id: str) -> str:
  return f"user:{user_id}"


class BroadcastHub:
  """In-process fan-out of `{type, data}` messages to websocket subscribers.

  Sending never blocks: a subscriber whose queue is full loses the message.
  """

  def __init__(self, *, queue_size: int | None = None) -> None:
    self._queue_size = queue_size if queue_size is not None else settings.broadcast_queue_size
    self._channels: dict[str, set[asyncio.Queue]] = {}

  def subscribe(self, channel: str) -> asyncio.Queue:
    q: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
    self._channels.setdefault(channel, set()).add(q)
    return q

  def unsubscribe(self, channel: str, q: asyncio.Queue) -> None:
    subs = self._channels.get(channel)
    if not subs:
      return
    subs.discard(q)
    if not subs:
      self._channels.pop(channel, None)

  def subscriber_count(self, channel: str) -> int:
    return len(self._channels.get(channel) or ())

  def send(self, type: str, payload: dict[str, Any] | None = None, *, channel: str = GLOBAL_CHANNEL) -> int:
    message = {"type": type, "data": payload or {}}
    delivered = 0
    for q in list(self._channels.get(channel) or ()):
      try:
        q.put_nowait(message)
        delivered += 1
      except asyncio.QueueFull:
        logger.warning("broadcast queue full on %s, dropping %s", channel, type)
    return delivered

  def broadcast_task_update(self, *, user_id: str, task_id: str, board_id: str, space: str, action: str = "updated") -> int:
    return self.send(
      "task-update",
      {
        "taskId": task_id,
        "boardId": board_id,
        "space": space,
        "action": action,
        "timestamp": datetime.now(timezone.utc).isoformat(),
      },
      channel=user_channel(user_id),
    )

  def broadcast_board_update(self, *, user_id: str, board_id: str, action: str) -> int:
    return self.send("board-update", {"boardId": board_id, "action": action}, channel=user_channel(user_id))


hub = BroadcastHub()
