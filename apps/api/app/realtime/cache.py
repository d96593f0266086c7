from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

CacheKey = tuple[str, ...]

# Views touched by an auto-organize batch; accepted changes can span boards.
ORGANIZE_INVALIDATION_KEYS: tuple[CacheKey, ...] = (("tasks",), ("calendar",), ("boards",))

# Receiver-side dispatch table: broadcast message type -> cached views to drop.
INVALIDATION_TABLE: dict[str, tuple[CacheKey, ...]] = {
  "task-update": (("board",), ("tasks",), ("calendar",)),
  "board-update": (("boards",), ("board",)),
  "column-update": (("board",),),
  "subtask-update": (("tasks",), ("board",)),
  "inbox-update": (("inbox",),),
  "reminder-update": (("reminders",),),
}


class QueryCache:
  """Client-held cache of fetched views, keyed by tuples and invalidated by prefix."""

  def __init__(self) -> None:
    self._entries: dict[CacheKey, Any] = {}

  def get(self, key: CacheKey) -> Any | None:
    return self._entries.get(key)

  def set(self, key: CacheKey, value: Any) -> None:
    self._entries[key] = value

  def __contains__(self, key: object) -> bool:
    return key in self._entries

  def keys(self) -> list[CacheKey]:
    return list(self._entries)

  async def fetch(self, key: CacheKey, loader: Callable[[], Awaitable[Any]]) -> Any:
    if key in self._entries:
      return self._entries[key]
    value = await loader()
    self._entries[key] = value
    return value

  def invalidate(self, prefix: CacheKey) -> list[CacheKey]:
    n = len(prefix)
    dropped = [k for k in self._entries if k[:n] == prefix]
    for k in dropped:
      del self._entries[k]
    return dropped

  def invalidate_many(self, prefixes: tuple[CacheKey, ...] | list[CacheKey]) -> list[CacheKey]:
    out: list[CacheKey] = []
    for p in prefixes:
      out.extend(self.invalidate(p))
    return out


def dispatch_message(cache: QueryCache, message: dict[str, Any]) -> list[CacheKey]:
  mtype = str(message.get("type") or "")
  prefixes = INVALIDATION_TABLE.get(mtype)
  if prefixes is None:
    logger.debug("no invalidation for message type %s", mtype)
    return []
  return cache.invalidate_many(prefixes)
