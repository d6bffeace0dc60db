from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from threading import Lock
from typing import Any, Callable

logger = logging.getLogger(__name__)


class ServiceEvent(str, Enum):
  INITIALIZED = "initialized"
  DISCONNECTED = "disconnected"
  TASK_CREATED = "taskCreated"
  TASK_UPDATED = "taskUpdated"
  TASK_DELETED = "taskDeleted"
  TASKS_BULK_UPDATED = "tasksBulkUpdated"
  TASKS_BULK_DELETED = "tasksBulkDeleted"
  CONFIG_UPDATED = "configUpdated"
  CONFIG_DELETED = "configDeleted"
  DATA_IMPORTED = "dataImported"
  ROOM_CREATED = "roomCreated"
  ROOM_JOINED = "roomJoined"
  ROOM_UPDATED = "roomUpdated"
  ROOM_LEFT = "roomLeft"
  ROOM_DELETED = "roomDeleted"
  ROOM_CHANGED = "roomChanged"
  SYNCED = "synced"
  ERROR = "error"


Listener = Callable[[dict[str, Any]], Any]


class EventEmitter:
  """Per-instance publish/subscribe channel; listener failures never reach the emitter."""

  def __init__(self) -> None:
    self._lock = Lock()
    self._listeners: dict[ServiceEvent, list[Listener]] = {}
    self._pending: set[asyncio.Future] = set()

  def add_event_listener(self, event: ServiceEvent | str, callback: Listener) -> None:
    ev = ServiceEvent(event)
    with self._lock:
      self._listeners.setdefault(ev, []).append(callback)

  def remove_event_listener(self, event: ServiceEvent | str, callback: Listener) -> None:
    ev = ServiceEvent(event)
    with self._lock:
      current = self._listeners.get(ev)
      if not current:
        return
      self._listeners[ev] = [cb for cb in current if cb != callback]

  def listener_count(self, event: ServiceEvent | str) -> int:
    with self._lock:
      return len(self._listeners.get(ServiceEvent(event), []))

  def emit(self, event: ServiceEvent | str, payload: dict[str, Any] | None = None) -> int:
    ev = ServiceEvent(event)
    with self._lock:
      callbacks = list(self._listeners.get(ev, []))
    delivered = 0
    for callback in callbacks:
      try:
        result = callback(dict(payload or {}))
        if inspect.isawaitable(result) and not self._schedule(ev, result):
          continue
        delivered += 1
      except Exception:
        logger.exception("Error in event listener for %s", ev.value)
    return delivered

  def _schedule(self, ev: ServiceEvent, awaitable: Any) -> bool:
    try:
      asyncio.get_running_loop()
    except RuntimeError:
      logger.error("Async listener for %s needs a running event loop", ev.value)
      if inspect.iscoroutine(awaitable):
        awaitable.close()
      return False
    fut = asyncio.ensure_future(awaitable)
    self._pending.add(fut)

    def _done(f: asyncio.Future) -> None:
      self._pending.discard(f)
      if not f.cancelled() and f.exception() is not None:
        logger.error("Error in event listener for %s", ev.value, exc_info=f.exception())

    fut.add_done_callback(_done)
    return True

  async def drain(self) -> None:
    """Wait for async listeners scheduled by earlier emits."""
    while True:
      pending = [f for f in self._pending if not f.done()]
      if not pending:
        return
      await asyncio.gather(*pending, return_exceptions=True)
