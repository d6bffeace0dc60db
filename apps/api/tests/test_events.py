from __future__ import annotations

import asyncio

import anyio.to_thread
import pytest

from tasktracker.events import EventEmitter, ServiceEvent
from tasktracker.services.local import LocalStorageService


@pytest.mark.anyio
async def test_listener_failure_does_not_reach_emitter() -> None:
  emitter = EventEmitter()
  seen: list[dict] = []

  def broken(_: dict) -> None:
    raise RuntimeError("boom")

  emitter.add_event_listener(ServiceEvent.TASK_CREATED, broken)
  emitter.add_event_listener("taskCreated", seen.append)

  delivered = emitter.emit(ServiceEvent.TASK_CREATED, {"task": {"id": "1"}})
  assert delivered == 1
  assert seen == [{"task": {"id": "1"}}]


@pytest.mark.anyio
async def test_remove_listener() -> None:
  emitter = EventEmitter()
  seen: list[dict] = []
  emitter.add_event_listener(ServiceEvent.SYNCED, seen.append)
  emitter.remove_event_listener(ServiceEvent.SYNCED, seen.append)
  assert emitter.listener_count(ServiceEvent.SYNCED) == 0
  assert emitter.emit(ServiceEvent.SYNCED) == 0


@pytest.mark.anyio
async def test_unknown_event_name_is_rejected() -> None:
  with pytest.raises(ValueError):
    EventEmitter().add_event_listener("nope", lambda _: None)


@pytest.mark.anyio
async def test_service_emits_crud_events(local: LocalStorageService) -> None:
  events: list[tuple[str, dict]] = []
  for ev in (ServiceEvent.TASK_CREATED, ServiceEvent.TASK_UPDATED, ServiceEvent.TASK_DELETED):
    local.add_event_listener(ev, lambda payload, ev=ev: events.append((ev.value, payload)))

  task = await local.create_task({"atividade": "Write tests"})
  await local.update_task(task["id"], {"status": "Doing"})
  await local.delete_task(task["id"])

  assert [name for name, _ in events] == ["taskCreated", "taskUpdated", "taskDeleted"]
  assert events[1][1]["oldTask"]["status"] == "Backlog"
  assert events[1][1]["task"]["status"] == "Doing"


@pytest.mark.anyio
async def test_async_listener_runs_and_failures_stay_isolated() -> None:
  emitter = EventEmitter()
  seen: list[dict] = []

  async def on_created(payload: dict) -> None:
    await asyncio.sleep(0)
    seen.append(payload)

  async def broken(_: dict) -> None:
    raise RuntimeError("boom")

  emitter.add_event_listener(ServiceEvent.TASK_CREATED, on_created)
  emitter.add_event_listener(ServiceEvent.TASK_CREATED, broken)

  assert emitter.emit(ServiceEvent.TASK_CREATED, {"task": {"id": "1"}}) == 2
  await emitter.drain()
  assert seen == [{"task": {"id": "1"}}]


@pytest.mark.anyio
async def test_async_listener_outside_event_loop_is_not_counted() -> None:
  emitter = EventEmitter()

  async def on_synced(_: dict) -> None:
    raise AssertionError("must not run")

  emitter.add_event_listener(ServiceEvent.SYNCED, on_synced)
  assert await anyio.to_thread.run_sync(emitter.emit, ServiceEvent.SYNCED) == 0
