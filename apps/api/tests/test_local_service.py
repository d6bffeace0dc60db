from __future__ import annotations

import json

import pytest

from tasktracker.errors import NotFoundError, NotInitializedError, StoreConnectionError, ValidationError
from tasktracker.events import ServiceEvent
from tasktracker.services.kv import MemoryKeyValueStore
from tasktracker.services.local import LocalStorageService
from tasktracker.task_fields import parse_dt_utc


@pytest.mark.anyio
async def test_operations_fail_before_initialize(kv_store: MemoryKeyValueStore) -> None:
  svc = LocalStorageService(kv_store)
  with pytest.raises(NotInitializedError):
    await svc.get_tasks()
  with pytest.raises(NotInitializedError):
    await svc.create_task({"atividade": "x"})
  health = await svc.health_check()
  assert health["status"] == "unhealthy"
  assert svc.get_service_info()["initialized"] is False


@pytest.mark.anyio
async def test_initialize_is_repeatable_and_emits(kv_store: MemoryKeyValueStore) -> None:
  svc = LocalStorageService(kv_store)
  seen: list[dict] = []
  svc.add_event_listener(ServiceEvent.INITIALIZED, seen.append)
  assert (await svc.initialize())["success"] is True
  assert (await svc.initialize())["success"] is True
  assert len(seen) == 2
  assert kv_store.keys() == []


@pytest.mark.anyio
async def test_initialize_reports_broken_store() -> None:
  class BrokenStore(MemoryKeyValueStore):
    def set(self, key: str, value: str) -> None:
      raise OSError("disk full")

  with pytest.raises(StoreConnectionError):
    await LocalStorageService(BrokenStore()).initialize()


@pytest.mark.anyio
async def test_create_then_get_round_trips(local: LocalStorageService) -> None:
  created = await local.create_task({"atividade": "Write tests", "sprint": "S1", "reestimativas": [1, 2, 3]})
  assert await local.get_task(created["id"]) == created
  assert len(created["reestimativas"]) == 10
  assert await local.get_task("missing") is None


@pytest.mark.anyio
async def test_create_requires_title(local: LocalStorageService) -> None:
  with pytest.raises(ValidationError):
    await local.create_task({"sprint": "S1"})


@pytest.mark.anyio
async def test_backlog_to_done_scenario(local: LocalStorageService) -> None:
  task = await local.create_task({"atividade": "Write tests", "status": "Backlog"})
  assert [t["id"] for t in await local.get_tasks_by_status("Backlog")] == [task["id"]]

  await local.update_task(task["id"], {"status": "Done"})
  assert await local.get_tasks_by_status("Backlog") == []
  done = await local.get_tasks_by_status("Done")
  assert len(done) == 1
  assert parse_dt_utc(done[0]["updatedAt"]) > parse_dt_utc(done[0]["createdAt"])


@pytest.mark.anyio
async def test_update_keeps_reestimates_at_ten(local: LocalStorageService) -> None:
  task = await local.create_task({"atividade": "x", "estimativa": 2})
  updated = await local.update_task(task["id"], {"reestimativas": list(range(20))})
  assert updated["reestimativas"] == list(range(10))
  updated = await local.update_task(task["id"], {"reestimativas": [], "estimativa": 5})
  assert updated["reestimativas"] == [5] * 10


@pytest.mark.anyio
async def test_update_and_delete_missing_task_raise(local: LocalStorageService) -> None:
  with pytest.raises(NotFoundError):
    await local.update_task("missing", {"status": "Done"})
  with pytest.raises(NotFoundError):
    await local.delete_task("missing")


@pytest.mark.anyio
async def test_delete_returns_removed_task(local: LocalStorageService) -> None:
  task = await local.create_task({"atividade": "x"})
  assert await local.delete_task(task["id"]) == task
  assert await local.get_tasks() == []


@pytest.mark.anyio
async def test_bulk_update_isolates_failures(local: LocalStorageService) -> None:
  a = await local.create_task({"atividade": "a"})
  b = await local.create_task({"atividade": "b"})
  result = await local.bulk_update_tasks([
    {"id": a["id"], "updates": {"status": "Doing"}},
    {"id": "missing", "updates": {"status": "Doing"}},
    {"id": b["id"], "updates": {"status": "Done"}},
  ])
  assert [t["id"] for t in result.tasks] == [a["id"], b["id"]]
  assert [e["id"] for e in result.errors] == ["missing"]
  assert (await local.get_task(b["id"]))["status"] == "Done"


@pytest.mark.anyio
async def test_bulk_delete_isolates_failures(local: LocalStorageService) -> None:
  a = await local.create_task({"atividade": "a"})
  seen: list[dict] = []
  local.add_event_listener(ServiceEvent.TASKS_BULK_DELETED, seen.append)
  result = await local.bulk_delete_tasks([a["id"], "missing"])
  assert [t["id"] for t in result.tasks] == [a["id"]]
  assert len(result.errors) == 1
  assert len(seen) == 1


@pytest.mark.anyio
async def test_counts_ignore_pagination(local: LocalStorageService) -> None:
  for i in range(5):
    await local.create_task({"atividade": f"t{i}", "status": "Doing" if i % 2 else "Backlog"})
  assert len(await local.get_tasks({"limit": 2})) == 2
  assert await local.get_tasks_count({"limit": 2}) == 5
  assert await local.get_tasks_by_status_count() == {"Backlog": 3, "Doing": 2}


@pytest.mark.anyio
async def test_sprint_and_developer_statistics(local: LocalStorageService) -> None:
  await local.create_task({"atividade": "a", "sprint": "S1", "status": "Done", "estimativa": 4, "tempoGasto": 5, "taxaErro": 25, "desenvolvedor": "Ana"})
  await local.create_task({"atividade": "b", "sprint": "S1", "status": "Doing", "estimativa": 2, "desenvolvedor": "Ana"})
  await local.create_task({"atividade": "c", "sprint": "S1", "status": "Priorizado", "estimativa": 1})
  await local.create_task({"atividade": "d", "sprint": "S2", "status": "Done", "estimativa": 3, "tempoGasto": 2, "taxaErro": -15, "desenvolvedor": "Ana"})

  sprint = await local.get_sprint_statistics("S1")
  assert sprint == {
    "total": 3,
    "completed": 1,
    "inProgress": 1,
    "todo": 1,
    "totalEstimated": 7,
    "totalSpent": 5,
    "completionRate": pytest.approx(100 / 3),
  }

  dev = await local.get_developer_statistics("ana")
  assert dev["total"] == 3
  assert dev["completed"] == 2
  assert dev["averageError"] == 20
  assert dev["accuracy"] == 80


@pytest.mark.anyio
async def test_statistics_of_empty_sprint(local: LocalStorageService) -> None:
  stats = await local.get_sprint_statistics("nothing")
  assert stats["total"] == 0
  assert stats["completionRate"] == 0


@pytest.mark.anyio
async def test_config_round_trip(local: LocalStorageService) -> None:
  assert await local.get_config("theme") is None
  await local.set_config("theme", {"dark": True})
  assert await local.get_config("theme") == {"dark": True}
  await local.delete_config("theme")
  assert await local.get_config("theme") is None


@pytest.mark.anyio
async def test_export_json_and_csv(local: LocalStorageService) -> None:
  await local.create_task({"atividade": "Write tests", "desenvolvedor": "Ana", "estimativa": 3})
  await local.set_config("wip", 3)

  payload = json.loads(await local.export_data("json"))
  assert payload["version"] == "1.0"
  assert payload["config"] == {"wip": 3}
  assert len(payload["tasks"]) == 1
  assert "exportedAt" in payload

  lines = (await local.export_data("csv")).split("\n")
  assert lines[0] == "id,atividade,status,desenvolvedor,estimativa,tempoGasto"
  assert lines[1].endswith(",Write tests,Backlog,Ana,3,")

  with pytest.raises(ValidationError):
    await local.export_data("xml")


@pytest.mark.anyio
async def test_import_merge_and_replace(local: LocalStorageService) -> None:
  a = await local.create_task({"atividade": "a"})
  await local.create_task({"atividade": "b"})

  merged = await local.import_data(
    {"tasks": [{**a, "atividade": "a2"}, {"id": "new", "atividade": "c", "reestimativas": [1]}]},
    merge=True,
  )
  assert merged["tasksImported"] == 2
  tasks = await local.get_tasks()
  assert [t["atividade"] for t in tasks] == ["a2", "b", "c"]
  assert len(tasks[2]["reestimativas"]) == 10

  await local.import_data(json.dumps({"tasks": [{"id": "only", "atividade": "z"}]}))
  assert [t["id"] for t in await local.get_tasks()] == ["only"]

  with pytest.raises(ValidationError):
    await local.import_data("{not json")


@pytest.mark.anyio
async def test_import_assigns_ids_to_tasks_without_one(local: LocalStorageService) -> None:
  result = await local.import_data({"tasks": [{"atividade": "a"}, {"atividade": "b"}]}, merge=True)
  assert result["tasksImported"] == 2
  tasks = await local.get_tasks()
  assert [t["atividade"] for t in tasks] == ["a", "b"]
  assert all(t["id"] for t in tasks)
  assert tasks[0]["id"] != tasks[1]["id"]

  await local.import_data({"tasks": [{"atividade": "c"}]})
  only = (await local.get_tasks())[0]
  assert (await local.get_task(only["id"]))["atividade"] == "c"
  await local.delete_task(only["id"])
  assert await local.get_tasks() == []


@pytest.mark.anyio
async def test_backup_and_restore(local: LocalStorageService) -> None:
  await local.create_task({"atividade": "keep me"})
  backup = await local.create_backup()
  assert backup["backupKey"] in local.list_backups()

  await local.import_data({"tasks": []})
  assert await local.get_tasks() == []

  await local.restore_backup(backup["backupKey"])
  assert [t["atividade"] for t in await local.get_tasks()] == ["keep me"]

  with pytest.raises(NotFoundError):
    await local.restore_backup(f"{local.storage_keys['backup']}-0")


@pytest.mark.anyio
async def test_sync_records_last_sync_time(local: LocalStorageService) -> None:
  assert await local.get_last_sync_time() is None
  res = await local.sync()
  assert res["success"] is True
  assert await local.get_last_sync_time() is not None


@pytest.mark.anyio
async def test_health_check_when_ready(local: LocalStorageService) -> None:
  assert (await local.health_check())["status"] == "healthy"


@pytest.mark.anyio
async def test_corrupt_store_reads_as_empty(kv_store: MemoryKeyValueStore, local: LocalStorageService) -> None:
  kv_store.set(local.tasks_key, "{broken")
  assert await local.get_tasks() == []


@pytest.mark.anyio
async def test_room_scoped_store_uses_room_key(kv_store: MemoryKeyValueStore) -> None:
  svc = LocalStorageService(kv_store, room_code="abc123")
  await svc.initialize()
  await svc.create_task({"atividade": "scoped"})
  assert svc.tasks_key == "tasktracker_room_ABC123"
  assert svc.get_available_rooms() == ["ABC123"]
  assert [t["atividade"] for t in svc.get_room_tasks("ABC123")] == ["scoped"]
  assert svc.get_unscoped_tasks() == []


@pytest.mark.anyio
async def test_disconnect_requires_new_initialize(local: LocalStorageService) -> None:
  seen: list[dict] = []
  local.add_event_listener(ServiceEvent.DISCONNECTED, seen.append)
  await local.disconnect()
  assert len(seen) == 1
  with pytest.raises(NotInitializedError):
    await local.get_tasks()
