from __future__ import annotations

import json
import logging
import time
from typing import Any

from tasktracker.config import settings
from tasktracker.errors import NotFoundError, StoreConnectionError, ValidationError
from tasktracker.events import ServiceEvent
from tasktracker.filters import apply_filters, coerce_filters, paginate
from tasktracker.security import generate_task_id, normalize_room_code
from tasktracker.services.base import EXPORT_VERSION, DataService, FilterArg
from tasktracker.services.kv import KeyValueStore, MemoryKeyValueStore
from tasktracker.task_fields import (
  apply_update,
  normalize_reestimates,
  now_iso,
  sanitize_task_data,
  validate_task_data,
)

logger = logging.getLogger(__name__)

_PROBE_KEY = "tasktracker-test"


class LocalStorageService(DataService):
  """
  Key/value backed storage.

  Tasks live as one JSON list under a single key. With a ``room_code`` the
  list is kept under ``tasktracker_room_<CODE>`` instead, which is also what
  the migration bridge scans for.
  """

  def __init__(
    self,
    store: KeyValueStore | None = None,
    *,
    room_code: str | None = None,
    config: dict[str, Any] | None = None,
  ) -> None:
    super().__init__(config)
    self.store = store if store is not None else MemoryKeyValueStore()
    self.room_code = normalize_room_code(room_code) or None
    cfg = self.config
    self.storage_keys = {
      "tasks": cfg.get("tasks_key") or settings.tasks_key,
      "config": cfg.get("config_key") or settings.config_key,
      "backup": cfg.get("backup_key") or settings.backup_key,
      "last_sync": cfg.get("last_sync_key") or settings.last_sync_key,
    }

  @property
  def tasks_key(self) -> str:
    if self.room_code:
      return room_tasks_key(self.room_code)
    return self.storage_keys["tasks"]

  # storage helpers

  def _read(self, key: str) -> Any:
    raw = self.store.get(key)
    if not raw:
      return None
    try:
      return json.loads(raw)
    except json.JSONDecodeError:
      logger.error("Corrupt JSON under key %s; treating as empty", key)
      return None

  def _write(self, key: str, value: Any) -> None:
    try:
      self.store.set(key, json.dumps(value, ensure_ascii=False, default=str))
    except Exception as exc:
      self.emit(ServiceEvent.ERROR, {"error": str(exc), "operation": "save", "key": key})
      raise StoreConnectionError(f"Failed to save key {key}: {exc}") from exc

  def _load_tasks(self, key: str | None = None) -> list[dict[str, Any]]:
    data = self._read(key or self.tasks_key)
    if not isinstance(data, list):
      return []
    return [t for t in data if isinstance(t, dict)]

  def _save_tasks(self, tasks: list[dict[str, Any]], key: str | None = None) -> None:
    self._write(key or self.tasks_key, tasks)

  def _load_config(self) -> dict[str, Any]:
    data = self._read(self.storage_keys["config"])
    return data if isinstance(data, dict) else {}

  # lifecycle

  async def initialize(self) -> dict[str, Any]:
    try:
      self.store.set(_PROBE_KEY, "test")
      self.store.remove(_PROBE_KEY)
    except Exception as exc:
      raise StoreConnectionError(f"Failed to initialize LocalStorageService: {exc}") from exc
    self.initialized = True
    self.emit(ServiceEvent.INITIALIZED, {"service": "LocalStorageService", "roomCode": self.room_code})
    return {"success": True, "message": "LocalStorageService initialized successfully"}

  # tasks

  async def get_tasks(self, filters: FilterArg = None) -> list[dict[str, Any]]:
    self._require_initialized()
    f = coerce_filters(filters)
    return paginate(apply_filters(self._load_tasks(), f), f)

  async def get_task(self, task_id: str) -> dict[str, Any] | None:
    self._require_initialized()
    return next((t for t in self._load_tasks() if t.get("id") == task_id), None)

  async def create_task(self, data: dict[str, Any]) -> dict[str, Any]:
    self._require_initialized()
    validate_task_data(data)
    task = sanitize_task_data(data)
    tasks = self._load_tasks()
    tasks.append(task)
    self._save_tasks(tasks)
    self.emit(ServiceEvent.TASK_CREATED, {"task": task})
    return task

  def _update_in_place(self, task_id: str, updates: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    tasks = self._load_tasks()
    for i, current in enumerate(tasks):
      if current.get("id") == task_id:
        updated = apply_update(current, updates)
        tasks[i] = updated
        self._save_tasks(tasks)
        return updated, current
    raise NotFoundError(f"Task with id {task_id} not found")

  async def update_task(self, task_id: str, updates: dict[str, Any]) -> dict[str, Any]:
    self._require_initialized()
    updated, old = self._update_in_place(task_id, updates)
    self.emit(ServiceEvent.TASK_UPDATED, {"task": updated, "oldTask": old})
    return updated

  def _delete_in_place(self, task_id: str) -> dict[str, Any]:
    tasks = self._load_tasks()
    for i, current in enumerate(tasks):
      if current.get("id") == task_id:
        del tasks[i]
        self._save_tasks(tasks)
        return current
    raise NotFoundError(f"Task with id {task_id} not found")

  async def delete_task(self, task_id: str) -> dict[str, Any]:
    self._require_initialized()
    deleted = self._delete_in_place(task_id)
    self.emit(ServiceEvent.TASK_DELETED, {"task": deleted})
    return deleted

  async def _bulk_update_one(self, task_id: str, updates: dict[str, Any]) -> dict[str, Any]:
    return self._update_in_place(task_id, updates)[0]

  async def _bulk_delete_one(self, task_id: str) -> dict[str, Any]:
    return self._delete_in_place(task_id)

  # config

  async def get_config(self, key: str) -> Any:
    self._require_initialized()
    return self._load_config().get(key)

  async def set_config(self, key: str, value: Any) -> dict[str, Any]:
    self._require_initialized()
    cfg = self._load_config()
    cfg[key] = value
    self._write(self.storage_keys["config"], cfg)
    self.emit(ServiceEvent.CONFIG_UPDATED, {"key": key, "value": value})
    return {"success": True}

  async def delete_config(self, key: str) -> dict[str, Any]:
    self._require_initialized()
    cfg = self._load_config()
    cfg.pop(key, None)
    self._write(self.storage_keys["config"], cfg)
    self.emit(ServiceEvent.CONFIG_DELETED, {"key": key})
    return {"success": True}

  # export / import / backup

  async def _export_payload(self) -> dict[str, Any]:
    return {
      "tasks": self._load_tasks(),
      "config": self._load_config(),
      "exportedAt": now_iso(),
      "version": EXPORT_VERSION,
    }

  async def import_data(self, data: str | dict[str, Any], *, merge: bool = False) -> dict[str, Any]:
    self._require_initialized()
    try:
      payload = json.loads(data) if isinstance(data, str) else data
    except json.JSONDecodeError as exc:
      raise ValidationError(f"Failed to import data: {exc}") from exc
    if not isinstance(payload, dict):
      raise ValidationError("Failed to import data: expected an object with a tasks list")
    incoming = payload.get("tasks") or []
    if not isinstance(incoming, list):
      raise ValidationError("Failed to import data: tasks must be a list")

    imported = []
    for raw in incoming:
      if not isinstance(raw, dict):
        continue
      task = dict(raw)
      task["id"] = task.get("id") or generate_task_id()
      task["reestimativas"] = normalize_reestimates(task.get("reestimativas"), task.get("estimativa"))
      imported.append(task)

    if merge:
      tasks = self._load_tasks()
      index = {t.get("id"): i for i, t in enumerate(tasks)}
      for task in imported:
        pos = index.get(task.get("id"))
        if pos is None:
          index[task.get("id")] = len(tasks)
          tasks.append(task)
        else:
          tasks[pos] = task
      self._save_tasks(tasks)
    else:
      self._save_tasks(imported)

    if isinstance(payload.get("config"), dict):
      self._write(self.storage_keys["config"], payload["config"])

    self.emit(ServiceEvent.DATA_IMPORTED, {"tasksCount": len(imported), "merged": merge})
    return {"success": True, "tasksImported": len(imported)}

  async def create_backup(self) -> dict[str, Any]:
    self._require_initialized()
    snapshot = await self._export_payload()
    backup_key = f"{self.storage_keys['backup']}-{int(time.time() * 1000)}"
    self._write(backup_key, snapshot)
    return {"success": True, "backupKey": backup_key, "timestamp": now_iso()}

  def list_backups(self) -> list[str]:
    return self.store.keys(f"{self.storage_keys['backup']}-")

  async def restore_backup(self, backup: str | dict[str, Any]) -> dict[str, Any]:
    self._require_initialized()
    if isinstance(backup, str) and backup.startswith(f"{self.storage_keys['backup']}-"):
      snapshot = self._read(backup)
      if snapshot is None:
        raise NotFoundError(f"Backup {backup} not found")
      backup = snapshot
    return await self.import_data(backup, merge=False)

  # sync

  async def sync(self) -> dict[str, Any]:
    self._require_initialized()
    stamp = now_iso()
    self._write(self.storage_keys["last_sync"], stamp)
    self.emit(ServiceEvent.SYNCED, {"timestamp": stamp})
    return {"success": True, "message": "Local sync completed"}

  async def get_last_sync_time(self) -> str | None:
    self._require_initialized()
    return self._read(self.storage_keys["last_sync"])

  # rooms known to this store

  def get_available_rooms(self) -> list[str]:
    prefix = settings.room_key_prefix
    return [key[len(prefix):] for key in self.store.keys(prefix) if key[len(prefix):]]

  def get_room_tasks(self, room_code: str) -> list[dict[str, Any]]:
    return self._load_tasks(room_tasks_key(room_code))

  def get_unscoped_tasks(self) -> list[dict[str, Any]]:
    return self._load_tasks(self.storage_keys["tasks"])

  def save_room_tasks(self, room_code: str, tasks: list[dict[str, Any]]) -> None:
    self._save_tasks(tasks, room_tasks_key(room_code))

  def get_service_info(self) -> dict[str, Any]:
    info = super().get_service_info()
    info["roomCode"] = self.room_code
    info["tasksKey"] = self.tasks_key
    return info


def room_tasks_key(room_code: str) -> str:
  return f"{settings.room_key_prefix}{room_code}"
