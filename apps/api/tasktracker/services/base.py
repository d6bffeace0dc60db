from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from tasktracker.errors import NotInitializedError, ValidationError
from tasktracker.events import EventEmitter, Listener, ServiceEvent
from tasktracker.filters import TaskFilters, coerce_filters
from tasktracker.task_fields import as_number, now_iso

logger = logging.getLogger(__name__)

FilterArg = TaskFilters | dict[str, Any] | None
ExportFormat = Literal["json", "csv"]
EXPORT_VERSION = "1.0"


@dataclass
class BulkResult:
  tasks: list[dict[str, Any]] = field(default_factory=list)
  errors: list[dict[str, Any]] = field(default_factory=list)


def sprint_statistics(tasks: list[dict[str, Any]]) -> dict[str, Any]:
  total = len(tasks)
  completed = sum(1 for t in tasks if t.get("status") == "Done")
  stats: dict[str, Any] = {
    "total": total,
    "completed": completed,
    "inProgress": sum(1 for t in tasks if t.get("status") == "Doing"),
    "todo": sum(1 for t in tasks if t.get("status") in ("Backlog", "Priorizado")),
    "totalEstimated": sum(as_number(t.get("estimativa")) for t in tasks),
    "totalSpent": sum(as_number(t.get("tempoGasto")) for t in tasks),
  }
  stats["completionRate"] = (completed / total) * 100 if total > 0 else 0
  return stats


def developer_statistics(tasks: list[dict[str, Any]]) -> dict[str, Any]:
  stats: dict[str, Any] = {
    "total": len(tasks),
    "completed": sum(1 for t in tasks if t.get("status") == "Done"),
    "accuracy": 0,
    "averageError": 0,
  }
  measured = [t for t in tasks if t.get("status") == "Done" and t.get("tempoGasto") and t.get("estimativa")]
  if measured:
    total_error = sum(abs(as_number(t.get("taxaErro"))) for t in measured)
    stats["averageError"] = total_error / len(measured)
    stats["accuracy"] = max(0, 100 - stats["averageError"])
  return stats


def render_csv(rows: list[dict[str, Any]], headers: list[str]) -> str:
  lines = [",".join(headers)]
  for row in rows:
    lines.append(",".join("" if row.get(h) in (None, "", False) else str(row.get(h)) for h in headers))
  return "\n".join(lines)


class DataService(ABC):
  """
  Storage contract shared by every backend.

  Consumers only ever call these coroutines, so the UI layer never needs to
  know which backend it holds. Task dicts use the canonical field keys from
  ``tasktracker.task_fields``.
  """

  csv_headers: list[str] = ["id", "atividade", "status", "desenvolvedor", "estimativa", "tempoGasto"]

  def __init__(self, config: dict[str, Any] | None = None) -> None:
    self.config = dict(config or {})
    self.initialized = False
    self.events = EventEmitter()

  # events

  def add_event_listener(self, event: ServiceEvent | str, callback: Listener) -> None:
    self.events.add_event_listener(event, callback)

  def remove_event_listener(self, event: ServiceEvent | str, callback: Listener) -> None:
    self.events.remove_event_listener(event, callback)

  def emit(self, event: ServiceEvent | str, payload: dict[str, Any] | None = None) -> int:
    return self.events.emit(event, payload)

  def _require_initialized(self) -> None:
    if not self.initialized:
      raise NotInitializedError(f"{type(self).__name__} not initialized")

  # lifecycle

  @abstractmethod
  async def initialize(self) -> dict[str, Any]:
    """Verify the store is usable. Safe to call again; it re-verifies."""

  async def disconnect(self) -> dict[str, Any]:
    self.initialized = False
    self.emit(ServiceEvent.DISCONNECTED, {"service": type(self).__name__})
    return {"success": True, "message": f"{type(self).__name__} disconnected"}

  # task CRUD

  @abstractmethod
  async def get_tasks(self, filters: FilterArg = None) -> list[dict[str, Any]]:
    ...

  @abstractmethod
  async def get_task(self, task_id: str) -> dict[str, Any] | None:
    """Return the task or ``None``; never raises for a missing id."""

  @abstractmethod
  async def create_task(self, data: dict[str, Any]) -> dict[str, Any]:
    ...

  @abstractmethod
  async def update_task(self, task_id: str, updates: dict[str, Any]) -> dict[str, Any]:
    ...

  @abstractmethod
  async def delete_task(self, task_id: str) -> dict[str, Any]:
    ...

  @abstractmethod
  async def _bulk_update_one(self, task_id: str, updates: dict[str, Any]) -> dict[str, Any]:
    """Update a single task for a bulk call without emitting per-task events."""

  @abstractmethod
  async def _bulk_delete_one(self, task_id: str) -> dict[str, Any]:
    ...

  async def _run_bulk(self, ids_and_args: list[tuple[Any, tuple]], op: Callable[..., Any], label: str) -> BulkResult:
    result = BulkResult()
    for task_id, args in ids_and_args:
      try:
        if not task_id:
          raise ValidationError(f"Bulk {label} item requires an id")
        result.tasks.append(await op(task_id, *args))
      except Exception as exc:
        logger.warning("Bulk %s skipped task %s: %s", label, task_id, exc)
        result.errors.append({"id": task_id, "error": str(exc)})
    return result

  async def bulk_update_tasks(self, updates: list[dict[str, Any]]) -> BulkResult:
    self._require_initialized()
    items = []
    for item in updates or []:
      item = item or {}
      changes = item.get("updates", item.get("partial")) or {}
      items.append((item.get("id"), (changes,)))
    result = await self._run_bulk(items, self._bulk_update_one, "update")
    self.emit(ServiceEvent.TASKS_BULK_UPDATED, {"tasks": result.tasks, "errors": result.errors})
    return result

  async def bulk_delete_tasks(self, ids: list[str]) -> BulkResult:
    self._require_initialized()
    result = await self._run_bulk([(task_id, ()) for task_id in ids or []], self._bulk_delete_one, "delete")
    self.emit(ServiceEvent.TASKS_BULK_DELETED, {"tasks": result.tasks, "errors": result.errors})
    return result

  # query sugar

  async def get_tasks_by_status(self, status: str, filters: FilterArg = None) -> list[dict[str, Any]]:
    return await self.get_tasks(coerce_filters(filters, status=status))

  async def get_tasks_by_sprint(self, sprint: str, filters: FilterArg = None) -> list[dict[str, Any]]:
    return await self.get_tasks(coerce_filters(filters, sprint=sprint))

  async def get_tasks_by_developer(self, developer: str, filters: FilterArg = None) -> list[dict[str, Any]]:
    return await self.get_tasks(coerce_filters(filters, desenvolvedor=developer))

  async def get_tasks_by_epic(self, epic: str, filters: FilterArg = None) -> list[dict[str, Any]]:
    return await self.get_tasks(coerce_filters(filters, epico=epic))

  # aggregates

  async def get_tasks_count(self, filters: FilterArg = None) -> int:
    return len(await self.get_tasks(coerce_filters(filters).without_pagination()))

  async def get_tasks_by_status_count(self) -> dict[str, int]:
    counts: dict[str, int] = {}
    for task in await self.get_tasks():
      key = task.get("status")
      counts[key] = counts.get(key, 0) + 1
    return counts

  async def get_sprint_statistics(self, sprint: str) -> dict[str, Any]:
    return sprint_statistics(await self.get_tasks_by_sprint(sprint))

  async def get_developer_statistics(self, developer: str) -> dict[str, Any]:
    return developer_statistics(await self.get_tasks_by_developer(developer))

  # config

  @abstractmethod
  async def get_config(self, key: str) -> Any:
    ...

  @abstractmethod
  async def set_config(self, key: str, value: Any) -> dict[str, Any]:
    ...

  @abstractmethod
  async def delete_config(self, key: str) -> dict[str, Any]:
    ...

  # export / import

  @abstractmethod
  async def _export_payload(self) -> dict[str, Any]:
    ...

  def _csv_source(self, task: dict[str, Any]) -> dict[str, Any]:
    return task

  async def export_data(self, format: ExportFormat = "json") -> str:
    self._require_initialized()
    if format not in ("json", "csv"):
      raise ValidationError(f"Unsupported export format: {format}")
    payload = await self._export_payload()
    if format == "json":
      return json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    return render_csv([self._csv_source(t) for t in payload["tasks"]], self.csv_headers)

  @abstractmethod
  async def import_data(self, data: str | dict[str, Any], *, merge: bool = False) -> dict[str, Any]:
    ...

  @abstractmethod
  async def create_backup(self) -> dict[str, Any]:
    ...

  @abstractmethod
  async def restore_backup(self, backup: str | dict[str, Any]) -> dict[str, Any]:
    ...

  # sync

  @abstractmethod
  async def sync(self) -> dict[str, Any]:
    ...

  @abstractmethod
  async def get_last_sync_time(self) -> str | None:
    ...

  # health

  async def _probe(self) -> None:
    await self.get_tasks({"limit": 1})

  async def health_check(self) -> dict[str, Any]:
    try:
      await self._probe()
    except Exception as exc:
      logger.warning("%s health check failed: %s", type(self).__name__, exc)
      return {"status": "unhealthy", "error": str(exc), "timestamp": now_iso()}
    return {"status": "healthy", "timestamp": now_iso()}

  def get_service_info(self) -> dict[str, Any]:
    return {
      "name": type(self).__name__,
      "initialized": self.initialized,
      "config": dict(self.config),
      "timestamp": now_iso(),
    }
