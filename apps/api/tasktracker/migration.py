from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from tasktracker.config import settings
from tasktracker.security import normalize_room_code
from tasktracker.services.local import LocalStorageService
from tasktracker.services.remote import RemoteStorageService
from tasktracker.task_fields import DEFAULT_STATUS

logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
  rooms_created: int = 0
  tasks_migrated: int = 0
  errors: list[dict[str, Any]] = field(default_factory=list)
  rooms: list[str] = field(default_factory=list)


def _with_defaults(task: dict[str, Any]) -> dict[str, Any]:
  out = dict(task)
  out["atividade"] = out.get("atividade") or settings.migration_placeholder_title
  out["status"] = out.get("status") or DEFAULT_STATUS
  out["estimativa"] = out.get("estimativa") or 0
  return out


class MigrationBridge:
  """
  One-shot copy of local rooms into the remote backend.

  Local data is left untouched so it can still be used as a fallback.
  """

  def __init__(self, local: LocalStorageService, remote: RemoteStorageService) -> None:
    self.local = local
    self.remote = remote

  def preview(self) -> dict[str, int]:
    return {code: len(self.local.get_room_tasks(code)) for code in self.local.get_available_rooms()}

  async def run(self, *, unscoped_room_code: str | None = None) -> MigrationReport:
    report = MigrationReport()
    if not self.remote.initialized:
      await self.remote.initialize()

    previous_room = self.remote.current_room_id
    try:
      for code in self.local.get_available_rooms():
        await self._migrate_room(code, self.local.get_room_tasks(code), report)

      target = normalize_room_code(unscoped_room_code)
      if target:
        unscoped = self.local.get_unscoped_tasks()
        if unscoped:
          await self._migrate_room(target, unscoped, report)
    finally:
      self.remote.set_current_room(previous_room)

    logger.info(
      "Migration finished: %s rooms created, %s tasks migrated, %s errors",
      report.rooms_created,
      report.tasks_migrated,
      len(report.errors),
    )
    return report

  async def _migrate_room(self, room_code: str, tasks: list[dict[str, Any]], report: MigrationReport) -> None:
    try:
      room = await self.remote.find_room_by_code(room_code)
      if room is None:
        room = await self.remote.create_room({"name": f"Room {room_code}", "room_code": room_code})
        report.rooms_created += 1
      elif await self.remote.get_user_role(room["id"]) == "none":
        room = await self.remote.join_room(room_code)
      self.remote.set_current_room(room["id"])
    except Exception as exc:
      logger.warning("Migration of room %s failed: %s", room_code, exc)
      report.errors.append({"roomCode": room_code, "error": str(exc)})
      return

    report.rooms.append(room["room_code"])
    for task in tasks:
      try:
        await self.remote.create_task(_with_defaults(task))
        report.tasks_migrated += 1
      except Exception as exc:
        logger.warning("Migration of task %s in room %s failed: %s", task.get("id"), room_code, exc)
        report.errors.append({"roomCode": room_code, "taskId": task.get("id"), "error": str(exc)})
