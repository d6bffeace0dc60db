from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.access import require_room_role, room_role, visible_room_ids
from tasktracker.auth import AuthProvider
from tasktracker.db import SessionLocal
from tasktracker.errors import (
  NoRoomSelectedError,
  NotAuthenticatedError,
  NotFoundError,
  PermissionDeniedError,
  RoomCodeConflictError,
  RoomNotFoundError,
  StoreConnectionError,
  UnsupportedOperationError,
  ValidationError,
)
from tasktracker.events import ServiceEvent
from tasktracker.filters import coerce_filters, like_pattern, task_filter_clauses
from tasktracker.models import Room, RoomAccess, Task, User, UserSetting, utcnow
from tasktracker.security import generate_room_code, is_valid_room_code, normalize_room_code
from tasktracker.services.base import EXPORT_VERSION, DataService, FilterArg
from tasktracker.task_fields import (
  apply_update,
  from_wire,
  iso,
  now_iso,
  parse_dt_utc,
  sanitize_task_data,
  to_wire,
  validate_task_data,
)

logger = logging.getLogger(__name__)

# Columns the store owns; caller input never reaches them.
_MANAGED_COLUMNS = frozenset({"id", "room_id", "created_by", "updated_by", "created_at", "updated_at"})
_TASK_COLUMNS = frozenset(c.key for c in Task.__table__.columns)
_WRITABLE_COLUMNS = _TASK_COLUMNS - _MANAGED_COLUMNS
_ROOM_FIELDS = ("name", "description", "is_public")
_GENERATED_CODE_ATTEMPTS = 5


def _task_dict(row: Task) -> dict[str, Any]:
  wire: dict[str, Any] = {}
  for key in _TASK_COLUMNS:
    value = getattr(row, key)
    wire[key] = iso(value) if isinstance(value, datetime) else value
  return from_wire(wire)


def _room_dict(room: Room, role: str | None = None) -> dict[str, Any]:
  out = {
    "id": room.id,
    "name": room.name,
    "description": room.description,
    "is_public": room.is_public,
    "room_code": room.room_code,
    "owner_id": room.owner_id,
    "created_at": iso(room.created_at),
    "updated_at": iso(room.updated_at),
  }
  if role is not None:
    out["role"] = role
  return out


def _writable(task: dict[str, Any]) -> dict[str, Any]:
  columns = {}
  for key, value in to_wire(task).items():
    if key in _WRITABLE_COLUMNS:
      columns[key] = value
    elif key not in _MANAGED_COLUMNS:
      logger.debug("Dropping unknown task field %s", key)
  return columns


class RemoteStorageService(DataService):
  """
  Relational storage with per-room isolation.

  Every task operation is scoped to the current room and to the rooms the
  signed-in actor can see (owned, or granted through room_access). Rows in
  other rooms read as absent.
  """

  csv_headers = ["id", "atividade", "status", "desenvolvedor", "estimativa", "tempo_gasto"]

  def __init__(
    self,
    auth: AuthProvider,
    *,
    session_factory: Callable[[], AsyncSession] = SessionLocal,
    room_id: str | None = None,
    config: dict[str, Any] | None = None,
  ) -> None:
    super().__init__(config)
    self.auth = auth
    self._session_factory = session_factory
    self.current_room_id = room_id or self.config.get("room_id")
    self._last_created_at: datetime | None = None

  # identity and scope

  def _actor_id(self) -> str:
    user = self.auth.current_user
    if user is None:
      raise NotAuthenticatedError()
    return user.id

  def _require_room(self) -> str:
    if not self.current_room_id:
      raise NoRoomSelectedError()
    return self.current_room_id

  def _scope(self) -> tuple[str, str]:
    self._require_initialized()
    room_id = self._require_room()
    return self._actor_id(), room_id

  def set_current_room(self, room_id: str | None) -> None:
    self.current_room_id = room_id
    self.emit(ServiceEvent.ROOM_CHANGED, {"roomId": room_id})

  def _visible_tasks(self, actor_id: str, room_id: str):
    return select(Task).where(Task.room_id == room_id, Task.room_id.in_(visible_room_ids(actor_id)))

  # lifecycle

  async def initialize(self) -> dict[str, Any]:
    try:
      async with self._session_factory() as db:
        await db.execute(select(func.count()).select_from(Room))
    except SQLAlchemyError as exc:
      raise StoreConnectionError(f"Failed to initialize RemoteStorageService: {exc}") from exc
    self.initialized = True
    self.emit(ServiceEvent.INITIALIZED, {"service": "RemoteStorageService"})
    return {"success": True, "message": "RemoteStorageService initialized successfully"}

  async def _probe(self) -> None:
    async with self._session_factory() as db:
      await db.execute(select(Room.id).limit(1))

  # tasks

  async def get_tasks(self, filters: FilterArg = None) -> list[dict[str, Any]]:
    actor_id, room_id = self._scope()
    f = coerce_filters(filters)
    q = self._visible_tasks(actor_id, room_id).where(*task_filter_clauses(f))
    q = q.order_by(Task.created_at.asc(), Task.id.asc())
    if f.offset:
      q = q.offset(f.offset)
    if f.limit is not None:
      q = q.limit(f.limit)
    async with self._session_factory() as db:
      rows = (await db.execute(q)).scalars().all()
    return [_task_dict(r) for r in rows]

  async def get_task(self, task_id: str) -> dict[str, Any] | None:
    actor_id, room_id = self._scope()
    async with self._session_factory() as db:
      res = await db.execute(self._visible_tasks(actor_id, room_id).where(Task.id == task_id))
      row = res.scalar_one_or_none()
    return _task_dict(row) if row else None

  async def create_task(self, data: dict[str, Any]) -> dict[str, Any]:
    actor_id, room_id = self._scope()
    validate_task_data(data)
    payload = sanitize_task_data(data, with_id=False)
    async with self._session_factory() as db:
      await self._require_writable_room(db, room_id, actor_id)
      stamp = self._creation_stamp()
      row = Task(
        room_id=room_id,
        created_by=actor_id,
        updated_by=actor_id,
        created_at=stamp,
        updated_at=stamp,
        **_writable(payload),
      )
      db.add(row)
      await db.commit()
      await db.refresh(row)
      task = _task_dict(row)
    self.emit(ServiceEvent.TASK_CREATED, {"task": task})
    return task

  def _creation_stamp(self) -> datetime:
    # Strictly increasing per instance, so listings keep creation order.
    stamp = utcnow()
    if self._last_created_at is not None and stamp <= self._last_created_at:
      stamp = self._last_created_at + timedelta(microseconds=1)
    self._last_created_at = stamp
    return stamp

  async def _require_writable_room(self, db: AsyncSession, room_id: str, actor_id: str) -> None:
    try:
      await require_room_role(db, room_id, "member", actor_id)
    except RoomNotFoundError as exc:
      raise PermissionDeniedError(f"Room {room_id} is not writable") from exc

  async def _update_row(self, task_id: str, updates: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    actor_id, room_id = self._scope()
    async with self._session_factory() as db:
      res = await db.execute(self._visible_tasks(actor_id, room_id).where(Task.id == task_id))
      row = res.scalar_one_or_none()
      if not row:
        raise NotFoundError(f"Task with id {task_id} not found")
      old = _task_dict(row)
      merged = apply_update(old, updates)
      for key, value in _writable(merged).items():
        setattr(row, key, value)
      row.updated_at = parse_dt_utc(merged["updatedAt"])
      row.updated_by = actor_id
      await db.commit()
      await db.refresh(row)
      return _task_dict(row), old

  async def update_task(self, task_id: str, updates: dict[str, Any]) -> dict[str, Any]:
    updated, old = await self._update_row(task_id, updates)
    self.emit(ServiceEvent.TASK_UPDATED, {"task": updated, "oldTask": old})
    return updated

  async def _delete_row(self, task_id: str) -> dict[str, Any]:
    actor_id, room_id = self._scope()
    async with self._session_factory() as db:
      res = await db.execute(self._visible_tasks(actor_id, room_id).where(Task.id == task_id))
      row = res.scalar_one_or_none()
      if not row:
        raise NotFoundError(f"Task with id {task_id} not found")
      task = _task_dict(row)
      await db.delete(row)
      await db.commit()
    return task

  async def delete_task(self, task_id: str) -> dict[str, Any]:
    task = await self._delete_row(task_id)
    self.emit(ServiceEvent.TASK_DELETED, {"task": task})
    return task

  async def _bulk_update_one(self, task_id: str, updates: dict[str, Any]) -> dict[str, Any]:
    return (await self._update_row(task_id, updates))[0]

  async def _bulk_delete_one(self, task_id: str) -> dict[str, Any]:
    return await self._delete_row(task_id)

  # aggregates

  async def get_tasks_count(self, filters: FilterArg = None) -> int:
    actor_id, room_id = self._scope()
    f = coerce_filters(filters)
    q = (
      select(func.count(Task.id))
      .where(Task.room_id == room_id, Task.room_id.in_(visible_room_ids(actor_id)))
      .where(*task_filter_clauses(f))
    )
    async with self._session_factory() as db:
      return int((await db.execute(q)).scalar_one() or 0)

  async def get_tasks_by_status_count(self) -> dict[str, int]:
    actor_id, room_id = self._scope()
    q = (
      select(Task.status, func.count(Task.id))
      .where(Task.room_id == room_id, Task.room_id.in_(visible_room_ids(actor_id)))
      .group_by(Task.status)
    )
    async with self._session_factory() as db:
      rows = (await db.execute(q)).all()
    return {status: int(count) for status, count in rows}

  # config

  def _setting_query(self, actor_id: str, room_id: str, key: str):
    return select(UserSetting).where(
      UserSetting.user_id == actor_id,
      UserSetting.room_id == room_id,
      UserSetting.setting_key == key,
    )

  async def get_config(self, key: str) -> Any:
    actor_id, room_id = self._scope()
    async with self._session_factory() as db:
      row = (await db.execute(self._setting_query(actor_id, room_id, key))).scalar_one_or_none()
    return row.setting_value if row else None

  async def set_config(self, key: str, value: Any) -> dict[str, Any]:
    actor_id, room_id = self._scope()
    async with self._session_factory() as db:
      await self._require_writable_room(db, room_id, actor_id)
      row = (await db.execute(self._setting_query(actor_id, room_id, key))).scalar_one_or_none()
      if row:
        row.setting_value = value
        row.updated_at = utcnow()
      else:
        db.add(UserSetting(user_id=actor_id, room_id=room_id, setting_key=key, setting_value=value))
      await db.commit()
    self.emit(ServiceEvent.CONFIG_UPDATED, {"key": key, "value": value})
    return {"success": True}

  async def delete_config(self, key: str) -> dict[str, Any]:
    actor_id, room_id = self._scope()
    async with self._session_factory() as db:
      await db.execute(
        delete(UserSetting).where(
          UserSetting.user_id == actor_id,
          UserSetting.room_id == room_id,
          UserSetting.setting_key == key,
        )
      )
      await db.commit()
    self.emit(ServiceEvent.CONFIG_DELETED, {"key": key})
    return {"success": True}

  # export / import

  async def _export_payload(self) -> dict[str, Any]:
    return {
      "tasks": await self.get_tasks(),
      "exportedAt": now_iso(),
      "version": EXPORT_VERSION,
      "roomId": self.current_room_id,
      "source": "remote",
    }

  def _csv_source(self, task: dict[str, Any]) -> dict[str, Any]:
    return to_wire(task)

  async def import_data(self, data: str | dict[str, Any], *, merge: bool = False) -> dict[str, Any]:
    raise UnsupportedOperationError("Import is not supported by the remote backend; use the migration bridge")

  async def create_backup(self) -> dict[str, Any]:
    raise UnsupportedOperationError("Backups of the remote backend are handled by the database")

  async def restore_backup(self, backup: str | dict[str, Any]) -> dict[str, Any]:
    raise UnsupportedOperationError("Backups of the remote backend are handled by the database")

  # sync

  async def sync(self) -> dict[str, Any]:
    self._require_initialized()
    stamp = now_iso()
    self.emit(ServiceEvent.SYNCED, {"timestamp": stamp})
    return {"success": True, "message": "Remote store is always in sync"}

  async def get_last_sync_time(self) -> str | None:
    self._require_initialized()
    return now_iso()

  # rooms

  async def create_room(self, data: dict[str, Any] | None = None) -> dict[str, Any]:
    self._require_initialized()
    actor_id = self._actor_id()
    data = data or {}
    supplied = normalize_room_code(data.get("room_code"))
    if supplied and not is_valid_room_code(supplied):
      raise ValidationError("Room code must be upper-case alphanumeric")
    name = (data.get("name") or "").strip() or "New room"

    attempts = 1 if supplied else _GENERATED_CODE_ATTEMPTS
    for attempt in range(attempts):
      code = supplied or generate_room_code()
      async with self._session_factory() as db:
        room = Room(
          name=name,
          description=data.get("description"),
          is_public=bool(data.get("is_public", False)),
          room_code=code,
          owner_id=actor_id,
        )
        db.add(room)
        try:
          await db.commit()
        except IntegrityError as exc:
          await db.rollback()
          if supplied or attempt == attempts - 1:
            raise RoomCodeConflictError(f"Room code {code} already exists") from exc
          logger.info("Generated room code collided, retrying")
          continue
        await db.refresh(room)
        out = _room_dict(room, role="owner")
      self.emit(ServiceEvent.ROOM_CREATED, {"room": out})
      return out
    raise RoomCodeConflictError("Could not generate a unique room code")

  async def find_room_by_code(self, room_code: str) -> dict[str, Any] | None:
    self._require_initialized()
    code = normalize_room_code(room_code)
    if not code:
      return None
    async with self._session_factory() as db:
      room = (await db.execute(select(Room).where(Room.room_code == code))).scalar_one_or_none()
    return _room_dict(room) if room else None

  async def join_room(self, room_code: str) -> dict[str, Any]:
    self._require_initialized()
    actor_id = self._actor_id()
    code = normalize_room_code(room_code)
    async with self._session_factory() as db:
      room = (await db.execute(select(Room).where(Room.room_code == code))).scalar_one_or_none()
      if not room:
        raise RoomNotFoundError(f"Room with code {code} not found")
      role = await room_role(db, room, actor_id)
      if role != "none":
        return _room_dict(room, role=role)
      out = _room_dict(room, role="member")
      db.add(RoomAccess(room_id=room.id, user_id=actor_id, role="member", granted_by=room.owner_id))
      try:
        await db.commit()
      except IntegrityError:
        # A concurrent join by the same actor already created the row.
        await db.rollback()
        return out
    self.emit(ServiceEvent.ROOM_JOINED, {"room": out, "userId": actor_id})
    return out

  async def get_user_rooms(self, *, search: str | None = None, is_public: bool | None = None) -> list[dict[str, Any]]:
    self._require_initialized()
    actor_id = self._actor_id()
    q = select(Room).where(Room.id.in_(visible_room_ids(actor_id)))
    if search:
      q = q.where(Room.name.ilike(like_pattern(search), escape="/"))
    if is_public is not None:
      q = q.where(Room.is_public == is_public)
    q = q.order_by(Room.updated_at.desc(), Room.id.asc())
    async with self._session_factory() as db:
      rooms = (await db.execute(q)).scalars().all()
      grants = dict(
        (await db.execute(select(RoomAccess.room_id, RoomAccess.role).where(RoomAccess.user_id == actor_id))).all()
      )
      ids = [r.id for r in rooms]
      task_counts = dict(
        (
          await db.execute(
            select(Task.room_id, func.count(Task.id)).where(Task.room_id.in_(ids)).group_by(Task.room_id)
          )
        ).all()
      )
      access_counts = dict(
        (
          await db.execute(
            select(RoomAccess.room_id, func.count(RoomAccess.id))
            .where(RoomAccess.room_id.in_(ids))
            .group_by(RoomAccess.room_id)
          )
        ).all()
      )
    out = []
    for r in rooms:
      room = _room_dict(r, role="owner" if r.owner_id == actor_id else grants.get(r.id, "member"))
      room["task_count"] = int(task_counts.get(r.id, 0))
      # The owner holds no access row.
      room["member_count"] = 1 + int(access_counts.get(r.id, 0))
      out.append(room)
    return out

  async def get_room(self, room_id: str) -> dict[str, Any] | None:
    self._require_initialized()
    actor_id = self._actor_id()
    async with self._session_factory() as db:
      room = await db.get(Room, room_id)
      if not room:
        return None
      role = await room_role(db, room, actor_id)
    return _room_dict(room, role=role) if role != "none" else None

  async def get_user_role(self, room_id: str) -> str:
    self._require_initialized()
    actor_id = self._actor_id()
    async with self._session_factory() as db:
      room = await db.get(Room, room_id)
      if not room:
        return "none"
      return await room_role(db, room, actor_id)

  async def update_room(self, room_id: str, changes: dict[str, Any]) -> dict[str, Any]:
    self._require_initialized()
    actor_id = self._actor_id()
    async with self._session_factory() as db:
      room, role = await require_room_role(db, room_id, "admin", actor_id)
      for key in _ROOM_FIELDS:
        if key in (changes or {}):
          value = changes[key]
          if key == "name":
            value = (value or "").strip()
            if not value:
              raise ValidationError("Room name cannot be empty")
          if key == "is_public":
            value = bool(value)
          setattr(room, key, value)
      room.updated_at = utcnow()
      await db.commit()
      await db.refresh(room)
      out = _room_dict(room, role=role)
    self.emit(ServiceEvent.ROOM_UPDATED, {"room": out})
    return out

  async def grant_access(self, room_id: str, user_id: str, role: str = "member") -> dict[str, Any]:
    self._require_initialized()
    actor_id = self._actor_id()
    if role not in ("admin", "member"):
      raise ValidationError(f"Invalid role: {role}")
    async with self._session_factory() as db:
      room, _ = await require_room_role(db, room_id, "admin", actor_id)
      if not await db.get(User, user_id):
        raise NotFoundError(f"User {user_id} not found")
      if room.owner_id == user_id:
        raise ValidationError("The owner already has full access")
      res = await db.execute(select(RoomAccess).where(RoomAccess.room_id == room_id, RoomAccess.user_id == user_id))
      access = res.scalar_one_or_none()
      if access:
        access.role = role
        access.granted_by = actor_id
      else:
        db.add(RoomAccess(room_id=room_id, user_id=user_id, role=role, granted_by=actor_id))
      await db.commit()
    return {"room_id": room_id, "user_id": user_id, "role": role, "granted_by": actor_id}

  async def leave_room(self, room_id: str) -> dict[str, Any]:
    self._require_initialized()
    actor_id = self._actor_id()
    async with self._session_factory() as db:
      room = await db.get(Room, room_id)
      if not room:
        raise RoomNotFoundError(f"Room {room_id} not found")
      if room.owner_id == actor_id:
        raise PermissionDeniedError("The owner cannot leave the room; delete it instead")
      res = await db.execute(
        delete(RoomAccess).where(RoomAccess.room_id == room_id, RoomAccess.user_id == actor_id)
      )
      if not res.rowcount:
        raise NotFoundError(f"Not a member of room {room_id}")
      await db.commit()
    if self.current_room_id == room_id:
      self.current_room_id = None
    self.emit(ServiceEvent.ROOM_LEFT, {"roomId": room_id, "userId": actor_id})
    return {"success": True}

  async def delete_room(self, room_id: str) -> dict[str, Any]:
    self._require_initialized()
    actor_id = self._actor_id()
    async with self._session_factory() as db:
      try:
        room, _ = await require_room_role(db, room_id, "admin", actor_id)
      except PermissionDeniedError as exc:
        raise PermissionDeniedError("Insufficient permissions to delete room") from exc
      out = _room_dict(room)
      await db.execute(delete(Task).where(Task.room_id == room_id))
      await db.execute(delete(UserSetting).where(UserSetting.room_id == room_id))
      await db.execute(delete(RoomAccess).where(RoomAccess.room_id == room_id))
      await db.delete(room)
      await db.commit()
    if self.current_room_id == room_id:
      self.current_room_id = None
    logger.info("Room %s deleted by %s", room_id, actor_id)
    self.emit(ServiceEvent.ROOM_DELETED, {"room": out})
    return {"success": True, "deletedRoom": out}

  def get_service_info(self) -> dict[str, Any]:
    info = super().get_service_info()
    info["currentRoomId"] = self.current_room_id
    return info
