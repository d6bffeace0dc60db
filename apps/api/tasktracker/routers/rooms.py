from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends

from tasktracker.deps import get_kv_store
from tasktracker.schemas import RoomExistsIn, RoomExistsOut, RoomListOut, RoomTasksIn, RoomTasksOut, RoomWriteOut
from tasktracker.services.kv import KeyValueStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rooms", tags=["rooms"])

ROOM_KEY_PREFIX = "room:"


def _room_key(room_code: str) -> str:
  return f"{ROOM_KEY_PREFIX}{room_code}"


@router.get("", response_model=RoomListOut)
async def list_rooms(store: KeyValueStore = Depends(get_kv_store)) -> RoomListOut:
  return RoomListOut(rooms=[k[len(ROOM_KEY_PREFIX):] for k in store.keys(ROOM_KEY_PREFIX)])


@router.post("", response_model=RoomExistsOut)
async def room_exists(payload: RoomExistsIn, store: KeyValueStore = Depends(get_kv_store)) -> RoomExistsOut:
  return RoomExistsOut(exists=store.get(_room_key(payload.roomCode)) is not None)


@router.get("/{room_code}", response_model=RoomTasksOut)
async def get_room_tasks(room_code: str, store: KeyValueStore = Depends(get_kv_store)) -> RoomTasksOut:
  raw = store.get(_room_key(room_code))
  if not raw:
    return RoomTasksOut(tasks=[])
  try:
    tasks = json.loads(raw)
  except json.JSONDecodeError:
    logger.error("Corrupt task list for room %s", room_code)
    tasks = []
  return RoomTasksOut(tasks=[t for t in tasks if isinstance(t, dict)] if isinstance(tasks, list) else [])


@router.post("/{room_code}", response_model=RoomWriteOut)
async def save_room_tasks(
  room_code: str,
  payload: RoomTasksIn,
  store: KeyValueStore = Depends(get_kv_store),
) -> RoomWriteOut:
  store.set(_room_key(room_code), json.dumps(payload.tasks, ensure_ascii=False, default=str))
  return RoomWriteOut(success=True, message="Room updated")


@router.delete("/{room_code}", response_model=RoomWriteOut)
async def delete_room(room_code: str, store: KeyValueStore = Depends(get_kv_store)) -> RoomWriteOut:
  store.remove(_room_key(room_code))
  return RoomWriteOut(success=True, message="Room deleted")
