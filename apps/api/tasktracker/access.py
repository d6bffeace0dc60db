from __future__ import annotations

from sqlalchemy import Select, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.errors import PermissionDeniedError, RoomNotFoundError
from tasktracker.models import Room, RoomAccess

# role order: member < admin < owner
ROLE_ORDER = {"member": 1, "admin": 2, "owner": 3}
NO_ROLE = "none"


def visible_room_ids(user_id: str) -> Select:
  """Rooms the actor may see: owned, or granted through room_access."""
  granted = select(RoomAccess.room_id).where(RoomAccess.user_id == user_id)
  return select(Room.id).where(or_(Room.owner_id == user_id, Room.id.in_(granted)))


async def room_role(db: AsyncSession, room: Room, user_id: str) -> str:
  if room.owner_id == user_id:
    return "owner"
  res = await db.execute(
    select(RoomAccess.role).where(RoomAccess.room_id == room.id, RoomAccess.user_id == user_id)
  )
  role = res.scalar_one_or_none()
  return role or NO_ROLE


async def require_room_role(db: AsyncSession, room_id: str, min_role: str, user_id: str) -> tuple[Room, str]:
  room = await db.get(Room, room_id)
  if not room:
    raise RoomNotFoundError(f"Room {room_id} not found")
  role = await room_role(db, room, user_id)
  if role == NO_ROLE:
    raise PermissionDeniedError("No room access")
  if ROLE_ORDER.get(role, 0) < ROLE_ORDER.get(min_role, 0):
    raise PermissionDeniedError("Insufficient role")
  return room, role
