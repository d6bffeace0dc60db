from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class RoomListOut(BaseModel):
  rooms: list[str]


class RoomExistsIn(BaseModel):
  roomCode: str = Field(min_length=1)


class RoomExistsOut(BaseModel):
  exists: bool


class RoomTasksIn(BaseModel):
  tasks: list[dict[str, Any]]


class RoomTasksOut(BaseModel):
  tasks: list[dict[str, Any]]


class RoomWriteOut(BaseModel):
  success: bool
  message: str


class HealthOut(BaseModel):
  status: str
  timestamp: str


class VersionOut(BaseModel):
  version: str
  buildSha: str
