from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from tasktracker.security import generate_room_code


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def _uuid() -> str:
  return str(uuid.uuid4())


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  email: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  password_hash: Mapped[str] = mapped_column(String, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Room(Base):
  __tablename__ = "rooms"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  name: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  room_code: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True, default=generate_room_code)
  owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class RoomAccess(Base):
  __tablename__ = "room_access"
  __table_args__ = (UniqueConstraint("room_id", "user_id", name="ux_room_access_room_user"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  room_id: Mapped[str] = mapped_column(String(36), ForeignKey("rooms.id"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  role: Mapped[str] = mapped_column(String, nullable=False, default="member")  # owner | admin | member
  granted_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Task(Base):
  __tablename__ = "tasks"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  room_id: Mapped[str] = mapped_column(String(36), ForeignKey("rooms.id"), nullable=False, index=True)
  atividade: Mapped[str | None] = mapped_column(Text, nullable=True)
  detalhamento: Mapped[str | None] = mapped_column(Text, nullable=True)
  epico: Mapped[str | None] = mapped_column(String, nullable=True)
  user_story: Mapped[str | None] = mapped_column(Text, nullable=True)
  sprint: Mapped[str | None] = mapped_column(String, nullable=True)
  desenvolvedor: Mapped[str | None] = mapped_column(String, nullable=True)
  prioridade: Mapped[str] = mapped_column(String, nullable=False, default="Média")
  status: Mapped[str] = mapped_column(String, nullable=False, default="Backlog", index=True)
  estimativa: Mapped[float] = mapped_column(Float, nullable=False, default=0)
  reestimativas: Mapped[list[float]] = mapped_column(JSON, nullable=False, default=list)
  tempo_gasto: Mapped[float | None] = mapped_column(Float, nullable=True)
  taxa_erro: Mapped[float | None] = mapped_column(Float, nullable=True)
  tempo_gasto_validado: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
  motivo_erro: Mapped[str | None] = mapped_column(Text, nullable=True)
  observacoes: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
  updated_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class UserSetting(Base):
  __tablename__ = "user_settings"
  __table_args__ = (UniqueConstraint("user_id", "room_id", "setting_key", name="ux_user_settings_user_room_key"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  room_id: Mapped[str] = mapped_column(String(36), ForeignKey("rooms.id"), nullable=False, index=True)
  setting_key: Mapped[str] = mapped_column(String, nullable=False)
  setting_value: Mapped[Any] = mapped_column(JSON, nullable=True)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
