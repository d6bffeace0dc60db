from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable

from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.db import SessionLocal
from tasktracker.errors import AuthenticationError, ValidationError
from tasktracker.models import User
from tasktracker.security import hash_password, verify_password

logger = logging.getLogger(__name__)


class AuthUser(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: str
  email: str
  name: str


class AuthState(BaseModel):
  is_authenticated: bool = False
  user: AuthUser | None = None


class AuthProvider(ABC):
  """What the remote backend needs from identity: who is acting, if anyone."""

  @property
  @abstractmethod
  def state(self) -> AuthState:
    ...

  @property
  def current_user(self) -> AuthUser | None:
    s = self.state
    return s.user if s.is_authenticated else None

  @abstractmethod
  async def sign_in(self, email: str, password: str) -> AuthUser:
    ...

  @abstractmethod
  async def sign_up(self, email: str, password: str, name: str | None = None) -> AuthUser:
    ...

  @abstractmethod
  async def sign_out(self) -> None:
    ...


class StaticAuth(AuthProvider):
  """Fixed identity, for scripts and for wiring tests."""

  def __init__(self, user: AuthUser | None = None) -> None:
    self._user = user

  @property
  def state(self) -> AuthState:
    return AuthState(is_authenticated=self._user is not None, user=self._user)

  async def sign_in(self, email: str, password: str) -> AuthUser:
    raise AuthenticationError("Static identity cannot sign in")

  async def sign_up(self, email: str, password: str, name: str | None = None) -> AuthUser:
    raise AuthenticationError("Static identity cannot sign up")

  async def sign_out(self) -> None:
    self._user = None


class DatabaseAuth(AuthProvider):
  def __init__(self, session_factory: Callable[[], AsyncSession] = SessionLocal) -> None:
    self._session_factory = session_factory
    self._user: AuthUser | None = None

  @property
  def state(self) -> AuthState:
    return AuthState(is_authenticated=self._user is not None, user=self._user)

  async def sign_up(self, email: str, password: str, name: str | None = None) -> AuthUser:
    email_norm = (email or "").strip().lower()
    if not email_norm or "@" not in email_norm:
      raise ValidationError("A valid email is required")
    if not password or len(password) < 6:
      raise ValidationError("Password must be at least 6 characters")
    async with self._session_factory() as db:
      user = User(
        email=email_norm,
        name=(name or "").strip() or email_norm.split("@", 1)[0],
        password_hash=hash_password(password),
      )
      db.add(user)
      try:
        await db.commit()
      except IntegrityError as exc:
        await db.rollback()
        raise ValidationError("Email already registered") from exc
      await db.refresh(user)
      self._user = AuthUser.model_validate(user)
    logger.info("Registered user %s", self._user.id)
    return self._user

  async def sign_in(self, email: str, password: str) -> AuthUser:
    email_norm = (email or "").strip().lower()
    async with self._session_factory() as db:
      res = await db.execute(select(User).where(func.lower(User.email) == email_norm))
      user = res.scalar_one_or_none()
      if not user or not verify_password(password or "", user.password_hash):
        raise AuthenticationError("Invalid credentials")
      self._user = AuthUser.model_validate(user)
    return self._user

  async def sign_out(self) -> None:
    self._user = None
