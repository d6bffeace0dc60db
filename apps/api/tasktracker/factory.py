from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.auth import AuthProvider
from tasktracker.config import settings
from tasktracker.db import SessionLocal
from tasktracker.deps import get_kv_store
from tasktracker.services.base import DataService
from tasktracker.services.kv import KeyValueStore
from tasktracker.services.local import LocalStorageService
from tasktracker.services.remote import RemoteStorageService

logger = logging.getLogger(__name__)


def create_data_service(
  auth: AuthProvider | None = None,
  *,
  kv_store: KeyValueStore | None = None,
  session_factory: Callable[[], AsyncSession] | None = None,
  room_id: str | None = None,
  room_code: str | None = None,
) -> DataService:
  """
  Pick the backend from the auth mode.

  Signed-in callers get the relational backend (unless it is switched off);
  everyone else works against the local key/value store.
  """
  if auth is not None and auth.state.is_authenticated and settings.remote_enabled:
    logger.debug("Using remote backend for user %s", auth.state.user.id if auth.state.user else None)
    return RemoteStorageService(auth, session_factory=session_factory or SessionLocal, room_id=room_id)
  return LocalStorageService(kv_store if kv_store is not None else get_kv_store(), room_code=room_code)
