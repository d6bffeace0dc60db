from __future__ import annotations

import pytest

from tasktracker.auth import AuthUser, DatabaseAuth, StaticAuth
from tasktracker.config import settings
from tasktracker.factory import create_data_service
from tasktracker.services.kv import MemoryKeyValueStore
from tasktracker.services.local import LocalStorageService
from tasktracker.services.remote import RemoteStorageService


@pytest.mark.anyio
async def test_anonymous_callers_get_local_backend(kv_store: MemoryKeyValueStore) -> None:
  svc = create_data_service(None, kv_store=kv_store, room_code="abc")
  assert isinstance(svc, LocalStorageService)
  assert svc.store is kv_store
  assert svc.room_code == "ABC"
  assert isinstance(create_data_service(StaticAuth(), kv_store=kv_store), LocalStorageService)


@pytest.mark.anyio
async def test_signed_in_callers_get_remote_backend(alice: DatabaseAuth, kv_store: MemoryKeyValueStore) -> None:
  svc = create_data_service(alice, kv_store=kv_store, room_id="r1")
  assert isinstance(svc, RemoteStorageService)
  assert svc.current_room_id == "r1"
  info = svc.get_service_info()
  assert info["name"] == "RemoteStorageService"
  assert info["currentRoomId"] == "r1"


@pytest.mark.anyio
async def test_remote_switch_off_forces_local(monkeypatch: pytest.MonkeyPatch, kv_store: MemoryKeyValueStore) -> None:
  monkeypatch.setattr(settings, "remote_enabled", False)
  auth = StaticAuth(AuthUser(id="u1", email="u1@example.com", name="U1"))
  assert isinstance(create_data_service(auth, kv_store=kv_store), LocalStorageService)
