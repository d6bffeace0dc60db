from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from tasktracker.auth import DatabaseAuth
from tasktracker.config import settings
from tasktracker.db import create_all, drop_all, engine
from tasktracker.deps import get_kv_store
from tasktracker.main import app
from tasktracker.services.kv import MemoryKeyValueStore
from tasktracker.services.local import LocalStorageService
from tasktracker.services.remote import RemoteStorageService


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture(autouse=True)
async def _clean_between_tests() -> None:
  url = settings.database_url
  if not url.startswith("sqlite") and "test" not in url.rsplit("/", 1)[-1]:
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to sqlite or a *_test database."
    )
  await create_all()
  yield
  await drop_all()
  await engine.dispose()


@pytest.fixture
def kv_store() -> MemoryKeyValueStore:
  return MemoryKeyValueStore()


@pytest.fixture
async def local(kv_store: MemoryKeyValueStore) -> LocalStorageService:
  svc = LocalStorageService(kv_store)
  await svc.initialize()
  return svc


@pytest.fixture
async def client(kv_store: MemoryKeyValueStore) -> AsyncClient:
  app.dependency_overrides[get_kv_store] = lambda: kv_store
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c
  app.dependency_overrides.clear()


async def signed_up(email: str, name: str | None = None, password: str = "secret123") -> DatabaseAuth:
  auth = DatabaseAuth()
  await auth.sign_up(email, password, name)
  return auth


async def remote_for(auth: DatabaseAuth) -> RemoteStorageService:
  svc = RemoteStorageService(auth)
  await svc.initialize()
  return svc


@pytest.fixture
async def alice() -> DatabaseAuth:
  return await signed_up("alice@example.com", "Alice")


@pytest.fixture
async def bob() -> DatabaseAuth:
  return await signed_up("bob@example.com", "Bob")


@pytest.fixture
async def remote(alice: DatabaseAuth) -> RemoteStorageService:
  return await remote_for(alice)


@pytest.fixture
async def room(remote: RemoteStorageService) -> dict:
  created = await remote.create_room({"name": "Sprint board"})
  remote.set_current_room(created["id"])
  return created
