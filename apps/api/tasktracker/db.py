from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tasktracker.config import settings
from tasktracker.models import Base


def _engine_kwargs(url: str) -> dict[str, Any]:
  if url.startswith("sqlite"):
    # A single shared connection keeps in-memory databases alive across sessions.
    return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
  return {"pool_pre_ping": True}


def make_engine(url: str) -> AsyncEngine:
  return create_async_engine(url, **_engine_kwargs(url))


engine = make_engine(settings.database_url)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def create_all(bind: AsyncEngine | None = None) -> None:
  async with (bind or engine).begin() as conn:
    await conn.run_sync(Base.metadata.create_all)


async def drop_all(bind: AsyncEngine | None = None) -> None:
  async with (bind or engine).begin() as conn:
    await conn.run_sync(Base.metadata.drop_all)
