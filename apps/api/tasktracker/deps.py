from __future__ import annotations

from functools import lru_cache

from tasktracker.config import settings
from tasktracker.services.kv import FileKeyValueStore, KeyValueStore


@lru_cache(maxsize=1)
def get_kv_store() -> KeyValueStore:
  return FileKeyValueStore(settings.kv_store_path)
