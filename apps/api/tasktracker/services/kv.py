from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock

from tasktracker.errors import StoreConnectionError


class KeyValueStore(ABC):
  """String-valued key/value store; the local backend layers JSON on top."""

  @abstractmethod
  def get(self, key: str) -> str | None:
    ...

  @abstractmethod
  def set(self, key: str, value: str) -> None:
    ...

  @abstractmethod
  def remove(self, key: str) -> None:
    ...

  @abstractmethod
  def keys(self, prefix: str = "") -> list[str]:
    ...


class MemoryKeyValueStore(KeyValueStore):
  def __init__(self, initial: dict[str, str] | None = None) -> None:
    self._lock = Lock()
    self._data: dict[str, str] = dict(initial or {})

  def get(self, key: str) -> str | None:
    with self._lock:
      return self._data.get(key)

  def set(self, key: str, value: str) -> None:
    if not isinstance(value, str):
      raise TypeError("KeyValueStore values must be strings")
    with self._lock:
      self._data[key] = value

  def remove(self, key: str) -> None:
    with self._lock:
      self._data.pop(key, None)

  def keys(self, prefix: str = "") -> list[str]:
    with self._lock:
      return sorted(k for k in self._data if k.startswith(prefix))


class FileKeyValueStore(KeyValueStore):
  """
  Whole store persisted as one JSON object.

  Writes go through a temp file + rename so a crash never leaves a torn file.
  """

  def __init__(self, path: str | Path) -> None:
    self.path = Path(path)
    self._lock = Lock()

  def _load(self) -> dict[str, str]:
    if not self.path.exists():
      return {}
    try:
      raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
    except (OSError, json.JSONDecodeError) as exc:
      raise StoreConnectionError(f"Unreadable key/value store {self.path}: {exc}") from exc
    if not isinstance(raw, dict):
      raise StoreConnectionError(f"Key/value store {self.path} is not a JSON object")
    return {str(k): v for k, v in raw.items() if isinstance(v, str)}

  def _save(self, data: dict[str, str]) -> None:
    try:
      self.path.parent.mkdir(parents=True, exist_ok=True)
      fd, tmp = tempfile.mkstemp(prefix=".kv-", suffix=".json", dir=str(self.path.parent))
      with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2, sort_keys=True)
      os.replace(tmp, self.path)
    except OSError as exc:
      raise StoreConnectionError(f"Cannot write key/value store {self.path}: {exc}") from exc

  def get(self, key: str) -> str | None:
    with self._lock:
      return self._load().get(key)

  def set(self, key: str, value: str) -> None:
    if not isinstance(value, str):
      raise TypeError("KeyValueStore values must be strings")
    with self._lock:
      data = self._load()
      data[key] = value
      self._save(data)

  def remove(self, key: str) -> None:
    with self._lock:
      data = self._load()
      if key in data:
        del data[key]
        self._save(data)

  def keys(self, prefix: str = "") -> list[str]:
    with self._lock:
      return sorted(k for k in self._load() if k.startswith(prefix))
