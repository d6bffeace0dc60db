from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://tasktracker:tasktracker@db:5432/tasktracker"
  database_auto_create: bool = False
  app_version: str = "v2026-10-19"
  build_sha: str = "dev"

  # Remote backend is only offered when the auth collaborator says so and this is on.
  remote_enabled: bool = True

  kv_store_path: str = "data/kv-store.json"
  tasks_key: str = "tasktracker-tasks"
  config_key: str = "tasktracker-config"
  backup_key: str = "tasktracker-backup"
  last_sync_key: str = "tasktracker-last-sync"
  room_key_prefix: str = "tasktracker_room_"

  room_code_length: int = 8
  migration_placeholder_title: str = "Migrated task"

  cors_origins: str = "*"

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
