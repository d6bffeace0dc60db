from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.sql.elements import ColumnElement

from tasktracker.errors import ValidationError
from tasktracker.models import Task
from tasktracker.task_fields import parse_dt_utc

EXACT_FIELDS = ("status", "prioridade")
SUBSTRING_FIELDS = ("sprint", "desenvolvedor", "epico")


class TaskFilters(BaseModel):
  """
  Sparse AND-combined task predicates shared by every backend.

  Date bounds are inclusive on both ends and compared as UTC instants.
  ``offset``/``limit`` only apply to task listings, after filtering.
  """

  model_config = ConfigDict(extra="ignore")

  status: str | None = None
  prioridade: str | None = None
  sprint: str | None = None
  desenvolvedor: str | None = None
  epico: str | None = None
  createdAfter: datetime | None = None
  createdBefore: datetime | None = None
  limit: int | None = Field(default=None, ge=0)
  offset: int | None = Field(default=None, ge=0)

  @field_validator("status", "prioridade", "sprint", "desenvolvedor", "epico", mode="before")
  @classmethod
  def _blank_is_absent(cls, v: object) -> object:
    if isinstance(v, str) and not v.strip():
      return None
    return v

  @field_validator("createdAfter", "createdBefore", mode="before")
  @classmethod
  def _utc(cls, v: object) -> object:
    return parse_dt_utc(v)

  def without_pagination(self) -> "TaskFilters":
    return self.model_copy(update={"limit": None, "offset": None})


def coerce_filters(filters: TaskFilters | dict[str, Any] | None = None, **overrides: Any) -> TaskFilters:
  if filters is None:
    data: dict[str, Any] = {}
  elif isinstance(filters, TaskFilters):
    data = filters.model_dump(exclude_none=True)
  elif isinstance(filters, dict):
    data = dict(filters)
  else:
    raise ValidationError(f"Unsupported filters: {type(filters).__name__}")
  data.update(overrides)
  try:
    return TaskFilters.model_validate(data)
  except (PydanticValidationError, ValueError) as exc:
    raise ValidationError(f"Invalid filters: {exc}") from exc


def _contains(value: Any, needle: str) -> bool:
  if value is None or value == "":
    return False
  return needle.lower() in str(value).lower()


def task_matches(task: dict[str, Any], f: TaskFilters) -> bool:
  for key in EXACT_FIELDS:
    want = getattr(f, key)
    if want is not None and task.get(key) != want:
      return False
  for key in SUBSTRING_FIELDS:
    want = getattr(f, key)
    if want is not None and not _contains(task.get(key), want):
      return False
  if f.createdAfter is not None or f.createdBefore is not None:
    try:
      created = parse_dt_utc(task.get("createdAt"))
    except ValueError:
      created = None
    if created is None:
      return False
    if f.createdAfter is not None and created < f.createdAfter:
      return False
    if f.createdBefore is not None and created > f.createdBefore:
      return False
  return True


def paginate(items: list[Any], f: TaskFilters) -> list[Any]:
  out = items
  if f.offset:
    out = out[f.offset :]
  if f.limit is not None:
    out = out[: f.limit]
  return out


def apply_filters(tasks: Iterable[dict[str, Any]], f: TaskFilters) -> list[dict[str, Any]]:
  return [t for t in tasks if task_matches(t, f)]


def like_pattern(value: str) -> str:
  escaped = value.replace("/", "//").replace("%", "/%").replace("_", "/_")
  return f"%{escaped}%"


def task_filter_clauses(f: TaskFilters) -> list[ColumnElement[bool]]:
  clauses: list[ColumnElement[bool]] = []
  if f.status is not None:
    clauses.append(Task.status == f.status)
  if f.prioridade is not None:
    clauses.append(Task.prioridade == f.prioridade)
  for key in SUBSTRING_FIELDS:
    want = getattr(f, key)
    if want is not None:
      col = getattr(Task, key)
      clauses.append(col.ilike(like_pattern(want), escape="/"))
  if f.createdAfter is not None:
    clauses.append(Task.created_at >= f.createdAfter)
  if f.createdBefore is not None:
    clauses.append(Task.created_at <= f.createdBefore)
  return clauses
