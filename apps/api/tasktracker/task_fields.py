from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any

from tasktracker.errors import ValidationError
from tasktracker.security import generate_task_id

STATUSES = ("Backlog", "Priorizado", "Doing", "Done")
PRIORITIES = ("Baixa", "Média", "Alta", "Crítica")
DEFAULT_STATUS = "Backlog"
DEFAULT_PRIORITY = "Média"
REESTIMATE_SLOTS = 10

# Canonical key -> wire column. Keys not listed here are identical on both sides.
WIRE_FIELDS: dict[str, str] = {
  "userStory": "user_story",
  "createdAt": "created_at",
  "updatedAt": "updated_at",
  "tempoGasto": "tempo_gasto",
  "taxaErro": "taxa_erro",
  "tempoGastoValidado": "tempo_gasto_validado",
  "motivoErro": "motivo_erro",
}
CANONICAL_FIELDS: dict[str, str] = {wire: canonical for canonical, wire in WIRE_FIELDS.items()}

# Fields callers may never set directly; the service owns them.
PROTECTED_FIELDS = frozenset({"id", "createdAt", "updatedAt"})

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _now() -> datetime:
  return datetime.now(timezone.utc)


def now_iso() -> str:
  return _now().isoformat()


def parse_dt_utc(value: object) -> datetime | None:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    raise ValueError(f"not a timestamp: {value!r}")

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


def iso(value: datetime | None) -> str | None:
  dt = parse_dt_utc(value)
  return dt.isoformat() if dt else None


def next_timestamp(previous: object = None) -> str:
  """Return an ISO timestamp strictly later than ``previous``."""
  now = _now()
  try:
    prev = parse_dt_utc(previous)
  except ValueError:
    prev = None
  if prev is not None and now <= prev:
    now = prev + timedelta(microseconds=1)
  return now.isoformat()


def as_number(value: Any, default: float = 0) -> float:
  if isinstance(value, bool):
    return default
  if isinstance(value, (int, float)):
    return value
  if isinstance(value, str) and value.strip():
    try:
      return float(value)
    except ValueError:
      return default
  return default


def validate_task_data(data: dict[str, Any] | None) -> None:
  if not data:
    raise ValidationError("Task data is required")
  if not isinstance(data, dict):
    raise ValidationError("Task data must be a mapping")
  if not data.get("atividade") and not data.get("userStory"):
    raise ValidationError("Either atividade or userStory is required")


def normalize_reestimates(values: Any, estimate: Any) -> list[float]:
  fill = as_number(estimate)
  if not isinstance(values, (list, tuple)):
    return [fill] * REESTIMATE_SLOTS
  out = list(values)[:REESTIMATE_SLOTS]
  while len(out) < REESTIMATE_SLOTS:
    out.append(fill)
  return out


def sanitize_task_data(data: dict[str, Any], *, with_id: bool = True) -> dict[str, Any]:
  """
  Fill defaults for a new task.

  ``with_id=False`` leaves identity and timestamps to the store.
  """
  task = dict(data)
  task["status"] = task.get("status") or DEFAULT_STATUS
  task["prioridade"] = task.get("prioridade") or DEFAULT_PRIORITY
  task["estimativa"] = as_number(task.get("estimativa"))
  task["reestimativas"] = normalize_reestimates(task.get("reestimativas"), task["estimativa"])
  if with_id:
    stamp = now_iso()
    task["id"] = task.get("id") or generate_task_id()
    task["createdAt"] = task.get("createdAt") or stamp
    task["updatedAt"] = stamp
  else:
    for key in PROTECTED_FIELDS:
      task.pop(key, None)
  return task


def strip_protected(updates: dict[str, Any]) -> dict[str, Any]:
  return {k: v for k, v in (updates or {}).items() if k not in PROTECTED_FIELDS}


def apply_update(task: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
  merged = {**task, **strip_protected(updates)}
  merged["reestimativas"] = normalize_reestimates(merged.get("reestimativas"), merged.get("estimativa"))
  merged["updatedAt"] = next_timestamp(task.get("updatedAt"))
  return merged


def to_wire(task: dict[str, Any]) -> dict[str, Any]:
  return {WIRE_FIELDS.get(k, k): v for k, v in task.items()}


def from_wire(row: dict[str, Any]) -> dict[str, Any]:
  task = {CANONICAL_FIELDS.get(k, k): v for k, v in row.items()}
  if not isinstance(task.get("reestimativas"), list) or len(task["reestimativas"]) != REESTIMATE_SLOTS:
    task["reestimativas"] = normalize_reestimates(task.get("reestimativas"), task.get("estimativa"))
  return task
