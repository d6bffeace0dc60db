from __future__ import annotations

import re
import secrets
import string
import time

from passlib.context import CryptContext

from tasktracker.config import settings

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
_ROOM_CODE_RE = re.compile(r"^[A-Z0-9]+$")


def hash_password(password: str) -> str:
  return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
  return pwd_context.verify(password, password_hash)


def generate_room_code(length: int | None = None) -> str:
  n = int(length or settings.room_code_length)
  return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(n))


def normalize_room_code(code: str | None) -> str:
  return (code or "").strip().upper()


def is_valid_room_code(code: str | None, *, length: int | None = None) -> bool:
  c = normalize_room_code(code)
  if length is not None and len(c) != length:
    return False
  return bool(_ROOM_CODE_RE.fullmatch(c))


def generate_task_id() -> str:
  # Local ids only; the relational store generates its own.
  return f"task-{int(time.time() * 1000)}-{secrets.token_hex(5)[:9]}"
