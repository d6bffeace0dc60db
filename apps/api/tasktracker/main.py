from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tasktracker.config import settings
from tasktracker.db import create_all
from tasktracker.errors import DataServiceError
from tasktracker.routers.rooms import router as rooms_router
from tasktracker.schemas import HealthOut, VersionOut
from tasktracker.task_fields import now_iso

logger = logging.getLogger(__name__)

app = FastAPI(title="TaskTracker API", version="0.1.0")


@app.exception_handler(DataServiceError)
async def _data_service_error_handler(_, exc: DataServiceError) -> JSONResponse:
  logger.error("Store failure: %s", exc)
  return JSONResponse(status_code=500, content={"error": "Internal server error", "message": str(exc)})


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
  allow_headers=["Content-Type"],
)

app.include_router(rooms_router)


@app.middleware("http")
async def _security_headers_middleware(request, call_next):
  response = await call_next(request)
  response.headers.setdefault("X-Content-Type-Options", "nosniff")
  return response


@app.get("/health", response_model=HealthOut)
async def health() -> HealthOut:
  return HealthOut(status="ok", timestamp=now_iso())


@app.get("/version", response_model=VersionOut)
async def version() -> VersionOut:
  return VersionOut(version=settings.app_version, buildSha=settings.build_sha)


@app.on_event("startup")
async def _startup() -> None:
  if settings.database_auto_create:
    await create_all()
