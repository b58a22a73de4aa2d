from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from kanban_api import errors
from kanban_api.config import Settings
from kanban_api.deps import get_settings, get_storage
from kanban_api.schemas import HealthOut, VersionOut, envelope, error_envelope
from kanban_api.storage.base import StorageAdapter

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(storage: StorageAdapter = Depends(get_storage)):
  try:
    await storage.ping()
  except errors.StorageError as exc:
    body = error_envelope(exc.message, exc.code)
    body["data"] = HealthOut(ok=False, storage=storage.engine_name).model_dump()
    return JSONResponse(status_code=503, content=body)
  return envelope(HealthOut(ok=True, storage=storage.engine_name))


@router.get("/version")
async def version(settings: Settings = Depends(get_settings)) -> dict:
  return envelope(VersionOut(version=settings.app_version, buildSha=settings.build_sha, environment=settings.environment))
