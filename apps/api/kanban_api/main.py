from __future__ import annotations

from time import monotonic

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.trustedhost import TrustedHostMiddleware

from kanban_api import errors
from kanban_api.access import AccessResolver
from kanban_api.config import PLACEHOLDER_SECRETS, Settings, settings as default_settings
from kanban_api.logs import configure_logging, get_logger
from kanban_api.migrations import Migrator
from kanban_api.routers.auth import router as auth_router
from kanban_api.routers.boards import router as boards_router
from kanban_api.routers.columns import router as columns_router
from kanban_api.routers.health import router as health_router
from kanban_api.routers.projects import router as projects_router
from kanban_api.routers.tasks import router as tasks_router
from kanban_api.routers.users import router as users_router
from kanban_api.schemas import error_envelope
from kanban_api.sessions import SessionAuthenticator
from kanban_api.storage.base import StorageAdapter
from kanban_api.storage.factory import create_storage

log = get_logger()
http_log = get_logger("http")


def _validation_message(exc: RequestValidationError) -> str:
  parts = []
  for err in exc.errors():
    loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
    parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
  return "; ".join(parts) or "Invalid input"


def _install_error_handlers(app: FastAPI) -> None:
  @app.exception_handler(errors.KanbanError)
  async def _kanban_error_handler(_, exc: errors.KanbanError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=error_envelope(exc.message, exc.code))

  @app.exception_handler(RequestValidationError)
  async def _request_validation_handler(_, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content=error_envelope(_validation_message(exc), errors.ValidationError.code))

  @app.exception_handler(StarletteHTTPException)
  async def _http_error_handler(_, exc: StarletteHTTPException) -> JSONResponse:
    code = {404: "not_found", 405: "method_not_allowed"}.get(exc.status_code, "http_error")
    return JSONResponse(
      status_code=exc.status_code,
      content=error_envelope(str(exc.detail), code),
      headers=getattr(exc, "headers", None),
    )

  @app.exception_handler(Exception)
  async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("unhandled error path=%s", request.url.path)
    return JSONResponse(status_code=500, content=error_envelope("Internal error", "internal_error"))


def create_app(settings: Settings | None = None, storage: StorageAdapter | None = None) -> FastAPI:
  settings = settings or default_settings
  configure_logging(settings)
  storage = storage or create_storage(settings)

  app = FastAPI(title="Kanban API", version=settings.app_version)
  app.state.settings = settings
  app.state.storage = storage
  app.state.authenticator = SessionAuthenticator(storage, settings)
  app.state.resolver = AccessResolver(storage)

  _install_error_handlers(app)

  app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
  )
  app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_host_list())

  app.include_router(auth_router)
  app.include_router(users_router)
  app.include_router(projects_router)
  app.include_router(boards_router)
  app.include_router(columns_router)
  app.include_router(tasks_router)
  app.include_router(health_router)

  @app.middleware("http")
  async def _request_log_middleware(request, call_next):
    start = monotonic()
    try:
      response = await call_next(request)
    except Exception:
      elapsed_ms = (monotonic() - start) * 1000.0
      http_log.error("method=%s path=%s status=500 ms=%.1f", request.method, request.url.path, elapsed_ms)
      raise
    elapsed_ms = (monotonic() - start) * 1000.0
    http_log.info("method=%s path=%s status=%s ms=%.1f", request.method, request.url.path, response.status_code, elapsed_ms)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    return response

  @app.on_event("startup")
  async def _startup() -> None:
    if settings.environment == "production":
      if not settings.app_secret or settings.app_secret.strip().lower() in PLACEHOLDER_SECRETS:
        raise RuntimeError("APP_SECRET is required and must not be a placeholder")
    if settings.migrate_on_start:
      report = await Migrator(storage).run()
      log.info("migrations done applied=%s skipped=%s", len(report.applied), len(report.skipped))

  @app.on_event("shutdown")
  async def _shutdown() -> None:
    await storage.dispose()

  return app


app = create_app()
