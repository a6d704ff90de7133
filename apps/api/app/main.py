from __future__ import annotations

import logging
from time import monotonic

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.trustedhost import TrustedHostMiddleware

from app.config import settings
from app.db import SessionLocal
from app.errors import TaskbotError
from app.logging_setup import setup_logging
from app.metrics import runtime_metrics
from app.notifications.service import channel_for
from app.reminders.scheduler import ReminderScheduler
from app.routers.audit import router as audit_router
from app.routers.categories import router as categories_router
from app.routers.system_status import router as system_status_router
from app.routers.tasks import router as tasks_router

logger = logging.getLogger(__name__)

app = FastAPI(
  title="Taskbot API",
  version="0.1.0",
  docs_url="/docs" if settings.api_docs_enabled else None,
  redoc_url="/redoc" if settings.api_docs_enabled else None,
  openapi_url="/openapi.json" if settings.api_docs_enabled else None,
)


@app.exception_handler(TaskbotError)
async def _taskbot_error_handler(_, exc: TaskbotError) -> JSONResponse:
  return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(SQLAlchemyError)
async def _storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
  logger.exception("storage error on %s %s", request.method, request.url.path, exc_info=exc)
  return JSONResponse(status_code=500, content={"detail": "Storage error"})


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_origin_regex=settings.cors_origin_regex,
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_host_list())

app.include_router(tasks_router)
app.include_router(categories_router)
app.include_router(audit_router)
app.include_router(system_status_router)


@app.middleware("http")
async def _request_metrics_middleware(request, call_next):
  start = monotonic()
  response = await call_next(request)
  elapsed_ms = (monotonic() - start) * 1000.0
  runtime_metrics.observe_request(response.status_code, elapsed_ms)
  response.headers.setdefault("X-Content-Type-Options", "nosniff")
  response.headers.setdefault("X-Frame-Options", "DENY")
  response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
  return response


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version, "buildSha": settings.build_sha}


_scheduler: ReminderScheduler | None = None


def _is_test_db() -> bool:
  url = settings.database_url
  if url.startswith("sqlite") and ":memory:" in url:
    return True
  db_name = url.rsplit("/", 1)[-1]
  return "test" in db_name


@app.on_event("startup")
async def _startup() -> None:
  global _scheduler
  setup_logging(settings.log_level)
  if _is_test_db():
    return
  if not settings.app_secret or settings.app_secret.strip().lower() in {"dev-secret-change-me", "replace_with_strong_random_secret"}:
    raise RuntimeError("APP_SECRET is required and must not be a placeholder")
  if settings.reminder_enabled and _scheduler is None:
    _scheduler = ReminderScheduler(session_factory=SessionLocal, channel=channel_for(settings))
    _scheduler.start()


@app.on_event("shutdown")
async def _shutdown() -> None:
  global _scheduler
  if _scheduler is not None:
    await _scheduler.stop()
    _scheduler = None
