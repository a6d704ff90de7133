from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.deps import get_current_user, get_db
from app.metrics import runtime_metrics
from app.models import NotificationHistory, Task, User
from app.schemas import SystemStatusOut, SystemStatusSectionOut

router = APIRouter(prefix="/system/status", tags=["system"])


def _as_state(ok: bool, warn: bool = False) -> str:
  if not ok:
    return "red"
  return "yellow" if warn else "green"


@router.get("", response_model=SystemStatusOut)
async def get_system_status(
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> SystemStatusOut:
  now = datetime.now(timezone.utc)
  sections: list[SystemStatusSectionOut] = []
  runtime = runtime_metrics.snapshot()

  # API health
  error_rate = (runtime["errorCount1h"] / runtime["requestCount1h"] * 100.0) if runtime["requestCount1h"] else 0.0
  sections.append(
    SystemStatusSectionOut(
      key="api",
      label="API health",
      state=_as_state(error_rate < 1.0 and runtime["p95LatencyMs1h"] < 1000, warn=error_rate > 0),
      details=[
        "health endpoint: ok",
        f"uptime: {runtime['uptimeSeconds']}s",
        f"requests (1h): {runtime['requestCount1h']}",
        f"error rate (1h): {error_rate:.1f}%",
        f"p95 latency (1h): {runtime['p95LatencyMs1h']}ms",
        f"version: {settings.app_version}",
        f"build: {settings.build_sha}",
      ],
      updatedAt=now,
    )
  )

  # Database
  try:
    await db.execute(text("select 1"))
    db_state = "green"
    db_details = [f"dialect: {db.get_bind().dialect.name}", "ping: ok"]
  except SQLAlchemyError as e:
    db_state = "red"
    db_details = [f"ping failed: {str(e)[:120]}"]
  sections.append(SystemStatusSectionOut(key="database", label="Database", state=db_state, details=db_details, updatedAt=now))

  # Reminder scheduler, scoped to the caller's tasks
  reminders = runtime["reminders"]
  armed = (
    await db.execute(
      select(func.count())
      .select_from(Task)
      .where(Task.user_id == user.id, Task.status == "active", Task.notifications_enabled.is_(True))
    )
  ).scalar_one()
  since_day = now - timedelta(days=1)
  history_rows = (
    await db.execute(
      select(NotificationHistory.status, func.count())
      .where(NotificationHistory.user_id == user.id, NotificationHistory.sent_at >= since_day)
      .group_by(NotificationHistory.status)
    )
  ).all()
  by_status = {s: int(n) for s, n in history_rows}
  sent_24h = by_status.get("sent", 0)
  failed_24h = by_status.get("failed", 0)

  last_cycle_at = reminders["lastCycleAt"]
  stale = False
  if settings.reminder_enabled and last_cycle_at is not None:
    stale = (now - last_cycle_at).total_seconds() > 3 * settings.reminder_poll_interval_seconds
  scheduler_state = _as_state(not stale, warn=failed_24h > 0 or not settings.reminder_enabled)
  sections.append(
    SystemStatusSectionOut(
      key="reminders",
      label="Reminders",
      state=scheduler_state,
      details=[
        f"enabled: {'yes' if settings.reminder_enabled else 'no'}",
        f"interval: {settings.reminder_poll_interval_seconds}s",
        f"cycles: {reminders['cycles']}",
        f"last cycle: {last_cycle_at.isoformat() if last_cycle_at else 'never'}",
        f"armed tasks: {int(armed)}",
        f"sent (24h): {sent_24h}",
        f"failed (24h): {failed_24h}",
      ],
      updatedAt=now,
    )
  )

  return SystemStatusOut(
    generatedAt=now,
    version=settings.app_version,
    buildSha=settings.build_sha,
    sections=sections,
  )
