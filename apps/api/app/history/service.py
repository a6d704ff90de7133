from __future__ import annotations

from datetime import datetime

from sqlalchemy import ColumnElement, delete, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import HISTORY_STATUSES, NotificationHistory, Task


async def record_attempt(
  db: AsyncSession,
  *,
  task_id: str,
  user_id: str,
  status: str,
  sent_at: datetime,
  error: str | None = None,
) -> NotificationHistory:
  """Append one dispatch attempt. Entries are never updated."""
  if status not in HISTORY_STATUSES:
    raise ValueError(f"Unknown history status: {status}")
  entry = NotificationHistory(
    task_id=task_id,
    user_id=user_id,
    status=status,
    sent_at=sent_at,
    error=(error[:1000] if error else None),
  )
  db.add(entry)
  return entry


async def purge_for_task(db: AsyncSession, *, task_id: str, user_id: str) -> int:
  res = await db.execute(
    delete(NotificationHistory).where(NotificationHistory.task_id == task_id, NotificationHistory.user_id == user_id)
  )
  return int(res.rowcount or 0)


def recent_attempt_exists(since: datetime) -> ColumnElement[bool]:
  # Correlated against Task in the scheduler's select.
  return exists().where(NotificationHistory.task_id == Task.id, NotificationHistory.sent_at >= since)


async def list_for_task(db: AsyncSession, *, user_id: str, task_id: str) -> list[NotificationHistory]:
  res = await db.execute(
    select(NotificationHistory)
    .where(NotificationHistory.task_id == task_id, NotificationHistory.user_id == user_id)
    .order_by(NotificationHistory.sent_at.desc())
  )
  return list(res.scalars().all())
