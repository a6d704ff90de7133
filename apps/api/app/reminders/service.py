from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.categories.service import category_lookup
from app.config import settings
from app.history.service import record_attempt, recent_attempt_exists
from app.metrics import runtime_metrics
from app.models import Category, Task, User
from app.notifications.service import NotificationChannel

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
  selected: int = 0
  sent: int = 0
  failed: int = 0
  skipped: int = 0


def format_due_date(due: datetime | None) -> str:
  if due is None:
    return "not set"
  return due.astimezone(timezone.utc).strftime("%d.%m.%Y")


def format_notification_message(task: Task, category: Category | None) -> str:
  category_name = category.name if category else "No category"
  text = (
    "🔔 <b>Task reminder!</b>\n\n"
    f"📌 <b>Task:</b> {html.escape(task.title)}\n"
    f"📅 <b>Due:</b> {format_due_date(task.due_date)}\n"
    f"🏷 <b>Category:</b> {html.escape(category_name)}\n"
  )
  if task.description:
    text += f"\n📝 <b>Description:</b>\n{html.escape(task.description)}"
  return text


def _still_armed(t: Task, *, window_start: datetime, window_end: datetime) -> bool:
  return (
    bool(t.notifications_enabled)
    and t.status == "active"
    and t.notification_time is not None
    and window_start <= t.notification_time < window_end
  )


def _due_query(*, window_start: datetime, window_end: datetime, since: datetime, exclude: set[str], batch_limit: int):
  stmt = (
    select(Task.id, Task.user_id, User.telegram_chat_id)
    .join(User, User.id == Task.user_id)
    .where(
      Task.notifications_enabled.is_(True),
      Task.status == "active",
      Task.notification_time >= window_start,
      Task.notification_time < window_end,
      User.active.is_(True),
      User.telegram_chat_id.is_not(None),
      ~recent_attempt_exists(since),
    )
    .order_by(Task.notification_time.asc(), Task.id.asc())
    .limit(batch_limit)
  )
  if exclude:
    stmt = stmt.where(Task.id.not_in(exclude))
  return stmt


async def dispatch_due_notifications_once(
  db: AsyncSession,
  *,
  channel: NotificationChannel,
  now: datetime | None = None,
  interval_seconds: int | None = None,
  limit: int | None = None,
) -> DispatchReport:
  """
  Run one poll cycle.

  Picks active tasks whose notification_time falls in [now, now + interval),
  skipping any task with an attempt recorded since now - interval (an
  overlapping earlier cycle already handled it). Every attempt is written to
  the history log, failed ones included, and failed sends are not retried.

  Due tasks are read in batches of `limit` until a short batch comes back, so
  a busy minute is drained in one cycle. Each task is loaded and recorded on
  its own; a storage error for one task is rolled back and the cycle moves on.
  """
  now = now or datetime.now(timezone.utc)
  interval = timedelta(seconds=max(1, int(interval_seconds or settings.reminder_poll_interval_seconds)))
  window_start = now
  window_end = now + interval
  batch_limit = max(1, int(limit or settings.reminder_batch_limit))

  report = DispatchReport()
  seen: set[str] = set()
  categories_by_user: dict[str, dict[str, Category]] = {}

  while True:
    res = await db.execute(
      _due_query(
        window_start=window_start,
        window_end=window_end,
        since=window_start - interval,
        exclude=seen,
        batch_limit=batch_limit,
      )
    )
    batch = res.all()
    report.selected += len(batch)

    for task_id, user_id, chat_id in batch:
      seen.add(task_id)
      try:
        task = await db.get(Task, task_id, populate_existing=True)
        if task is None or not _still_armed(task, window_start=window_start, window_end=window_end):
          # Deleted, disarmed or rescheduled after selection.
          report.skipped += 1
          continue
        if user_id not in categories_by_user:
          categories_by_user[user_id] = await category_lookup(db, user_id=user_id)
        message = format_notification_message(task, categories_by_user[user_id].get(task.category_id))
      except SQLAlchemyError:
        logger.exception("could not load task %s for notification", task_id)
        await db.rollback()
        categories_by_user.clear()
        report.skipped += 1
        continue

      status = "sent"
      error: str | None = None
      try:
        await channel.send(str(chat_id), message)
      except Exception as e:
        status = "failed"
        error = str(e) or e.__class__.__name__
        logger.warning("notification for task %s failed: %s", task_id, error)

      try:
        await record_attempt(db, task_id=task_id, user_id=user_id, status=status, sent_at=now, error=error)
        await db.commit()
      except SQLAlchemyError:
        logger.exception("could not record notification attempt for task %s", task_id)
        await db.rollback()
        categories_by_user.clear()

      if status == "sent":
        report.sent += 1
      else:
        report.failed += 1

    if len(batch) < batch_limit:
      break

  if report.selected:
    logger.info(
      "notification cycle: selected=%s sent=%s failed=%s skipped=%s",
      report.selected,
      report.sent,
      report.failed,
      report.skipped,
    )
  runtime_metrics.observe_reminder_cycle(now, report)
  return report
