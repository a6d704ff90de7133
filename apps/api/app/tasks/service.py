from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.audit import write_audit
from app.categories.service import category_lookup, ensure_default_categories
from app.config import settings
from app.errors import NotFoundError, ValidationError
from app.history.service import purge_for_task
from app.models import DEFAULT_CATEGORY_ID, TASK_STATUSES, NotificationHistory, Task
from app.ordering.service import head_rank, lock_partitions, transition_status

logger = logging.getLogger(__name__)

_FAR = float("inf")


class SortType(str, Enum):
  NONE = "none"
  ASC = "asc"
  DESC = "desc"
  NEAREST = "nearest"
  FARTHEST = "farthest"

  @classmethod
  def parse(cls, value: str | None) -> "SortType":
    v = (value or "").strip().lower()
    if v in ("", "none", "order"):
      return cls.NONE
    try:
      return cls(v)
    except ValueError:
      raise ValidationError(f"Invalid sortType: {value!r}") from None


def _ts(dt: datetime) -> float:
  return dt.timestamp()


# Each key puts undated tasks last whatever the direction, then breaks ties on rank.
def _key_none(t: Task, now: datetime) -> tuple:
  return (t.order,)


def _key_asc(t: Task, now: datetime) -> tuple:
  return (t.due_date is None, _ts(t.due_date) if t.due_date else 0.0, t.order)


def _key_desc(t: Task, now: datetime) -> tuple:
  return (t.due_date is None, -_ts(t.due_date) if t.due_date else 0.0, t.order)


def _key_nearest(t: Task, now: datetime) -> tuple:
  return (t.due_date is None, abs(_ts(t.due_date) - _ts(now)) if t.due_date else _FAR, t.order)


def _key_farthest(t: Task, now: datetime) -> tuple:
  return (t.due_date is None, -abs(_ts(t.due_date) - _ts(now)) if t.due_date else 0.0, t.order)


SORT_KEYS: dict[SortType, Callable[[Task, datetime], tuple]] = {
  SortType.NONE: _key_none,
  SortType.ASC: _key_asc,
  SortType.DESC: _key_desc,
  SortType.NEAREST: _key_nearest,
  SortType.FARTHEST: _key_farthest,
}


def _completed_key(t: Task) -> tuple:
  # completed_at descending, missing timestamps last
  return (t.completed_at is None, -_ts(t.completed_at) if t.completed_at else 0.0, t.order)


@dataclass
class TaskFilters:
  status: str | None = None
  category_id: str | None = None
  date: date | None = None
  sort: SortType = SortType.NONE


@dataclass
class TaskListing:
  active: list[Task] = field(default_factory=list)
  completed: list[Task] = field(default_factory=list)


def day_bounds(d: date) -> tuple[datetime, datetime]:
  start = datetime.combine(d, time(0, 0), tzinfo=timezone.utc)
  return start, start + timedelta(days=1)


async def _check_category(db: AsyncSession, *, user_id: str, category_id: str) -> None:
  categories = await ensure_default_categories(db, user_id=user_id)
  if category_id not in {c.category_id for c in categories}:
    raise ValidationError(f"Unknown category_id: {category_id}")


def _validate_notification_state(
  t: Task, *, now: datetime, time_changed: bool, due_changed: bool, enabling: bool = False
) -> None:
  # Arming a task re-checks a stored time as if it were new.
  if (time_changed or enabling) and t.notification_time is not None and t.notification_time <= now:
    raise ValidationError("notification_time must be in the future")
  if (time_changed or due_changed or enabling) and t.notification_time is not None and t.due_date is not None:
    if t.notification_time > t.due_date:
      raise ValidationError("notification_time must not be later than due_date")
  if t.notifications_enabled and t.notification_time is None:
    raise ValidationError("notification_time is required when notifications are enabled")
  if t.notifications_enabled and t.status == "completed":
    raise ValidationError("Completed tasks cannot have notifications enabled")


async def create_task(
  db: AsyncSession,
  *,
  user_id: str,
  title: str,
  description: str | None = None,
  category_id: str | None = None,
  due_date: datetime | None = None,
) -> Task:
  category_id = category_id or DEFAULT_CATEGORY_ID
  await _check_category(db, user_id=user_id, category_id=category_id)

  await lock_partitions(db, user_id)
  rank = await head_rank(db, user_id=user_id, status="active")
  t = Task(
    user_id=user_id,
    title=title,
    description=description,
    category_id=category_id,
    due_date=due_date,
    status="active",
    order=rank,
    notifications_enabled=False,
  )
  db.add(t)
  await db.flush()
  await write_audit(
    db,
    event_type="task.created",
    entity_type="Task",
    entity_id=t.id,
    user_id=user_id,
    payload={"title": t.title, "order": t.order},
  )
  return t


async def get_task(db: AsyncSession, *, user_id: str, task_id: str) -> Task:
  res = await db.execute(select(Task).where(Task.id == task_id, Task.user_id == user_id))
  t = res.scalar_one_or_none()
  if not t:
    raise NotFoundError("Task not found")
  return t


async def list_tasks(db: AsyncSession, *, user_id: str, filters: TaskFilters, now: datetime | None = None) -> TaskListing:
  now = now or datetime.now(timezone.utc)
  q = select(Task).where(Task.user_id == user_id)
  if filters.status:
    if filters.status not in TASK_STATUSES:
      raise ValidationError(f"Invalid status: {filters.status!r}")
    q = q.where(Task.status == filters.status)
  if filters.category_id:
    q = q.where(Task.category_id == filters.category_id)
  if filters.date:
    start, end = day_bounds(filters.date)
    q = q.where(Task.due_date >= start, Task.due_date < end)

  res = await db.execute(q)
  tasks = res.scalars().all()

  key = SORT_KEYS[filters.sort]
  active = sorted((t for t in tasks if t.status == "active"), key=lambda t: key(t, now))
  completed = sorted((t for t in tasks if t.status == "completed"), key=_completed_key)
  return TaskListing(active=active, completed=completed)


UPDATABLE_FIELDS = ("title", "description", "category_id", "due_date", "notifications_enabled", "notification_time", "status")
_NON_NULLABLE = {"title", "category_id", "notifications_enabled", "status"}


async def update_task(
  db: AsyncSession,
  *,
  user_id: str,
  task_id: str,
  changes: dict[str, Any],
  now: datetime | None = None,
) -> Task:
  """
  Apply a partial update.

  Keys absent from ``changes`` keep their stored value; an explicit None clears
  a nullable field and is ignored for non-nullable ones. A status change goes
  through the ordering engine. Editing due_date or notification_time drops the
  task's notification history so a rescheduled reminder can fire again.
  """
  now = now or datetime.now(timezone.utc)
  t = await get_task(db, user_id=user_id, task_id=task_id)

  old_due = t.due_date
  old_time = t.notification_time
  old_enabled = bool(t.notifications_enabled)
  applied: dict[str, Any] = {}

  for name in UPDATABLE_FIELDS:
    if name not in changes or name == "status":
      continue
    val = changes[name]
    if val is None and name in _NON_NULLABLE:
      continue
    if name == "title":
      val = str(val).strip()
      if not val:
        raise ValidationError("title is required")
    if name == "category_id":
      await _check_category(db, user_id=user_id, category_id=val)
    setattr(t, name, val)
    applied[name] = val

  new_status = changes.get("status")
  if new_status is not None and new_status not in TASK_STATUSES:
    raise ValidationError(f"Invalid status: {new_status!r}")

  due_changed = t.due_date != old_due
  time_changed = t.notification_time != old_time

  if new_status is not None and new_status != t.status:
    await transition_status(db, task=t, new_status=new_status, now=now)
    applied["status"] = new_status
    # Completing disarms; the explicit request values no longer apply.
    if new_status == "completed":
      time_changed = False

  enabling = bool(t.notifications_enabled) and not old_enabled
  _validate_notification_state(t, now=now, time_changed=time_changed, due_changed=due_changed, enabling=enabling)

  if due_changed or t.notification_time != old_time:
    purged = await purge_for_task(db, task_id=t.id, user_id=user_id)
    if purged:
      logger.info("task %s rescheduled; dropped %s notification history entries", t.id, purged)

  await db.flush()
  await write_audit(
    db,
    event_type="task.updated",
    entity_type="Task",
    entity_id=t.id,
    user_id=user_id,
    payload={"changed": sorted(applied.keys()), "fields": applied},
  )
  return t


async def update_notifications(
  db: AsyncSession,
  *,
  user_id: str,
  task_id: str,
  notifications_enabled: bool,
  notification_time: datetime | None,
  now: datetime | None = None,
) -> Task:
  return await update_task(
    db,
    user_id=user_id,
    task_id=task_id,
    changes={"notifications_enabled": notifications_enabled, "notification_time": notification_time},
    now=now,
  )


async def change_status(db: AsyncSession, *, user_id: str, task_id: str, status: str, now: datetime | None = None) -> Task:
  now = now or datetime.now(timezone.utc)
  if status not in TASK_STATUSES:
    raise ValidationError(f"Invalid status: {status!r}")
  t = await get_task(db, user_id=user_id, task_id=task_id)
  old_status = t.status
  await transition_status(db, task=t, new_status=status, now=now)
  await write_audit(
    db,
    event_type="task.status_changed",
    entity_type="Task",
    entity_id=t.id,
    user_id=user_id,
    payload={"from": old_status, "to": t.status, "order": t.order},
  )
  return t


async def delete_task(db: AsyncSession, *, user_id: str, task_id: str) -> None:
  t = await get_task(db, user_id=user_id, task_id=task_id)
  await db.execute(delete(NotificationHistory).where(NotificationHistory.task_id == t.id))
  await db.execute(delete(Task).where(Task.id == t.id, Task.user_id == user_id))
  await write_audit(
    db,
    event_type="task.deleted",
    entity_type="Task",
    entity_id=task_id,
    user_id=user_id,
    payload={"title": t.title},
  )


async def productivity(db: AsyncSession, *, user_id: str, start: date, end: date) -> list[dict[str, Any]]:
  """Completed-task counts for every day in [start, end], zero-filled."""
  if start > end:
    raise ValidationError("startDate must not be after endDate")
  days = (end - start).days + 1
  if days > settings.productivity_max_days:
    raise ValidationError(f"Date range is limited to {settings.productivity_max_days} days")

  range_start, _ = day_bounds(start)
  _, range_end = day_bounds(end)
  res = await db.execute(
    select(Task.completed_at).where(
      Task.user_id == user_id,
      Task.status == "completed",
      Task.completed_at >= range_start,
      Task.completed_at < range_end,
    )
  )
  counts = Counter(ts.astimezone(timezone.utc).date() for ts in res.scalars().all() if ts is not None)
  out: list[dict[str, Any]] = []
  for i in range(days):
    d = start + timedelta(days=i)
    out.append({"date": d.isoformat(), "completed_count": int(counts.get(d, 0))})
  return out


async def summary(db: AsyncSession, *, user_id: str) -> dict[str, Any]:
  res = await db.execute(
    select(Task.status, Task.category_id, func.count())
    .where(Task.user_id == user_id)
    .group_by(Task.status, Task.category_id)
  )
  rows = res.all()
  categories = await category_lookup(db, user_id=user_id)

  by_status: dict[str, dict[str, int]] = {"active": {}, "completed": {}}
  for status, category_id, n in rows:
    c = categories.get(category_id)
    name = c.name if c else "No category"
    bucket = by_status.setdefault(status, {})
    bucket[name] = bucket.get(name, 0) + int(n)

  active_count = sum(by_status["active"].values())
  completed_count = sum(by_status["completed"].values())
  return {
    "activeCount": active_count,
    "completedCount": completed_count,
    "totalCount": active_count + completed_count,
    "activeByCategory": by_status["active"],
    "completedByCategory": by_status["completed"],
  }
