from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.audit import write_audit
from app.categories.service import category_lookup
from app.deps import get_current_user, get_db
from app.history.service import list_for_task
from app.models import Category, Task, User
from app.ordering.service import apply_order_data, compress_partition
from app.schemas import (
  NotificationHistoryOut,
  ProductivityPointOut,
  TaskCompactIn,
  TaskCreateIn,
  TaskListOut,
  TaskNotificationsIn,
  TaskOrderIn,
  TaskOut,
  TaskStatusIn,
  TaskSummaryOut,
  TaskUpdateIn,
)
from app.tasks import service as tasks

router = APIRouter(tags=["tasks"])


def _task_out(t: Task, categories: dict[str, Category] | None = None) -> TaskOut:
  c = (categories or {}).get(t.category_id)
  return TaskOut(
    task_id=t.id,
    user_id=t.user_id,
    title=t.title,
    description=t.description,
    category_id=t.category_id,
    category_name=c.name if c else None,
    category_color=c.color if c else None,
    due_date=t.due_date,
    status=t.status,
    order=t.order,
    completed_at=t.completed_at,
    notifications_enabled=bool(t.notifications_enabled),
    notification_time=t.notification_time,
    created_at=t.created_at,
    updated_at=t.updated_at,
  )


async def _single_out(db: AsyncSession, t: Task) -> TaskOut:
  await db.refresh(t)
  return _task_out(t, await category_lookup(db, user_id=t.user_id))


@router.get("/tasks/stats/productivity", response_model=list[ProductivityPointOut])
async def productivity_stats(
  startDate: date,
  endDate: date,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[ProductivityPointOut]:
  points = await tasks.productivity(db, user_id=user.id, start=startDate, end=endDate)
  return [ProductivityPointOut(**p) for p in points]


@router.get("/tasks/stats/summary", response_model=TaskSummaryOut)
async def summary_stats(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskSummaryOut:
  return TaskSummaryOut(**(await tasks.summary(db, user_id=user.id)))


@router.patch("/tasks/order")
async def reorder_tasks(
  payload: TaskOrderIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  pairs = [(item.taskId, item.order) for item in payload.orderData]
  partition = await apply_order_data(db, user_id=user.id, order_data=pairs)
  if partition is not None:
    await write_audit(
      db,
      event_type="task.reordered",
      entity_type="Task",
      entity_id=None,
      user_id=user.id,
      payload={"status": partition, "count": len(pairs)},
    )
  await db.commit()
  return {"ok": True}


@router.post("/tasks/order/compact")
async def compact_order(
  payload: TaskCompactIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  count = await compress_partition(db, user_id=user.id, status=payload.status)
  await write_audit(
    db,
    event_type="task.order_compacted",
    entity_type="Task",
    entity_id=None,
    user_id=user.id,
    payload={"status": payload.status, "count": count},
  )
  await db.commit()
  return {"ok": True}


@router.get("/tasks", response_model=TaskListOut)
async def list_tasks(
  status_filter: str | None = Query(default=None, alias="status"),
  category_id: str | None = None,
  date_filter: date | None = Query(default=None, alias="date"),
  sortType: str | None = None,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskListOut:
  filters = tasks.TaskFilters(
    status=status_filter or None,
    category_id=category_id or None,
    date=date_filter,
    sort=tasks.SortType.parse(sortType),
  )
  listing = await tasks.list_tasks(db, user_id=user.id, filters=filters)
  categories = await category_lookup(db, user_id=user.id)
  return TaskListOut(
    active=[_task_out(t, categories) for t in listing.active],
    completed=[_task_out(t, categories) for t in listing.completed],
  )


@router.post("/tasks", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
async def create_task(
  payload: TaskCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  t = await tasks.create_task(
    db,
    user_id=user.id,
    title=payload.title,
    description=payload.description,
    category_id=payload.category_id,
    due_date=payload.due_date,
  )
  await db.commit()
  return await _single_out(db, t)


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  t = await tasks.get_task(db, user_id=user.id, task_id=task_id)
  return _task_out(t, await category_lookup(db, user_id=user.id))


@router.put("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
  task_id: str,
  payload: TaskUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  t = await tasks.update_task(db, user_id=user.id, task_id=task_id, changes=payload.model_dump(exclude_unset=True))
  await db.commit()
  return await _single_out(db, t)


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  await tasks.delete_task(db, user_id=user.id, task_id=task_id)
  await db.commit()
  return {"ok": True}


@router.patch("/tasks/{task_id}/status", response_model=TaskOut)
async def change_status(
  task_id: str,
  payload: TaskStatusIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  t = await tasks.change_status(db, user_id=user.id, task_id=task_id, status=payload.status)
  await db.commit()
  return await _single_out(db, t)


@router.patch("/tasks/{task_id}/notifications", response_model=TaskOut)
async def update_notifications(
  task_id: str,
  payload: TaskNotificationsIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  t = await tasks.update_notifications(
    db,
    user_id=user.id,
    task_id=task_id,
    notifications_enabled=payload.notifications_enabled,
    notification_time=payload.notification_time,
  )
  await db.commit()
  return await _single_out(db, t)


@router.get("/tasks/{task_id}/notifications/history", response_model=list[NotificationHistoryOut])
async def notification_history(
  task_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[NotificationHistoryOut]:
  await tasks.get_task(db, user_id=user.id, task_id=task_id)
  entries = await list_for_task(db, user_id=user.id, task_id=task_id)
  return [
    NotificationHistoryOut(id=h.id, task_id=h.task_id, status=h.status, error=h.error, sent_at=h.sent_at)
    for h in entries
  ]
