"""
Manual task ordering.

Ranks are integers scoped to a (user, status) partition. Only relative order
is meaningful: gaps and negative values are fine, duplicates are not.

Nothing here commits. Callers wrap each mutation in one transaction and take
``lock_partitions`` first so a shift and the write that depends on it are
applied together or not at all.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotFoundError, ValidationError
from app.history.service import purge_for_task
from app.models import TASK_STATUSES, Task, User

logger = logging.getLogger(__name__)


def _check_status(status: str) -> None:
  if status not in TASK_STATUSES:
    raise ValidationError(f"Invalid status: {status!r}")


async def lock_partitions(db: AsyncSession, user_id: str) -> None:
  # One writer per user. Dialects without row locks (SQLite) ignore FOR UPDATE.
  await db.execute(select(User.id).where(User.id == user_id).with_for_update())


async def head_rank(db: AsyncSession, *, user_id: str, status: str) -> int:
  _check_status(status)
  res = await db.execute(select(func.min(Task.order)).where(Task.user_id == user_id, Task.status == status))
  min_order = res.scalar_one()
  return (min_order - 1) if min_order is not None else 0


async def _partition_ranks(db: AsyncSession, *, user_id: str, status: str) -> dict[str, int]:
  res = await db.execute(select(Task.id, Task.order).where(Task.user_id == user_id, Task.status == status))
  return {row.id: row.order for row in res.all()}


async def _owned_statuses(db: AsyncSession, *, user_id: str, task_ids: list[str]) -> dict[str, str]:
  res = await db.execute(select(Task.id, Task.status).where(Task.user_id == user_id, Task.id.in_(task_ids)))
  found = {row.id: row.status for row in res.all()}
  missing = [tid for tid in task_ids if tid not in found]
  if missing:
    raise NotFoundError(f"Task not found: {missing[0]}")
  return found


async def _write_ranks(db: AsyncSession, *, user_id: str, status: str, assignments: dict[str, int]) -> None:
  """Validate the resulting partition, then write. Partial assignments are allowed."""
  current = await _partition_ranks(db, user_id=user_id, status=status)
  merged = dict(current)
  merged.update(assignments)
  if len(set(merged.values())) != len(merged):
    raise ValidationError("Order values must be distinct within a status partition")

  for task_id, rank in assignments.items():
    if current.get(task_id) == rank:
      continue
    await db.execute(
      update(Task).where(Task.id == task_id, Task.user_id == user_id, Task.status == status).values(order=rank)
    )


async def bulk_reorder(db: AsyncSession, *, user_id: str, status: str, ordered_ids: list[str]) -> None:
  """Assign ranks 0..n-1 to ``ordered_ids`` in list order."""
  _check_status(status)
  if len(set(ordered_ids)) != len(ordered_ids):
    raise ValidationError("Duplicate task ids in reorder payload")
  if not ordered_ids:
    return
  await lock_partitions(db, user_id)
  statuses = await _owned_statuses(db, user_id=user_id, task_ids=ordered_ids)
  foreign = [tid for tid in ordered_ids if statuses[tid] != status]
  if foreign:
    raise ValidationError(f"Task {foreign[0]} is not in the {status} partition")
  await _write_ranks(
    db,
    user_id=user_id,
    status=status,
    assignments={tid: idx for idx, tid in enumerate(ordered_ids)},
  )


async def apply_order_data(db: AsyncSession, *, user_id: str, order_data: list[tuple[str, int]]) -> str | None:
  """
  Write explicit ranks as supplied by a client: ``[(task_id, order), ...]``.

  All ids must belong to the caller and to one status partition. Returns the
  partition's status, or None for an empty payload.
  """
  if not order_data:
    return None
  task_ids = [tid for tid, _ in order_data]
  if len(set(task_ids)) != len(task_ids):
    raise ValidationError("Duplicate task ids in reorder payload")

  await lock_partitions(db, user_id)
  statuses = await _owned_statuses(db, user_id=user_id, task_ids=task_ids)
  partition = {statuses[tid] for tid in task_ids}
  if len(partition) != 1:
    raise ValidationError("Reorder payload mixes active and completed tasks")
  status = partition.pop()
  await _write_ranks(db, user_id=user_id, status=status, assignments=dict(order_data))
  return status


async def transition_status(db: AsyncSession, *, task: Task, new_status: str, now: datetime) -> Task:
  """
  Move ``task`` into the ``new_status`` partition at its head.

  Every rank already in the destination moves down by one; the moved task takes
  rank 0. If the destination holds ranks below zero (tasks created at head),
  the moved task takes the rank just under the shifted minimum so ranks stay
  distinct. The source partition keeps its gap.
  """
  _check_status(new_status)
  if task.status == new_status:
    return task

  await lock_partitions(db, task.user_id)

  if new_status == "completed" and (task.notifications_enabled or task.notification_time is not None):
    # Disarm first so a concurrent poll can't fire for a task being archived.
    had_time = task.notification_time is not None
    task.notifications_enabled = False
    task.notification_time = None
    await db.flush()
    if had_time:
      await purge_for_task(db, task_id=task.id, user_id=task.user_id)

  await db.execute(
    update(Task)
    .where(Task.user_id == task.user_id, Task.status == new_status)
    .values(order=Task.order + 1)
  )
  res = await db.execute(select(func.min(Task.order)).where(Task.user_id == task.user_id, Task.status == new_status))
  shifted_min = res.scalar_one()
  rank = 0 if shifted_min is None or shifted_min > 0 else shifted_min - 1

  old_status = task.status
  task.status = new_status
  task.order = rank
  task.completed_at = now if new_status == "completed" else None
  await db.flush()
  logger.debug("task %s moved %s -> %s at rank %s", task.id, old_status, new_status, rank)
  return task


async def compress_partition(db: AsyncSession, *, user_id: str, status: str) -> int:
  """Renumber a partition to 0..n-1 keeping its order. Returns the partition size."""
  _check_status(status)
  await lock_partitions(db, user_id)
  res = await db.execute(
    select(Task).where(Task.user_id == user_id, Task.status == status).order_by(Task.order.asc(), Task.created_at.asc())
  )
  tasks = res.scalars().all()
  for idx, t in enumerate(tasks):
    t.order = idx
  await db.flush()
  return len(tasks)
