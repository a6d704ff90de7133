from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.notifications.service import NotificationChannel
from app.reminders.service import DispatchReport, dispatch_due_notifications_once

logger = logging.getLogger(__name__)

CycleFn = Callable[..., Awaitable[DispatchReport]]


class ReminderScheduler:
  """
  Fixed-interval poller around ``dispatch_due_notifications_once``.

  One instance per deployment. ``stop()`` stops new ticks and waits for the
  cycle in flight (bounded by ``shutdown_timeout``) before returning.
  """

  def __init__(
    self,
    *,
    session_factory: async_sessionmaker[AsyncSession],
    channel: NotificationChannel,
    interval_seconds: float | None = None,
    shutdown_timeout: float | None = None,
    cycle: CycleFn = dispatch_due_notifications_once,
  ) -> None:
    self._session_factory = session_factory
    self._channel = channel
    self._interval = max(0.01, float(interval_seconds if interval_seconds is not None else settings.reminder_poll_interval_seconds))
    self._shutdown_timeout = float(
      shutdown_timeout if shutdown_timeout is not None else settings.reminder_shutdown_timeout_seconds
    )
    self._cycle = cycle
    self._stop = asyncio.Event()
    self._task: asyncio.Task | None = None
    self.cycles = 0

  @property
  def running(self) -> bool:
    return self._task is not None and not self._task.done()

  def start(self) -> None:
    if self.running:
      return
    self._stop.clear()
    self._task = asyncio.create_task(self._run(), name="reminder-scheduler")
    logger.info("reminder scheduler started (interval=%ss)", self._interval)

  async def stop(self) -> None:
    if self._task is None:
      return
    self._stop.set()
    try:
      await asyncio.wait_for(asyncio.shield(self._task), timeout=self._shutdown_timeout)
    except asyncio.TimeoutError:
      logger.warning("reminder cycle did not finish within %ss; cancelling", self._shutdown_timeout)
      self._task.cancel()
      try:
        await self._task
      except asyncio.CancelledError:
        pass
    self._task = None
    logger.info("reminder scheduler stopped")

  async def run_once(self) -> DispatchReport | None:
    async with self._session_factory() as db:
      try:
        return await self._cycle(db, channel=self._channel, interval_seconds=int(max(1, round(self._interval))))
      except Exception:
        # Never let one bad cycle kill the loop.
        logger.exception("reminder cycle failed")
        return None
      finally:
        self.cycles += 1

  async def _run(self) -> None:
    while not self._stop.is_set():
      await self.run_once()
      try:
        await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
      except asyncio.TimeoutError:
        continue
