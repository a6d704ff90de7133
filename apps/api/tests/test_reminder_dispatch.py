from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.db import SessionLocal
from app.errors import DeliveryError
from app.models import NotificationHistory, Task
from app.reminders import service as reminder_service
from app.reminders.scheduler import ReminderScheduler
from app.reminders.service import DispatchReport, dispatch_due_notifications_once, format_notification_message
from conftest import create_task, create_user


class _FakeChannel:
  def __init__(self, *, fail: bool = False) -> None:
    self.fail = fail
    self.sent: list[tuple[str, str]] = []

  async def send(self, chat_id: str, text: str) -> None:
    if self.fail:
      raise DeliveryError("Telegram rejected message: 403 Forbidden", status_code=403)
    self.sent.append((chat_id, text))


def _iso(dt: datetime) -> str:
  return dt.isoformat().replace("+00:00", "Z")


async def _armed_task(client: AsyncClient, headers: dict[str, str], title: str, when: datetime, **fields) -> dict:
  t = await create_task(client, headers, title, **fields)
  res = await client.patch(
    f"/tasks/{t['task_id']}/notifications",
    json={"notifications_enabled": True, "notification_time": _iso(when)},
    headers=headers,
  )
  assert res.status_code == 200, res.text
  return res.json()


async def _history_rows(task_id: str) -> list[NotificationHistory]:
  async with SessionLocal() as db:
    res = await db.execute(select(NotificationHistory).where(NotificationHistory.task_id == task_id))
    return list(res.scalars().all())


@pytest.mark.anyio
async def test_due_notification_is_sent_and_logged(client: AsyncClient) -> None:
  _, headers = await create_user(chat_id="555")
  when = datetime.now(timezone.utc) + timedelta(minutes=30)
  t = await _armed_task(client, headers, "Take <pills>", when, description="Two of them", category_id="personal")

  channel = _FakeChannel()
  async with SessionLocal() as db:
    report = await dispatch_due_notifications_once(db, channel=channel, now=when - timedelta(seconds=20), interval_seconds=60)

  assert report == DispatchReport(selected=1, sent=1, failed=0, skipped=0)
  assert len(channel.sent) == 1
  chat_id, text = channel.sent[0]
  assert chat_id == "555"
  assert "Take &lt;pills&gt;" in text
  assert "Two of them" in text
  assert "Personal" in text

  rows = await _history_rows(t["task_id"])
  assert [r.status for r in rows] == ["sent"]
  assert rows[0].error is None

  async with SessionLocal() as db:
    next_cycle = await dispatch_due_notifications_once(db, channel=channel, now=when + timedelta(seconds=40), interval_seconds=60)
  assert next_cycle.selected == 0
  assert len(channel.sent) == 1


@pytest.mark.anyio
async def test_tasks_outside_window_are_ignored(client: AsyncClient) -> None:
  _, headers = await create_user()
  when = datetime.now(timezone.utc) + timedelta(minutes=30)
  await _armed_task(client, headers, "Later", when)

  channel = _FakeChannel()
  async with SessionLocal() as db:
    early = await dispatch_due_notifications_once(db, channel=channel, now=when - timedelta(minutes=5), interval_seconds=60)
    # Window is half-open: a task exactly at now + interval belongs to the next cycle.
    edge = await dispatch_due_notifications_once(db, channel=channel, now=when - timedelta(seconds=60), interval_seconds=60)
  assert early.selected == 0
  assert edge.selected == 0
  assert channel.sent == []


@pytest.mark.anyio
async def test_overlapping_cycles_do_not_duplicate(client: AsyncClient) -> None:
  _, headers = await create_user()
  when = datetime.now(timezone.utc) + timedelta(minutes=30)
  await _armed_task(client, headers, "Once only", when)

  channel = _FakeChannel()
  async with SessionLocal() as db:
    first = await dispatch_due_notifications_once(db, channel=channel, now=when - timedelta(seconds=50), interval_seconds=60)
    second = await dispatch_due_notifications_once(db, channel=channel, now=when - timedelta(seconds=10), interval_seconds=60)
  assert first.sent == 1
  assert second.selected == 0
  assert len(channel.sent) == 1


@pytest.mark.anyio
async def test_failed_delivery_is_recorded_and_not_retried(client: AsyncClient) -> None:
  _, headers = await create_user()
  when = datetime.now(timezone.utc) + timedelta(minutes=30)
  t = await _armed_task(client, headers, "Will fail", when)

  failing = _FakeChannel(fail=True)
  async with SessionLocal() as db:
    report = await dispatch_due_notifications_once(db, channel=failing, now=when - timedelta(seconds=30), interval_seconds=60)
  assert report.failed == 1
  assert report.sent == 0

  rows = await _history_rows(t["task_id"])
  assert [r.status for r in rows] == ["failed"]
  assert "403" in (rows[0].error or "")

  ok = _FakeChannel()
  async with SessionLocal() as db:
    retry = await dispatch_due_notifications_once(db, channel=ok, now=when - timedelta(seconds=5), interval_seconds=60)
  assert retry.selected == 0
  assert ok.sent == []


@pytest.mark.anyio
async def test_one_failure_does_not_block_other_tasks(client: AsyncClient) -> None:
  _, alice = await create_user("Alice", chat_id="1")
  _, bob = await create_user("Bob", chat_id="2")
  when = datetime.now(timezone.utc) + timedelta(minutes=30)
  await _armed_task(client, alice, "Alice task", when)
  await _armed_task(client, bob, "Bob task", when + timedelta(seconds=5))

  class _FailsForAlice(_FakeChannel):
    async def send(self, chat_id: str, text: str) -> None:
      if chat_id == "1":
        raise DeliveryError("boom")
      await super().send(chat_id, text)

  channel = _FailsForAlice()
  async with SessionLocal() as db:
    report = await dispatch_due_notifications_once(db, channel=channel, now=when - timedelta(seconds=10), interval_seconds=60)
  assert report.selected == 2
  assert report.failed == 1
  assert report.sent == 1
  assert [c for c, _ in channel.sent] == ["2"]


@pytest.mark.anyio
async def test_storage_error_for_one_task_does_not_abort_cycle(client: AsyncClient, monkeypatch) -> None:
  _, headers = await create_user()
  when = datetime.now(timezone.utc) + timedelta(minutes=30)
  first = await _armed_task(client, headers, "First", when)
  second = await _armed_task(client, headers, "Second", when + timedelta(seconds=5))

  real_record = reminder_service.record_attempt
  calls: list[str] = []

  async def _flaky_record(db, *, task_id: str, **kwargs):
    calls.append(task_id)
    if len(calls) == 1:
      raise OperationalError("INSERT INTO notification_history", {}, Exception("disk I/O error"))
    return await real_record(db, task_id=task_id, **kwargs)

  monkeypatch.setattr(reminder_service, "record_attempt", _flaky_record)

  channel = _FakeChannel()
  async with SessionLocal() as db:
    report = await dispatch_due_notifications_once(db, channel=channel, now=when - timedelta(seconds=10), interval_seconds=60)

  assert report == DispatchReport(selected=2, sent=2, failed=0, skipped=0)
  assert len(channel.sent) == 2
  assert calls == [first["task_id"], second["task_id"]]
  assert await _history_rows(first["task_id"]) == []
  assert [r.status for r in await _history_rows(second["task_id"])] == ["sent"]


@pytest.mark.anyio
async def test_cycle_drains_more_due_tasks_than_batch_limit(client: AsyncClient) -> None:
  _, headers = await create_user()
  when = datetime.now(timezone.utc) + timedelta(minutes=30)
  for i in range(3):
    await _armed_task(client, headers, f"Task {i}", when + timedelta(seconds=i))

  channel = _FakeChannel()
  async with SessionLocal() as db:
    report = await dispatch_due_notifications_once(
      db, channel=channel, now=when - timedelta(seconds=10), interval_seconds=60, limit=2
    )

  assert report.selected == 3
  assert report.sent == 3
  assert len(channel.sent) == 3
  assert all("Task " in text for _, text in channel.sent)


@pytest.mark.anyio
async def test_users_without_chat_or_disarmed_tasks_are_skipped(client: AsyncClient) -> None:
  _, no_chat = await create_user("Nochat", chat_id=None)
  _, headers = await create_user("Alice", chat_id="1")
  when = datetime.now(timezone.utc) + timedelta(minutes=30)
  await _armed_task(client, no_chat, "Nowhere to send", when)
  t = await _armed_task(client, headers, "Disarmed", when)
  await client.patch(f"/tasks/{t['task_id']}/notifications", json={"notifications_enabled": False}, headers=headers)

  channel = _FakeChannel()
  async with SessionLocal() as db:
    report = await dispatch_due_notifications_once(db, channel=channel, now=when - timedelta(seconds=10), interval_seconds=60)
  assert report.selected == 0
  assert channel.sent == []


@pytest.mark.anyio
async def test_rescheduled_task_fires_again(client: AsyncClient) -> None:
  _, headers = await create_user()
  when = datetime.now(timezone.utc) + timedelta(minutes=30)
  t = await _armed_task(client, headers, "Again", when)

  channel = _FakeChannel()
  async with SessionLocal() as db:
    await dispatch_due_notifications_once(db, channel=channel, now=when - timedelta(seconds=10), interval_seconds=60)

  new_when = when + timedelta(seconds=30)
  res = await client.put(f"/tasks/{t['task_id']}", json={"notification_time": _iso(new_when)}, headers=headers)
  assert res.status_code == 200, res.text

  async with SessionLocal() as db:
    report = await dispatch_due_notifications_once(db, channel=channel, now=new_when - timedelta(seconds=10), interval_seconds=60)
  assert report.sent == 1
  assert len(channel.sent) == 2


@pytest.mark.anyio
async def test_message_without_category_or_due_date() -> None:
  t = Task(title="Plain", description=None, category_id="gone", due_date=None)
  text = format_notification_message(t, None)
  assert "Plain" in text
  assert "not set" in text
  assert "No category" in text
  assert "Description" not in text


@pytest.mark.anyio
async def test_scheduler_runs_cycles_and_stops() -> None:
  calls: list[int] = []

  async def _cycle(db, *, channel, interval_seconds):
    calls.append(interval_seconds)
    return DispatchReport()

  scheduler = ReminderScheduler(
    session_factory=SessionLocal,
    channel=_FakeChannel(),
    interval_seconds=0.01,
    shutdown_timeout=1.0,
    cycle=_cycle,
  )
  scheduler.start()
  assert scheduler.running
  for _ in range(100):
    if len(calls) >= 2:
      break
    await asyncio.sleep(0.01)
  await scheduler.stop()

  assert not scheduler.running
  assert len(calls) >= 2
  n = len(calls)
  await asyncio.sleep(0.05)
  assert len(calls) == n


@pytest.mark.anyio
async def test_scheduler_survives_failing_cycle() -> None:
  calls = 0

  async def _cycle(db, *, channel, interval_seconds):
    nonlocal calls
    calls += 1
    raise RuntimeError("db down")

  scheduler = ReminderScheduler(session_factory=SessionLocal, channel=_FakeChannel(), interval_seconds=0.01, cycle=_cycle)
  assert await scheduler.run_once() is None
  scheduler.start()
  for _ in range(100):
    if calls >= 3:
      break
    await asyncio.sleep(0.01)
  await scheduler.stop()
  assert calls >= 3
  assert scheduler.cycles == calls


@pytest.mark.anyio
async def test_scheduler_stop_waits_for_cycle_in_flight() -> None:
  started = asyncio.Event()
  finished: list[bool] = []

  async def _slow_cycle(db, *, channel, interval_seconds):
    started.set()
    await asyncio.sleep(0.1)
    finished.append(True)
    return DispatchReport()

  scheduler = ReminderScheduler(
    session_factory=SessionLocal,
    channel=_FakeChannel(),
    interval_seconds=10,
    shutdown_timeout=2.0,
    cycle=_slow_cycle,
  )
  scheduler.start()
  await asyncio.wait_for(started.wait(), timeout=1.0)
  await scheduler.stop()
  assert finished == [True]
