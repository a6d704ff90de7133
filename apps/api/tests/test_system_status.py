from __future__ import annotations

from datetime import datetime, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from app.metrics import RuntimeMetrics
from app.reminders.service import DispatchReport
from app.tasks import service as tasks_service
from conftest import create_task, create_user


@pytest.mark.anyio
async def test_health_and_version(client: AsyncClient) -> None:
  res = await client.get("/health")
  assert res.status_code == 200
  assert res.json() == {"ok": True}
  assert res.headers["x-content-type-options"] == "nosniff"

  v = (await client.get("/version")).json()
  assert set(v) == {"version", "buildSha"}


@pytest.mark.anyio
async def test_system_status_sections(client: AsyncClient) -> None:
  _, headers = await create_user()
  assert (await client.get("/system/status")).status_code == 401

  res = await client.get("/system/status", headers=headers)
  assert res.status_code == 200, res.text
  data = res.json()
  assert [s["key"] for s in data["sections"]] == ["api", "database", "reminders"]
  db_section = data["sections"][1]
  assert db_section["state"] == "green"


@pytest.mark.anyio
async def test_audit_lists_only_own_events(client: AsyncClient) -> None:
  _, alice = await create_user("Alice", chat_id="1")
  _, bob = await create_user("Bob", chat_id="2")
  await create_task(client, alice, "A")
  await create_task(client, bob, "B")

  events = (await client.get("/audit", params={"limit": 10}, headers=alice)).json()
  assert len(events) == 1
  assert events[0]["eventType"] == "task.created"
  assert events[0]["payload"]["title"] == "A"

  assert (await client.get("/audit", params={"limit": 0}, headers=alice)).status_code == 422


@pytest.mark.anyio
async def test_runtime_metrics_track_reminder_cycles() -> None:
  m = RuntimeMetrics()
  m.observe_request(200, 5.0)
  m.observe_request(500, 50.0)
  at = datetime(2026, 1, 1, tzinfo=timezone.utc)
  m.observe_reminder_cycle(at, DispatchReport(selected=3, sent=2, failed=1, skipped=0))
  snap = m.snapshot()
  assert snap["requestCount1h"] == 2
  assert snap["errorCount1h"] == 1
  assert snap["reminders"]["cycles"] == 1
  assert snap["reminders"]["sent"] == 2
  assert snap["reminders"]["failed"] == 1
  assert snap["reminders"]["lastCycleAt"] == at


@pytest.mark.anyio
async def test_storage_failure_maps_to_500(client: AsyncClient, monkeypatch) -> None:
  _, headers = await create_user()

  async def _broken_summary(db, *, user_id: str) -> dict:
    raise OperationalError("SELECT tasks", {}, Exception("database is locked"))

  monkeypatch.setattr(tasks_service, "summary", _broken_summary)
  res = await client.get("/tasks/stats/summary", headers=headers)
  assert res.status_code == 500
  assert res.json() == {"detail": "Storage error"}
