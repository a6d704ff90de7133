from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from time import monotonic
from typing import Any


@dataclass
class RequestSample:
  ts: datetime
  status_code: int
  latency_ms: float


class RuntimeMetrics:
  def __init__(self) -> None:
    self._started_monotonic = monotonic()
    self._started_at = datetime.now(timezone.utc)
    self._samples: deque[RequestSample] = deque()
    self._lock = Lock()
    self._reminder_cycles = 0
    self._reminders_sent = 0
    self._reminders_failed = 0
    self._last_cycle_at: datetime | None = None
    self._last_cycle: dict[str, int] = {}

  @property
  def started_at(self) -> datetime:
    return self._started_at

  def uptime_seconds(self) -> int:
    return max(0, int(monotonic() - self._started_monotonic))

  def observe_request(self, status_code: int, latency_ms: float) -> None:
    now = datetime.now(timezone.utc)
    with self._lock:
      self._samples.append(RequestSample(ts=now, status_code=status_code, latency_ms=latency_ms))
      cutoff = now - timedelta(hours=1)
      while self._samples and self._samples[0].ts < cutoff:
        self._samples.popleft()

  def observe_reminder_cycle(self, at: datetime, report: Any) -> None:
    with self._lock:
      self._reminder_cycles += 1
      self._reminders_sent += int(report.sent)
      self._reminders_failed += int(report.failed)
      self._last_cycle_at = at
      self._last_cycle = {
        "selected": int(report.selected),
        "sent": int(report.sent),
        "failed": int(report.failed),
        "skipped": int(report.skipped),
      }

  def snapshot(self) -> dict:
    with self._lock:
      samples = list(self._samples)
      reminders = {
        "cycles": self._reminder_cycles,
        "sent": self._reminders_sent,
        "failed": self._reminders_failed,
        "lastCycleAt": self._last_cycle_at,
        "lastCycle": dict(self._last_cycle),
      }

    total = len(samples)
    errors = sum(1 for s in samples if s.status_code >= 500)
    p95_ms = 0.0
    if samples:
      sorted_latencies = sorted(s.latency_ms for s in samples)
      idx = max(0, int(len(sorted_latencies) * 0.95) - 1)
      p95_ms = sorted_latencies[idx]

    return {
      "uptimeSeconds": self.uptime_seconds(),
      "startedAt": self._started_at,
      "requestCount1h": total,
      "errorCount1h": errors,
      "p95LatencyMs1h": round(p95_ms, 2),
      "reminders": reminders,
    }


runtime_metrics = RuntimeMetrics()
