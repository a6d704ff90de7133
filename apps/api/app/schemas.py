from __future__ import annotations

import re
from datetime import date, datetime, time, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic import field_validator


_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_HEX_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")

# Date-only due dates are pinned to midday so they land on the same calendar day in any timezone.
DUE_DATE_DEFAULT_TIME = time(12, 0)

TaskStatus = Literal["active", "completed"]


def _parse_dt_utc(value: object, *, date_only_time: time | None = None) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, date):
    dt = datetime.combine(value, date_only_time or time(0, 0))
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.combine(date.fromisoformat(s), date_only_time or time(0, 0))
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


def _parse_due_date(value: object) -> object:
  return _parse_dt_utc(value, date_only_time=DUE_DATE_DEFAULT_TIME)


def _check_color(value: str | None) -> str | None:
  if value is None:
    return None
  v = value.strip()
  if not _HEX_COLOR_RE.fullmatch(v):
    raise ValueError("color must be a hex string like #1A2B3C")
  return v.upper()


class TaskCreateIn(BaseModel):
  title: str = Field(min_length=1, max_length=100)
  description: str | None = None
  category_id: str | None = Field(default=None, max_length=64)
  due_date: datetime | None = None

  @field_validator("title")
  @classmethod
  def _title_not_blank(cls, v: str) -> str:
    v = v.strip()
    if not v:
      raise ValueError("title is required")
    return v

  @field_validator("due_date", mode="before")
  @classmethod
  def _due_date_to_utc(cls, v: object) -> object:
    return _parse_due_date(v)


class TaskUpdateIn(BaseModel):
  """Partial update: only fields present in the body are applied."""

  title: str | None = Field(default=None, min_length=1, max_length=100)
  description: str | None = None
  category_id: str | None = Field(default=None, max_length=64)
  due_date: datetime | None = None
  status: TaskStatus | None = None
  notifications_enabled: bool | None = None
  notification_time: datetime | None = None

  @field_validator("due_date", mode="before")
  @classmethod
  def _due_date_to_utc(cls, v: object) -> object:
    return _parse_due_date(v)

  @field_validator("notification_time", mode="before")
  @classmethod
  def _notification_time_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskStatusIn(BaseModel):
  status: TaskStatus


class TaskNotificationsIn(BaseModel):
  notifications_enabled: bool
  notification_time: datetime | None = None

  @field_validator("notification_time", mode="before")
  @classmethod
  def _notification_time_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskOrderItemIn(BaseModel):
  taskId: str
  order: int


class TaskOrderIn(BaseModel):
  orderData: list[TaskOrderItemIn]


class TaskCompactIn(BaseModel):
  status: TaskStatus = "active"


class TaskOut(BaseModel):
  task_id: str
  user_id: str
  title: str
  description: str | None
  category_id: str
  category_name: str | None = None
  category_color: str | None = None
  due_date: datetime | None
  status: TaskStatus
  order: int
  completed_at: datetime | None
  notifications_enabled: bool
  notification_time: datetime | None
  created_at: datetime
  updated_at: datetime


class TaskListOut(BaseModel):
  active: list[TaskOut]
  completed: list[TaskOut]


class ProductivityPointOut(BaseModel):
  date: str
  completed_count: int


class TaskSummaryOut(BaseModel):
  activeCount: int
  completedCount: int
  totalCount: int
  activeByCategory: dict[str, int]
  completedByCategory: dict[str, int]


class NotificationHistoryOut(BaseModel):
  id: str
  task_id: str
  status: Literal["sent", "failed"]
  error: str | None = None
  sent_at: datetime


class CategoryCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=15)
  color: str

  @field_validator("name")
  @classmethod
  def _name_not_blank(cls, v: str) -> str:
    v = v.strip()
    if not v:
      raise ValueError("name is required")
    return v

  @field_validator("color")
  @classmethod
  def _color_hex(cls, v: str) -> str:
    return _check_color(v)


class CategoryUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=15)
  color: str | None = None

  @field_validator("color")
  @classmethod
  def _color_hex(cls, v: str | None) -> str | None:
    return _check_color(v)


class CategoryOut(BaseModel):
  category_id: str
  name: str
  color: str
  is_default: bool
  created_at: datetime


class AuditEventOut(BaseModel):
  id: str
  eventType: str
  entityType: str
  entityId: str | None
  payload: dict[str, Any]
  createdAt: datetime


class SystemStatusSectionOut(BaseModel):
  key: str
  label: str
  state: Literal["green", "yellow", "red"]
  details: list[str] = []
  updatedAt: datetime


class SystemStatusOut(BaseModel):
  generatedAt: datetime
  version: str
  buildSha: str
  sections: list[SystemStatusSectionOut]
