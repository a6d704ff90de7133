from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

TASK_STATUSES = ("active", "completed")
HISTORY_STATUSES = ("sent", "failed")
DEFAULT_CATEGORY_ID = "other"


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def _new_id() -> str:
  return str(uuid.uuid4())


class UtcDateTime(TypeDecorator):
  """Timezone-aware datetime stored as UTC; naive values are taken as UTC."""

  impl = DateTime(timezone=True)
  cache_ok = True

  def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
    if value is None:
      return None
    if value.tzinfo is None:
      value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    if dialect.name == "sqlite":
      return value.replace(tzinfo=None)
    return value

  def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
    if value is None:
      return None
    if value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
  name: Mapped[str] = mapped_column(String, nullable=False)
  username: Mapped[str | None] = mapped_column(String, nullable=True)
  telegram_chat_id: Mapped[str | None] = mapped_column(String, nullable=True, unique=True, index=True)
  active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)


class ApiToken(Base):
  __tablename__ = "api_tokens"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  token_hash: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  token_hint: Mapped[str] = mapped_column(String, nullable=False)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)
  last_used_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
  revoked_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)


class Category(Base):
  __tablename__ = "categories"
  __table_args__ = (UniqueConstraint("user_id", "name", name="ux_categories_user_name"),)

  category_id: Mapped[str] = mapped_column(String(64), primary_key=True)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), primary_key=True)
  name: Mapped[str] = mapped_column(String(15), nullable=False)
  color: Mapped[str] = mapped_column(String(7), nullable=False)
  is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)


class Task(Base):
  __tablename__ = "tasks"
  __table_args__ = (Index("ix_tasks_user_status_order", "user_id", "status", "order"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  title: Mapped[str] = mapped_column(String(100), nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  category_id: Mapped[str] = mapped_column(String(64), nullable=False, default=DEFAULT_CATEGORY_ID)
  due_date: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
  status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
  order: Mapped[int] = mapped_column("order", Integer, nullable=False, default=0)
  completed_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
  notifications_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  notification_time: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True, index=True)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class NotificationHistory(Base):
  __tablename__ = "notification_history"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
  task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  status: Mapped[str] = mapped_column(String(16), nullable=False)
  error: Mapped[str | None] = mapped_column(Text, nullable=True)
  sent_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False, index=True)


class AuditEvent(Base):
  __tablename__ = "audit_events"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
  user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
  event_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
  payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
  created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False, index=True)
