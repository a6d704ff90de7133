from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.deps import get_current_user, get_db
from app.models import AuditEvent, User
from app.schemas import AuditEventOut

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=list[AuditEventOut])
async def list_audit(
  limit: int = Query(default=200, ge=1, le=1000),
  entityId: str | None = None,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[AuditEventOut]:
  q = select(AuditEvent).where(AuditEvent.user_id == user.id).order_by(AuditEvent.created_at.desc()).limit(limit)
  if entityId:
    q = q.where(AuditEvent.entity_id == entityId)
  res = await db.execute(q)
  out = []
  for ev in res.scalars().all():
    out.append(
      AuditEventOut(
        id=ev.id,
        eventType=ev.event_type,
        entityType=ev.entity_type,
        entityId=ev.entity_id,
        payload=ev.payload or {},
        createdAt=ev.created_at,
      )
    )
  return out
