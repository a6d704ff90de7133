from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.audit import write_audit
from app.categories import service as categories
from app.deps import get_current_user, get_db
from app.models import Category, User
from app.schemas import CategoryCreateIn, CategoryOut, CategoryUpdateIn

router = APIRouter(prefix="/categories", tags=["categories"])


def _category_out(c: Category) -> CategoryOut:
  return CategoryOut(
    category_id=c.category_id,
    name=c.name,
    color=c.color,
    is_default=bool(c.is_default),
    created_at=c.created_at,
  )


@router.get("", response_model=list[CategoryOut])
async def list_categories(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[CategoryOut]:
  out = await categories.list_categories(db, user_id=user.id)
  await db.commit()
  return [_category_out(c) for c in out]


@router.post("/default", response_model=list[CategoryOut])
async def create_default_categories(
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[CategoryOut]:
  await categories.ensure_default_categories(db, user_id=user.id, restore=True)
  out = await categories.list_categories(db, user_id=user.id)
  await write_audit(
    db,
    event_type="category.defaults_ensured",
    entity_type="Category",
    entity_id=None,
    user_id=user.id,
    payload={"count": len(out)},
  )
  await db.commit()
  return [_category_out(c) for c in out]


@router.post("", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
async def create_category(
  payload: CategoryCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> CategoryOut:
  c = await categories.create_category(db, user_id=user.id, name=payload.name, color=payload.color)
  await write_audit(
    db,
    event_type="category.created",
    entity_type="Category",
    entity_id=c.category_id,
    user_id=user.id,
    payload={"name": c.name, "color": c.color},
  )
  await db.commit()
  return _category_out(c)


@router.put("/{category_id}", response_model=CategoryOut)
async def update_category(
  category_id: str,
  payload: CategoryUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> CategoryOut:
  c = await categories.update_category(
    db,
    user_id=user.id,
    category_id=category_id,
    name=payload.name.strip() if payload.name else None,
    color=payload.color,
  )
  await write_audit(
    db,
    event_type="category.updated",
    entity_type="Category",
    entity_id=c.category_id,
    user_id=user.id,
    payload=payload.model_dump(exclude_unset=True),
  )
  await db.commit()
  return _category_out(c)


@router.delete("/{category_id}")
async def delete_category(
  category_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  moved = await categories.delete_category(db, user_id=user.id, category_id=category_id)
  await write_audit(
    db,
    event_type="category.deleted",
    entity_type="Category",
    entity_id=category_id,
    user_id=user.id,
    payload={"movedTasks": moved},
  )
  await db.commit()
  return {"ok": True, "movedTasks": moved}
