from __future__ import annotations

import secrets

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ConflictError, NotFoundError, ValidationError
from app.models import DEFAULT_CATEGORY_ID, Category, Task

# (category_id, name, color, reserved)
STARTER_CATEGORIES: list[tuple[str, str, str, bool]] = [
  (DEFAULT_CATEGORY_ID, "Other", "#607D8B", True),
  ("work", "Work", "#FF5252", False),
  ("personal", "Personal", "#69F0AE", False),
  ("shopping", "Shopping", "#448AFF", False),
]


def _new_category_id() -> str:
  return f"cat_{secrets.token_hex(6)}"


async def ensure_default_categories(db: AsyncSession, *, user_id: str, restore: bool = False) -> list[Category]:
  """
  Make sure the user owns the reserved default category. Idempotent; does not commit.

  The other starter categories are seeded only for a user with no categories
  yet, or when ``restore`` is set, so deleting one of them sticks.
  """
  res = await db.execute(select(Category).where(Category.user_id == user_id))
  existing = {c.category_id: c for c in res.scalars().all()}
  seed_all = restore or not existing
  names = {c.name.lower() for c in existing.values()}
  for category_id, name, color, reserved in STARTER_CATEGORIES:
    if category_id in existing or not (reserved or seed_all):
      continue
    if name.lower() in names and not reserved:
      continue
    if name.lower() in names:
      # The user already owns a custom category with the reserved name.
      name = f"{name} ({category_id})"[:15]
    c = Category(category_id=category_id, user_id=user_id, name=name, color=color, is_default=reserved)
    db.add(c)
    existing[category_id] = c
    names.add(name.lower())
  await db.flush()
  return list(existing.values())


async def list_categories(db: AsyncSession, *, user_id: str) -> list[Category]:
  await ensure_default_categories(db, user_id=user_id)
  res = await db.execute(select(Category).where(Category.user_id == user_id).order_by(Category.created_at.asc()))
  return list(res.scalars().all())


async def get_category(db: AsyncSession, *, user_id: str, category_id: str) -> Category:
  res = await db.execute(select(Category).where(Category.user_id == user_id, Category.category_id == category_id))
  c = res.scalar_one_or_none()
  if not c:
    raise NotFoundError("Category not found")
  return c


async def _ensure_name_free(db: AsyncSession, *, user_id: str, name: str, exclude_id: str | None = None) -> None:
  q = select(Category.category_id).where(Category.user_id == user_id, func.lower(Category.name) == name.lower())
  if exclude_id:
    q = q.where(Category.category_id != exclude_id)
  res = await db.execute(q)
  if res.first() is not None:
    raise ValidationError("A category with this name already exists")


async def create_category(db: AsyncSession, *, user_id: str, name: str, color: str) -> Category:
  await ensure_default_categories(db, user_id=user_id)
  await _ensure_name_free(db, user_id=user_id, name=name)
  c = Category(category_id=_new_category_id(), user_id=user_id, name=name, color=color, is_default=False)
  db.add(c)
  await db.flush()
  return c


async def update_category(
  db: AsyncSession,
  *,
  user_id: str,
  category_id: str,
  name: str | None,
  color: str | None,
) -> Category:
  if category_id == DEFAULT_CATEGORY_ID:
    raise ConflictError("The default category cannot be edited")
  c = await get_category(db, user_id=user_id, category_id=category_id)
  if c.is_default:
    raise ConflictError("The default category cannot be edited")
  if name is not None and name != c.name:
    await _ensure_name_free(db, user_id=user_id, name=name, exclude_id=c.category_id)
    c.name = name
  if color is not None:
    c.color = color
  await db.flush()
  return c


async def delete_category(db: AsyncSession, *, user_id: str, category_id: str) -> int:
  """Delete a category and move its tasks to the default one. Returns the number of tasks moved."""
  if category_id == DEFAULT_CATEGORY_ID:
    raise ConflictError("The default category cannot be deleted")
  c = await get_category(db, user_id=user_id, category_id=category_id)
  if c.is_default:
    raise ConflictError("The default category cannot be deleted")
  await ensure_default_categories(db, user_id=user_id)
  moved = await db.execute(
    update(Task)
    .where(Task.user_id == user_id, Task.category_id == category_id)
    .values(category_id=DEFAULT_CATEGORY_ID)
  )
  await db.execute(delete(Category).where(Category.user_id == user_id, Category.category_id == category_id))
  return int(moved.rowcount or 0)


async def category_lookup(db: AsyncSession, *, user_id: str) -> dict[str, Category]:
  res = await db.execute(select(Category).where(Category.user_id == user_id))
  return {c.category_id: c for c in res.scalars().all()}
