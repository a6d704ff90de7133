from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import select

from app.categories.service import ensure_default_categories
from app.db import SessionLocal
from app.models import ApiToken, User
from app.security import api_token_hash, api_token_hint, api_token_new
from app.tasks.service import create_task


def _env_flag(key: str) -> bool:
  return os.getenv(key, "").strip().lower() in ("1", "true", "yes", "y")


async def seed() -> None:
  async with SessionLocal() as db:
    username = (os.getenv("SEED_USERNAME") or "owner").strip()
    chat_id = (os.getenv("SEED_TELEGRAM_CHAT_ID") or "").strip() or None
    boot_lines: list[str] = []

    res = await db.execute(select(User).where(User.username == username))
    user = res.scalar_one_or_none()
    if not user:
      user = User(name=username.title(), username=username, telegram_chat_id=chat_id, active=True)
      db.add(user)
      await db.flush()
    elif chat_id and user.telegram_chat_id != chat_id:
      user.telegram_chat_id = chat_id

    await ensure_default_categories(db, user_id=user.id)

    tres = await db.execute(select(ApiToken.id).where(ApiToken.user_id == user.id, ApiToken.revoked_at.is_(None)))
    if tres.first() is None:
      token = api_token_new()
      db.add(ApiToken(user_id=user.id, name="seed", token_hash=api_token_hash(token), token_hint=api_token_hint(token)))
      boot_lines.append(f"{username} token={token}")

    if _env_flag("SEED_DEMO_TASKS"):
      now = datetime.now(timezone.utc)
      demo = [
        ("Buy groceries", "shopping", now + timedelta(days=1)),
        ("Prepare weekly report", "work", now + timedelta(days=3)),
        ("Call mom", "personal", None),
      ]
      for title, category_id, due in demo:
        await create_task(db, user_id=user.id, title=title, category_id=category_id, due_date=due)

    await db.commit()
    if boot_lines:
      out_dir = Path(os.getenv("BOOTSTRAP_CREDENTIALS_DIR", "data"))
      out_dir.mkdir(parents=True, exist_ok=True)
      out_file = out_dir / "bootstrap_credentials.txt"
      stamp = datetime.now(timezone.utc).isoformat()
      out_file.write_text(f"[{stamp}]\n" + "\n".join(boot_lines) + "\n", encoding="utf-8")
      print("Taskbot seed credentials created:")
      for ln in boot_lines:
        print(f"  {ln}")
      print(f"Saved to {out_file}")


def main() -> None:
  asyncio.run(seed())


if __name__ == "__main__":
  main()
