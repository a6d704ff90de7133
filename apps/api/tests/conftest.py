from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{Path(tempfile.gettempdir()) / 'taskbot_test.db'}")
os.environ.setdefault("REMINDER_ENABLED", "false")

from app.config import settings
from app.db import SessionLocal, engine
from app.main import app
from app.models import ApiToken, Base, User
from app.security import api_token_hash, api_token_hint, api_token_new


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


async def _reset_db() -> None:
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.drop_all)
    await conn.run_sync(Base.metadata.create_all)
  await engine.dispose()


@pytest.fixture(autouse=True)
async def _clean_between_tests() -> None:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  if "test" not in db_name:
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database (e.g. taskbot_test)."
    )
  await _reset_db()
  yield
  await engine.dispose()


@pytest.fixture
async def client() -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


async def create_user(name: str = "Alice", *, chat_id: str | None = "1001", active: bool = True) -> tuple[str, dict[str, str]]:
  """Insert a user with a fresh API token. Returns (user_id, auth headers)."""
  token = api_token_new()
  async with SessionLocal() as db:
    u = User(name=name, username=name.lower(), telegram_chat_id=chat_id, active=active)
    db.add(u)
    await db.flush()
    db.add(ApiToken(user_id=u.id, name="test", token_hash=api_token_hash(token), token_hint=api_token_hint(token)))
    await db.commit()
    return u.id, {"Authorization": f"Bearer {token}"}


async def create_task(client: AsyncClient, headers: dict[str, str], title: str, **fields) -> dict:
  res = await client.post("/tasks", json={"title": title, **fields}, headers=headers)
  assert res.status_code == 201, res.text
  return res.json()
