from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from app.config import settings


def _make_engine(url: str) -> AsyncEngine:
  kwargs: dict = {"echo": settings.database_echo}
  if not url.startswith("sqlite"):
    kwargs["pool_pre_ping"] = True
  return create_async_engine(url, **kwargs)


engine = _make_engine(settings.database_url)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)
