from __future__ import annotations

import logging
from typing import Protocol

import httpx

from app.config import Settings, settings
from app.errors import DeliveryError

logger = logging.getLogger(__name__)


class NotificationChannel(Protocol):
  async def send(self, chat_id: str, text: str) -> None: ...


class LogChannel:
  """Writes messages to the log instead of delivering them. Used when no bot token is configured."""

  async def send(self, chat_id: str, text: str) -> None:
    logger.info("notification for chat %s:\n%s", chat_id, text)


class TelegramChannel:
  def __init__(self, *, token: str, api_base: str = "https://api.telegram.org", timeout: float = 15.0) -> None:
    if not token:
      raise ValueError("Telegram bot token is required")
    self._url = f"{api_base.rstrip('/')}/bot{token}/sendMessage"
    self._timeout = timeout

  async def send(self, chat_id: str, text: str) -> None:
    payload = {"chat_id": chat_id, "text": text, "parse_mode": "HTML", "disable_web_page_preview": True}
    try:
      async with httpx.AsyncClient(timeout=self._timeout) as client:
        r = await client.post(self._url, json=payload)
    except httpx.HTTPError as e:
      raise DeliveryError(f"Telegram request failed: {e.__class__.__name__}") from e

    if r.status_code >= 400:
      raise DeliveryError(f"Telegram rejected message: {_describe(r)}", status_code=r.status_code)
    try:
      data = r.json()
    except ValueError as e:
      raise DeliveryError("Telegram returned a non-JSON response", status_code=r.status_code) from e
    if not data.get("ok", False):
      raise DeliveryError(f"Telegram rejected message: {data.get('description') or 'unknown error'}", status_code=r.status_code)


def _describe(r: httpx.Response) -> str:
  try:
    data = r.json()
    if isinstance(data, dict) and data.get("description"):
      return f"{r.status_code} {data['description']}"
  except ValueError:
    pass
  return str(r.status_code)


def channel_for(cfg: Settings = settings) -> NotificationChannel:
  token = (cfg.telegram_bot_token or "").strip()
  if token:
    return TelegramChannel(token=token, api_base=cfg.telegram_api_base, timeout=cfg.telegram_timeout_seconds)
  return LogChannel()
