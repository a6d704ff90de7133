from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://taskbot:taskbot@db:5432/taskbot"
  database_echo: bool = False
  app_secret: str = "dev-secret-change-me"
  app_version: str = "v2026-10-19"
  build_sha: str = "dev"
  api_docs_enabled: bool = True

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
  cors_origin_regex: str | None = None
  trusted_hosts: str = "localhost,127.0.0.1,0.0.0.0,api,test"

  log_level: str = "INFO"

  telegram_bot_token: str | None = None
  telegram_api_base: str = "https://api.telegram.org"
  telegram_timeout_seconds: float = 15.0

  reminder_enabled: bool = True
  reminder_poll_interval_seconds: int = 60
  reminder_batch_limit: int = 200
  reminder_shutdown_timeout_seconds: float = 30.0

  productivity_max_days: int = 366

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def trusted_host_list(self) -> list[str]:
    return [h.strip() for h in self.trusted_hosts.split(",") if h.strip()]


settings = Settings()
