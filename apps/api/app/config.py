from __future__ import annotations

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://flowboard:flowboard@db:5432/flowboard"
  app_secret: str = "dev-secret-change-me"
  app_version: str = "v2026-10-17+auto-organize"
  build_sha: str = "dev"
  api_docs_enabled: bool = True

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000,http://0.0.0.0:3000"
  cors_origin_regex: str = r"^http://(localhost|127\.0\.0\.1|0\.0\.0\.0):3000$"
  trusted_hosts: str = "localhost,127.0.0.1,0.0.0.0,api,web,testserver"

  ai_provider: str = "local"  # local | openai
  openai_api_key: str | None = None
  openai_base_url: str = "https://api.openai.com/v1"
  openai_model: str = "gpt-4o-mini"
  ai_timeout_seconds: float = 60.0

  organize_timezone: str = "Asia/Tokyo"
  organize_completion_column: str = "done"
  organize_min_confidence: int = 60
  organize_max_suggestions: int = 20

  broadcast_queue_size: int = 100

  @field_validator("organize_timezone")
  @classmethod
  def _known_timezone(cls, v: str) -> str:
    try:
      ZoneInfo(v)
    except (ZoneInfoNotFoundError, ValueError) as exc:
      raise ValueError(f"unknown timezone: {v}") from exc
    return v

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def trusted_host_list(self) -> list[str]:
    return [h.strip() for h in self.trusted_hosts.split(",") if h.strip()]


settings = Settings()
