from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

PLACEHOLDER_SECRETS = {"dev-secret-change-me", "replace_with_strong_random_secret"}


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "sqlite+aiosqlite:///./data/kanban.db"
  app_secret: str = "dev-secret-change-me"
  app_version: str = "v2026-10-19"
  build_sha: str = "dev"
  environment: str = "development"  # development | test | production

  session_ttl_hours: int = 24
  auto_approve_users: bool = False
  require_approval_for_login: bool = False
  min_password_length: int = 1

  db_connect_timeout_seconds: float = 10.0
  db_statement_timeout_seconds: float = 30.0
  db_pool_size: int = 10
  migrate_on_start: bool = True

  log_level: str = "INFO"

  cookie_secure: bool = False
  cookie_domain: str | None = None

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
  trusted_hosts: str = "localhost,127.0.0.1,0.0.0.0,api,web,testserver"

  def storage_engine(self) -> str:
    scheme = self.database_url.split(":", 1)[0].split("+", 1)[0].lower()
    if scheme == "sqlite":
      return "sqlite"
    if scheme in ("postgresql", "postgres"):
      return "postgresql"
    raise ValueError(f"Unsupported database_url scheme: {scheme!r}")

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def trusted_host_list(self) -> list[str]:
    return [h.strip() for h in self.trusted_hosts.split(",") if h.strip()]


settings = Settings()
