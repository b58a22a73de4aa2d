from __future__ import annotations

from sqlalchemy.engine import make_url

from kanban_api.config import Settings
from kanban_api.storage.base import StorageAdapter
from kanban_api.storage.postgres import PostgresStorageAdapter
from kanban_api.storage.sqlite import SqliteStorageAdapter

_ASYNC_DRIVERS = {"sqlite": "aiosqlite", "postgresql": "asyncpg"}


def async_database_url(settings: Settings) -> str:
  """The configured URL with the async driver for its engine filled in."""
  engine = settings.storage_engine()
  url = make_url(settings.database_url)
  return url.set(drivername=f"{engine}+{_ASYNC_DRIVERS[engine]}").render_as_string(hide_password=False)


def create_storage(settings: Settings) -> StorageAdapter:
  url = async_database_url(settings)
  if settings.storage_engine() == "sqlite":
    return SqliteStorageAdapter.from_settings(settings, url)
  return PostgresStorageAdapter.from_settings(settings, url)
