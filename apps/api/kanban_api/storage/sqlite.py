from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine
from sqlalchemy.pool import StaticPool

from kanban_api import errors
from kanban_api.config import Settings
from kanban_api.storage.sql import SqlStorageAdapter


def _enable_foreign_keys(dbapi_conn, _record) -> None:
  cur = dbapi_conn.cursor()
  cur.execute("PRAGMA foreign_keys=ON")
  cur.close()


class SqliteStorageAdapter(SqlStorageAdapter):
  """Embedded-file engine (SQLite through aiosqlite)."""

  engine_name = "sqlite"

  @classmethod
  def from_settings(cls, settings: Settings, url: str) -> "SqliteStorageAdapter":
    database = make_url(url).database
    kwargs: dict = {"connect_args": {"timeout": float(settings.db_connect_timeout_seconds)}}
    if not database or database == ":memory:":
      # one shared connection, otherwise every checkout sees an empty database
      kwargs["poolclass"] = StaticPool
    else:
      Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)
    engine = create_async_engine(url, **kwargs)
    event.listen(engine.sync_engine, "connect", _enable_foreign_keys)
    return cls(engine)

  def classify_integrity_error(self, exc: IntegrityError) -> errors.KanbanError:
    msg = str(exc.orig).lower()
    if "unique constraint failed" in msg:
      return errors.ConflictError()
    if "foreign key constraint failed" in msg:
      return errors.DanglingReferenceError()
    if "check constraint failed" in msg or "not null constraint failed" in msg:
      return errors.ValidationError()
    return errors.StorageError()

  @asynccontextmanager
  async def migration_connection(self) -> AsyncIterator[AsyncConnection]:
    # table rebuilds during batch DDL must not trigger cascading deletes
    async with self.engine.connect() as conn:
      await conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
      await conn.commit()
      try:
        yield conn
      finally:
        await conn.rollback()
        await conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        await conn.commit()
