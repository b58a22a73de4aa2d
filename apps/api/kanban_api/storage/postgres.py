from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import create_async_engine

from kanban_api import errors
from kanban_api.config import Settings
from kanban_api.storage.sql import SqlStorageAdapter

_SQLSTATE_ERRORS = {
  "23505": errors.ConflictError,  # unique_violation
  "23503": errors.DanglingReferenceError,  # foreign_key_violation
  "23514": errors.ValidationError,  # check_violation
  "23502": errors.ValidationError,  # not_null_violation
}


class PostgresStorageAdapter(SqlStorageAdapter):
  """Client/server engine (PostgreSQL through asyncpg)."""

  engine_name = "postgresql"

  @classmethod
  def from_settings(cls, settings: Settings, url: str) -> "PostgresStorageAdapter":
    engine = create_async_engine(
      url,
      pool_size=max(1, int(settings.db_pool_size)),
      max_overflow=0,
      pool_pre_ping=True,
      pool_recycle=3600,
      pool_timeout=float(settings.db_connect_timeout_seconds),
      connect_args={
        "timeout": float(settings.db_connect_timeout_seconds),
        "command_timeout": float(settings.db_statement_timeout_seconds),
      },
    )
    return cls(engine)

  def classify_integrity_error(self, exc: IntegrityError) -> errors.KanbanError:
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    cls = _SQLSTATE_ERRORS.get(str(sqlstate or ""))
    if cls is not None:
      return cls()
    msg = str(exc.orig).lower()
    if "duplicate key" in msg:
      return errors.ConflictError()
    if "foreign key" in msg:
      return errors.DanglingReferenceError()
    return errors.StorageError()
