"""
Storage port.

One logical interface over every entity the service persists. Two engine
realizations exist (embedded SQLite file, PostgreSQL server); exactly one is
selected per process by configuration. All values crossing this interface are
engine-neutral records (see ``records.py``).

Failure contract:
- ``ValidationError``: a constrained field (role, status, visibility...) is
  outside its allowed set; raised before any write is attempted.
- ``ConflictError``: a uniqueness constraint was violated.
- ``DanglingReferenceError``: a foreign key points at nothing.
- ``NotFoundError``: an update/reorder targeted a row that does not exist.
- ``StorageError``: anything else the engine reported (connectivity, timeout,
  syntax). Engine text is logged, never carried in the message.
"""

from __future__ import annotations

import abc
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from kanban_api import errors
from kanban_api.storage.records import (
  BoardRecord,
  ColumnRecord,
  MemberRecord,
  ProjectRecord,
  SessionRecord,
  TaskRecord,
  UserRecord,
)


def check_choice(field: str, value: Any, allowed: Iterable[str]) -> None:
  allowed = tuple(allowed)
  if value not in allowed:
    raise errors.ValidationError(f"{field} must be one of: {', '.join(allowed)}")


class StorageAdapter(abc.ABC):
  engine_name: str = ""

  @property
  @abc.abstractmethod
  def engine(self) -> AsyncEngine: ...

  @abc.abstractmethod
  def migration_connection(self) -> AbstractAsyncContextManager[AsyncConnection]:
    """Connection prepared for DDL (e.g. FK enforcement relaxed on SQLite)."""

  @abc.abstractmethod
  async def ping(self) -> bool: ...

  @abc.abstractmethod
  async def dispose(self) -> None: ...

  # users

  @abc.abstractmethod
  async def create_user(
    self,
    *,
    email: str,
    name: str,
    password_hash: str,
    role: str = "user",
    approval_status: str = "pending",
    avatar_url: str | None = None,
    notification_prefs: dict[str, Any] | None = None,
  ) -> UserRecord: ...

  @abc.abstractmethod
  async def get_user(self, user_id: str) -> UserRecord | None: ...

  @abc.abstractmethod
  async def get_user_by_email(self, email: str) -> UserRecord | None: ...

  @abc.abstractmethod
  async def list_users(self, *, include_deleted: bool = False) -> list[UserRecord]: ...

  @abc.abstractmethod
  async def update_user(self, user_id: str, **fields: Any) -> UserRecord: ...

  @abc.abstractmethod
  async def soft_delete_user(self, user_id: str) -> UserRecord: ...

  # sessions

  @abc.abstractmethod
  async def create_session(
    self,
    *,
    user_id: str,
    token_hash: str,
    expires_at: datetime,
    created_ip: str | None = None,
    user_agent: str | None = None,
  ) -> SessionRecord: ...

  @abc.abstractmethod
  async def replace_user_sessions(
    self,
    *,
    user_id: str,
    token_hash: str,
    expires_at: datetime,
    created_ip: str | None = None,
    user_agent: str | None = None,
  ) -> SessionRecord:
    """Delete every session of the user and insert the new one atomically."""

  @abc.abstractmethod
  async def get_session_by_token_hash(self, token_hash: str) -> SessionRecord | None: ...

  @abc.abstractmethod
  async def delete_session_by_token_hash(self, token_hash: str) -> bool: ...

  @abc.abstractmethod
  async def delete_user_sessions(self, user_id: str, *, keep_token_hash: str | None = None) -> int: ...

  # projects and membership

  @abc.abstractmethod
  async def create_project(
    self, *, name: str, owner_id: str, description: str = "", color: str | None = None
  ) -> ProjectRecord: ...

  @abc.abstractmethod
  async def get_project(self, project_id: str) -> ProjectRecord | None: ...

  @abc.abstractmethod
  async def list_projects_for_user(self, user_id: str) -> list[ProjectRecord]: ...

  @abc.abstractmethod
  async def update_project(self, project_id: str, **fields: Any) -> ProjectRecord: ...

  @abc.abstractmethod
  async def delete_project(self, project_id: str) -> bool: ...

  @abc.abstractmethod
  async def count_project_boards(self, project_id: str) -> int: ...

  @abc.abstractmethod
  async def add_member(self, *, project_id: str, user_id: str, role: str = "member") -> MemberRecord: ...

  @abc.abstractmethod
  async def get_member(self, project_id: str, user_id: str) -> MemberRecord | None: ...

  @abc.abstractmethod
  async def list_members(self, project_id: str) -> list[MemberRecord]: ...

  @abc.abstractmethod
  async def update_member_role(self, project_id: str, user_id: str, role: str) -> MemberRecord: ...

  @abc.abstractmethod
  async def remove_member(self, project_id: str, user_id: str) -> bool: ...

  @abc.abstractmethod
  async def is_project_owner(self, project_id: str, user_id: str) -> bool: ...

  @abc.abstractmethod
  async def is_project_member(self, project_id: str, user_id: str) -> bool: ...

  # boards

  @abc.abstractmethod
  async def create_board(
    self,
    *,
    project_id: str,
    name: str,
    description: str = "",
    visibility: str = "private",
    color: str | None = None,
    settings: dict[str, Any] | None = None,
    created_by: str | None = None,
  ) -> BoardRecord: ...

  @abc.abstractmethod
  async def get_board(self, board_id: str) -> BoardRecord | None: ...

  @abc.abstractmethod
  async def list_boards(self, project_id: str) -> list[BoardRecord]: ...

  @abc.abstractmethod
  async def list_public_boards(self) -> list[BoardRecord]: ...

  @abc.abstractmethod
  async def update_board(self, board_id: str, **fields: Any) -> BoardRecord: ...

  @abc.abstractmethod
  async def delete_board(self, board_id: str) -> bool: ...

  # columns

  @abc.abstractmethod
  async def create_column(
    self,
    *,
    board_id: str,
    title: str,
    color: str | None = None,
    settings: dict[str, Any] | None = None,
    created_by: str | None = None,
  ) -> ColumnRecord:
    """Append after the board's current last column."""

  @abc.abstractmethod
  async def get_column(self, column_id: str) -> ColumnRecord | None: ...

  @abc.abstractmethod
  async def list_columns(self, board_id: str) -> list[ColumnRecord]: ...

  @abc.abstractmethod
  async def update_column(self, column_id: str, **fields: Any) -> ColumnRecord: ...

  @abc.abstractmethod
  async def delete_column(self, column_id: str) -> bool: ...

  @abc.abstractmethod
  async def reorder_columns(self, board_id: str, column_ids: list[str]) -> list[ColumnRecord]: ...

  # tasks

  @abc.abstractmethod
  async def create_task(self, *, title: str, column_id: str, **fields: Any) -> TaskRecord:
    """Board and project ids are derived from the column; mismatching ones are rejected."""

  @abc.abstractmethod
  async def get_task(self, task_id: str) -> TaskRecord | None: ...

  @abc.abstractmethod
  async def list_tasks(
    self,
    *,
    project_id: str | None = None,
    board_id: str | None = None,
    column_id: str | None = None,
    parent_task_id: str | None = None,
  ) -> list[TaskRecord]: ...

  @abc.abstractmethod
  async def update_task(self, task_id: str, **fields: Any) -> TaskRecord: ...

  @abc.abstractmethod
  async def delete_task(self, task_id: str) -> bool: ...
