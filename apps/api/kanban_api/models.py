from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, CheckConstraint, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from kanban_api.storage.types import EntityId, JsonBlob, new_id

USER_ROLES = ("admin", "manager", "user")
APPROVAL_STATUSES = ("pending", "approved", "rejected")
MEMBER_ROLES = ("owner", "admin", "member")
BOARD_VISIBILITIES = ("private", "public")
TASK_STATUSES = ("todo", "in_progress", "done", "archived")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def _in(column: str, values: tuple[str, ...]) -> str:
  return f"{column} IN ({', '.join(repr(v) for v in values)})"


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"
  __table_args__ = (
    CheckConstraint(_in("role", USER_ROLES), name="ck_users_role"),
    CheckConstraint(_in("approval_status", APPROVAL_STATUSES), name="ck_users_approval_status"),
    Index("ux_users_email", "email", unique=True),
  )

  id: Mapped[str] = mapped_column(EntityId(), primary_key=True, default=new_id)
  email: Mapped[str] = mapped_column(String(320), nullable=False)
  name: Mapped[str] = mapped_column(String(120), nullable=False)
  password_hash: Mapped[str] = mapped_column(String, nullable=False)
  role: Mapped[str] = mapped_column(String(16), nullable=False, default="user")
  approval_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
  avatar_url: Mapped[str | None] = mapped_column(String, nullable=True)
  notification_prefs: Mapped[dict[str, Any]] = mapped_column(JsonBlob(dict), nullable=True, default=dict)
  last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Session(Base):
  __tablename__ = "sessions"
  __table_args__ = (
    Index("ux_sessions_token_hash", "token_hash", unique=True),
    Index("ix_sessions_user_id", "user_id"),
  )

  id: Mapped[str] = mapped_column(EntityId(), primary_key=True, default=new_id)
  user_id: Mapped[str] = mapped_column(EntityId(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
  token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
  created_ip: Mapped[str | None] = mapped_column(String, nullable=True)
  user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Project(Base):
  __tablename__ = "projects"
  __table_args__ = (Index("ix_projects_owner_id", "owner_id"),)

  id: Mapped[str] = mapped_column(EntityId(), primary_key=True, default=new_id)
  name: Mapped[str] = mapped_column(String(200), nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  color: Mapped[str | None] = mapped_column(String(32), nullable=True)
  owner_id: Mapped[str] = mapped_column(EntityId(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
  is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class ProjectMember(Base):
  __tablename__ = "project_members"
  __table_args__ = (
    CheckConstraint(_in("role", MEMBER_ROLES), name="ck_project_members_role"),
    Index("ix_project_members_user_id", "user_id"),
  )

  project_id: Mapped[str] = mapped_column(EntityId(), ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True)
  user_id: Mapped[str] = mapped_column(EntityId(), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
  role: Mapped[str] = mapped_column(String(16), nullable=False, default="member")
  joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Board(Base):
  __tablename__ = "boards"
  __table_args__ = (
    CheckConstraint(_in("visibility", BOARD_VISIBILITIES), name="ck_boards_visibility"),
    Index("ix_boards_project_id", "project_id"),
  )

  id: Mapped[str] = mapped_column(EntityId(), primary_key=True, default=new_id)
  name: Mapped[str] = mapped_column(String(200), nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  project_id: Mapped[str] = mapped_column(EntityId(), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
  visibility: Mapped[str] = mapped_column(String(16), nullable=False, default="private")
  color: Mapped[str | None] = mapped_column(String(32), nullable=True)
  settings: Mapped[dict[str, Any]] = mapped_column(JsonBlob(dict), nullable=True, default=dict)
  created_by: Mapped[str | None] = mapped_column(EntityId(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class BoardColumn(Base):
  __tablename__ = "columns"
  __table_args__ = (
    CheckConstraint("position >= 0", name="ck_columns_position"),
    Index("ix_columns_board_position", "board_id", "position"),
  )

  id: Mapped[str] = mapped_column(EntityId(), primary_key=True, default=new_id)
  title: Mapped[str] = mapped_column(String(200), nullable=False)
  board_id: Mapped[str] = mapped_column(EntityId(), ForeignKey("boards.id", ondelete="CASCADE"), nullable=False)
  position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  color: Mapped[str | None] = mapped_column(String(32), nullable=True)
  settings: Mapped[dict[str, Any]] = mapped_column(JsonBlob(dict), nullable=True, default=dict)
  created_by: Mapped[str | None] = mapped_column(EntityId(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Task(Base):
  __tablename__ = "tasks"
  __table_args__ = (
    CheckConstraint(_in("status", TASK_STATUSES), name="ck_tasks_status"),
    CheckConstraint(_in("priority", TASK_PRIORITIES), name="ck_tasks_priority"),
    Index("ix_tasks_column_position", "column_id", "position"),
    Index("ix_tasks_board_id", "board_id"),
    Index("ix_tasks_project_id", "project_id"),
    Index("ix_tasks_parent_task_id", "parent_task_id"),
  )

  id: Mapped[str] = mapped_column(EntityId(), primary_key=True, default=new_id)
  title: Mapped[str] = mapped_column(String(500), nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  column_id: Mapped[str] = mapped_column(EntityId(), ForeignKey("columns.id", ondelete="CASCADE"), nullable=False)
  board_id: Mapped[str] = mapped_column(EntityId(), ForeignKey("boards.id", ondelete="CASCADE"), nullable=False)
  project_id: Mapped[str] = mapped_column(EntityId(), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
  status: Mapped[str] = mapped_column(String(16), nullable=False, default="todo")
  priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
  position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  assignee_ids: Mapped[list[str]] = mapped_column(JsonBlob(list), nullable=True, default=list)
  reporter_id: Mapped[str | None] = mapped_column(EntityId(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
  parent_task_id: Mapped[str | None] = mapped_column(EntityId(), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True)
  due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  estimated_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
  actual_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
  tags: Mapped[list[str]] = mapped_column(JsonBlob(list), nullable=True, default=list)
  settings: Mapped[dict[str, Any]] = mapped_column(JsonBlob(dict), nullable=True, default=dict)
  created_by: Mapped[str | None] = mapped_column(EntityId(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
