"""
Engine-neutral value shapes returned by every storage adapter.

Ids are canonical UUID strings, timestamps are aware UTC datetimes, JSON
fields are already decoded. Callers never see ORM instances.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from kanban_api.storage.types import as_utc


@dataclass(frozen=True)
class UserRecord:
  id: str
  email: str
  name: str
  password_hash: str
  role: str
  approval_status: str
  avatar_url: str | None
  notification_prefs: dict[str, Any]
  last_login_at: datetime | None
  deleted_at: datetime | None
  created_at: datetime
  updated_at: datetime

  @property
  def is_deleted(self) -> bool:
    return self.deleted_at is not None

  @classmethod
  def from_row(cls, u) -> "UserRecord":
    return cls(
      id=u.id,
      email=u.email,
      name=u.name,
      password_hash=u.password_hash,
      role=u.role,
      approval_status=u.approval_status,
      avatar_url=u.avatar_url,
      notification_prefs=dict(u.notification_prefs or {}),
      last_login_at=as_utc(u.last_login_at),
      deleted_at=as_utc(u.deleted_at),
      created_at=as_utc(u.created_at),
      updated_at=as_utc(u.updated_at),
    )


@dataclass(frozen=True)
class SessionRecord:
  id: str
  user_id: str
  token_hash: str
  created_at: datetime
  expires_at: datetime
  created_ip: str | None = None
  user_agent: str | None = None

  @classmethod
  def from_row(cls, s) -> "SessionRecord":
    return cls(
      id=s.id,
      user_id=s.user_id,
      token_hash=s.token_hash,
      created_at=as_utc(s.created_at),
      expires_at=as_utc(s.expires_at),
      created_ip=s.created_ip,
      user_agent=s.user_agent,
    )


@dataclass(frozen=True)
class ProjectRecord:
  id: str
  name: str
  description: str
  color: str | None
  owner_id: str
  is_active: bool
  created_at: datetime
  updated_at: datetime

  @classmethod
  def from_row(cls, p) -> "ProjectRecord":
    return cls(
      id=p.id,
      name=p.name,
      description=p.description or "",
      color=p.color,
      owner_id=p.owner_id,
      is_active=bool(p.is_active),
      created_at=as_utc(p.created_at),
      updated_at=as_utc(p.updated_at),
    )


@dataclass(frozen=True)
class MemberRecord:
  project_id: str
  user_id: str
  role: str
  joined_at: datetime
  email: str | None = None
  name: str | None = None

  @classmethod
  def from_row(cls, m, user=None) -> "MemberRecord":
    return cls(
      project_id=m.project_id,
      user_id=m.user_id,
      role=m.role,
      joined_at=as_utc(m.joined_at),
      email=user.email if user is not None else None,
      name=user.name if user is not None else None,
    )


@dataclass(frozen=True)
class BoardRecord:
  id: str
  name: str
  description: str
  project_id: str
  visibility: str
  color: str | None
  settings: dict[str, Any]
  created_by: str | None
  created_at: datetime
  updated_at: datetime

  @classmethod
  def from_row(cls, b) -> "BoardRecord":
    return cls(
      id=b.id,
      name=b.name,
      description=b.description or "",
      project_id=b.project_id,
      visibility=b.visibility,
      color=b.color,
      settings=dict(b.settings or {}),
      created_by=b.created_by,
      created_at=as_utc(b.created_at),
      updated_at=as_utc(b.updated_at),
    )


@dataclass(frozen=True)
class ColumnRecord:
  id: str
  title: str
  board_id: str
  position: int
  color: str | None
  settings: dict[str, Any]
  created_by: str | None
  created_at: datetime
  updated_at: datetime

  @classmethod
  def from_row(cls, c) -> "ColumnRecord":
    return cls(
      id=c.id,
      title=c.title,
      board_id=c.board_id,
      position=int(c.position),
      color=c.color,
      settings=dict(c.settings or {}),
      created_by=c.created_by,
      created_at=as_utc(c.created_at),
      updated_at=as_utc(c.updated_at),
    )


@dataclass(frozen=True)
class TaskRecord:
  id: str
  title: str
  description: str
  column_id: str
  board_id: str
  project_id: str
  status: str
  priority: str
  position: int
  reporter_id: str | None
  parent_task_id: str | None
  due_date: datetime | None
  estimated_hours: float | None
  actual_hours: float | None
  created_by: str | None
  created_at: datetime
  updated_at: datetime
  assignee_ids: list[str] = field(default_factory=list)
  tags: list[str] = field(default_factory=list)
  settings: dict[str, Any] = field(default_factory=dict)

  @classmethod
  def from_row(cls, t) -> "TaskRecord":
    return cls(
      id=t.id,
      title=t.title,
      description=t.description or "",
      column_id=t.column_id,
      board_id=t.board_id,
      project_id=t.project_id,
      status=t.status,
      priority=t.priority,
      position=int(t.position),
      reporter_id=t.reporter_id,
      parent_task_id=t.parent_task_id,
      due_date=as_utc(t.due_date),
      estimated_hours=t.estimated_hours,
      actual_hours=t.actual_hours,
      created_by=t.created_by,
      created_at=as_utc(t.created_at),
      updated_at=as_utc(t.updated_at),
      assignee_ids=[str(x) for x in (t.assignee_ids or [])],
      tags=[str(x) for x in (t.tags or [])],
      settings=dict(t.settings or {}),
    )
