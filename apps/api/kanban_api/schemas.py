from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic import field_validator

from kanban_api.storage.records import (
  BoardRecord,
  ColumnRecord,
  MemberRecord,
  ProjectRecord,
  TaskRecord,
  UserRecord,
)

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


def envelope(data: Any) -> dict:
  if isinstance(data, BaseModel):
    data = data.model_dump(mode="json")
  elif isinstance(data, list):
    data = [d.model_dump(mode="json") if isinstance(d, BaseModel) else d for d in data]
  return {"success": True, "data": data}


def error_envelope(message: str, code: str) -> dict:
  return {"success": False, "error": message, "code": code}


def to_fields(payload: BaseModel, mapping: dict[str, str], nullable: set[str] | frozenset[str] = frozenset()) -> dict[str, Any]:
  """
  Only the keys the caller actually sent, renamed to storage field names.

  An explicit null clears the fields listed in ``nullable`` and is ignored for
  the rest.
  """
  sent = payload.model_dump(exclude_unset=True)
  return {mapping.get(k, k): v for k, v in sent.items() if v is not None or k in nullable}


# users / auth


class UserOut(BaseModel):
  id: str
  email: str
  name: str
  role: str
  approvalStatus: str
  avatarUrl: str | None = None
  notificationPrefs: dict[str, Any] = {}
  lastLoginAt: datetime | None = None
  createdAt: datetime
  updatedAt: datetime

  @classmethod
  def of(cls, u: UserRecord) -> "UserOut":
    return cls(
      id=u.id,
      email=u.email,
      name=u.name,
      role=u.role,
      approvalStatus=u.approval_status,
      avatarUrl=u.avatar_url,
      notificationPrefs=u.notification_prefs,
      lastLoginAt=u.last_login_at,
      createdAt=u.created_at,
      updatedAt=u.updated_at,
    )


class RegisterIn(BaseModel):
  email: str = Field(min_length=3, max_length=320)
  password: str = Field(max_length=200)
  name: str = Field(min_length=1, max_length=120)


class LoginIn(BaseModel):
  email: str
  password: str


class LoginOut(BaseModel):
  token: str
  expiresAt: datetime
  user: UserOut


class ProfileUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=120)
  avatarUrl: str | None = None
  notificationPrefs: dict[str, Any] | None = None


PROFILE_FIELDS = {"avatarUrl": "avatar_url", "notificationPrefs": "notification_prefs"}


class PasswordChangeIn(BaseModel):
  currentPassword: str
  newPassword: str = Field(max_length=200)


class ApprovalIn(BaseModel):
  status: Literal["approved", "rejected", "pending"]


# projects / members


class ProjectOut(BaseModel):
  id: str
  name: str
  description: str
  color: str | None
  ownerId: str
  isActive: bool
  createdAt: datetime
  updatedAt: datetime

  @classmethod
  def of(cls, p: ProjectRecord) -> "ProjectOut":
    return cls(
      id=p.id,
      name=p.name,
      description=p.description,
      color=p.color,
      ownerId=p.owner_id,
      isActive=p.is_active,
      createdAt=p.created_at,
      updatedAt=p.updated_at,
    )


class ProjectCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=200)
  description: str = ""
  color: str | None = Field(default=None, max_length=32)


class ProjectUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=200)
  description: str | None = None
  color: str | None = Field(default=None, max_length=32)
  isActive: bool | None = None


PROJECT_FIELDS = {"isActive": "is_active"}


class MemberOut(BaseModel):
  projectId: str
  userId: str
  role: str
  joinedAt: datetime
  email: str | None = None
  name: str | None = None

  @classmethod
  def of(cls, m: MemberRecord) -> "MemberOut":
    return cls(projectId=m.project_id, userId=m.user_id, role=m.role, joinedAt=m.joined_at, email=m.email, name=m.name)


class MemberAddIn(BaseModel):
  userId: str | None = None
  email: str | None = None
  role: Literal["admin", "member"] = "member"


class MemberUpdateIn(BaseModel):
  role: Literal["admin", "member"]


# boards / columns


class BoardOut(BaseModel):
  id: str
  name: str
  description: str
  projectId: str
  visibility: str
  color: str | None
  settings: dict[str, Any]
  createdBy: str | None
  createdAt: datetime
  updatedAt: datetime

  @classmethod
  def of(cls, b: BoardRecord) -> "BoardOut":
    return cls(
      id=b.id,
      name=b.name,
      description=b.description,
      projectId=b.project_id,
      visibility=b.visibility,
      color=b.color,
      settings=b.settings,
      createdBy=b.created_by,
      createdAt=b.created_at,
      updatedAt=b.updated_at,
    )


class PublicBoardOut(BaseModel):
  id: str
  name: str
  description: str
  projectId: str
  color: str | None

  @classmethod
  def of(cls, b: BoardRecord) -> "PublicBoardOut":
    return cls(id=b.id, name=b.name, description=b.description, projectId=b.project_id, color=b.color)


class BoardCreateIn(BaseModel):
  projectId: str
  name: str = Field(min_length=1, max_length=200)
  description: str = ""
  visibility: str = "private"
  color: str | None = Field(default=None, max_length=32)
  settings: dict[str, Any] = {}


class BoardUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=200)
  description: str | None = None
  visibility: str | None = None
  color: str | None = Field(default=None, max_length=32)
  settings: dict[str, Any] | None = None


class ColumnOut(BaseModel):
  id: str
  title: str
  boardId: str
  position: int
  color: str | None
  settings: dict[str, Any]
  createdBy: str | None
  createdAt: datetime
  updatedAt: datetime

  @classmethod
  def of(cls, c: ColumnRecord) -> "ColumnOut":
    return cls(
      id=c.id,
      title=c.title,
      boardId=c.board_id,
      position=c.position,
      color=c.color,
      settings=c.settings,
      createdBy=c.created_by,
      createdAt=c.created_at,
      updatedAt=c.updated_at,
    )


class ColumnCreateIn(BaseModel):
  boardId: str
  title: str = Field(min_length=1, max_length=200)
  color: str | None = Field(default=None, max_length=32)
  settings: dict[str, Any] = {}


class ColumnUpdateIn(BaseModel):
  title: str | None = Field(default=None, min_length=1, max_length=200)
  position: int | None = None
  color: str | None = Field(default=None, max_length=32)
  settings: dict[str, Any] | None = None


class ColumnReorderIn(BaseModel):
  columnIds: list[str]


# tasks


class TaskOut(BaseModel):
  id: str
  title: str
  description: str
  columnId: str
  boardId: str
  projectId: str
  status: str
  priority: str
  position: int
  assigneeIds: list[str]
  reporterId: str | None
  parentTaskId: str | None
  dueDate: datetime | None
  estimatedHours: float | None
  actualHours: float | None
  tags: list[str]
  settings: dict[str, Any]
  createdBy: str | None
  createdAt: datetime
  updatedAt: datetime

  @classmethod
  def of(cls, t: TaskRecord) -> "TaskOut":
    return cls(
      id=t.id,
      title=t.title,
      description=t.description,
      columnId=t.column_id,
      boardId=t.board_id,
      projectId=t.project_id,
      status=t.status,
      priority=t.priority,
      position=t.position,
      assigneeIds=t.assignee_ids,
      reporterId=t.reporter_id,
      parentTaskId=t.parent_task_id,
      dueDate=t.due_date,
      estimatedHours=t.estimated_hours,
      actualHours=t.actual_hours,
      tags=t.tags,
      settings=t.settings,
      createdBy=t.created_by,
      createdAt=t.created_at,
      updatedAt=t.updated_at,
    )


class TaskCreateIn(BaseModel):
  columnId: str
  title: str = Field(min_length=1, max_length=500)
  description: str = ""
  boardId: str | None = None
  projectId: str | None = None
  status: str = "todo"
  priority: str = "medium"
  assigneeIds: list[str] = []
  reporterId: str | None = None
  parentTaskId: str | None = None
  dueDate: datetime | None = None
  estimatedHours: float | None = None
  actualHours: float | None = None
  tags: list[str] = []
  settings: dict[str, Any] = {}

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskUpdateIn(BaseModel):
  title: str | None = Field(default=None, min_length=1, max_length=500)
  description: str | None = None
  columnId: str | None = None
  status: str | None = None
  priority: str | None = None
  position: int | None = None
  assigneeIds: list[str] | None = None
  reporterId: str | None = None
  parentTaskId: str | None = None
  dueDate: datetime | None = None
  estimatedHours: float | None = None
  actualHours: float | None = None
  tags: list[str] | None = None
  settings: dict[str, Any] | None = None

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


TASK_FIELDS = {
  "columnId": "column_id",
  "boardId": "board_id",
  "projectId": "project_id",
  "assigneeIds": "assignee_ids",
  "reporterId": "reporter_id",
  "parentTaskId": "parent_task_id",
  "dueDate": "due_date",
  "estimatedHours": "estimated_hours",
  "actualHours": "actual_hours",
}


# service


class HealthOut(BaseModel):
  ok: bool
  storage: str


class VersionOut(BaseModel):
  version: str
  buildSha: str
  environment: str
