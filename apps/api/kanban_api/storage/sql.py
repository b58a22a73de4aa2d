from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from sqlalchemy import delete, func, or_, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession, async_sessionmaker

from kanban_api import errors
from kanban_api.logs import get_logger
from kanban_api.models import (
  APPROVAL_STATUSES,
  BOARD_VISIBILITIES,
  MEMBER_ROLES,
  TASK_PRIORITIES,
  TASK_STATUSES,
  USER_ROLES,
  Board,
  BoardColumn,
  Project,
  ProjectMember,
  Session as DbSession,
  Task,
  User,
)
from kanban_api.storage.base import StorageAdapter, check_choice
from kanban_api.storage.records import (
  BoardRecord,
  ColumnRecord,
  MemberRecord,
  ProjectRecord,
  SessionRecord,
  TaskRecord,
  UserRecord,
)
from kanban_api.storage.types import normalize_id

log = get_logger("storage")

USER_FIELDS = {"email", "name", "password_hash", "role", "approval_status", "avatar_url", "notification_prefs", "last_login_at"}
PROJECT_FIELDS = {"name", "description", "color", "is_active"}
BOARD_FIELDS = {"name", "description", "visibility", "color", "settings"}
COLUMN_FIELDS = {"title", "position", "color", "settings"}
TASK_FIELDS = {
  "title",
  "description",
  "column_id",
  "status",
  "priority",
  "position",
  "assignee_ids",
  "reporter_id",
  "parent_task_id",
  "due_date",
  "estimated_hours",
  "actual_hours",
  "tags",
  "settings",
}
TASK_CREATE_FIELDS = (TASK_FIELDS - {"column_id", "position"}) | {"board_id", "project_id", "created_by"}


def _now() -> datetime:
  return datetime.now(timezone.utc)


def _check_fields(entity: str, fields: dict[str, Any], allowed: set[str]) -> None:
  unknown = set(fields) - allowed
  if unknown:
    raise errors.ValidationError(f"Unknown {entity} field(s): {', '.join(sorted(unknown))}")


def _check_non_negative(field: str, value: Any) -> None:
  if value is not None and value < 0:
    raise errors.ValidationError(f"{field} must be non-negative")


def _check_blob(field: str, value: Any, kind: type) -> None:
  if value is not None and not isinstance(value, kind):
    raise errors.ValidationError(f"{field} must be a {'list' if kind is list else 'object'}")


def _require_id(value: Any, what: str) -> str:
  oid = normalize_id(value)
  if oid is None:
    raise errors.DanglingReferenceError(f"{what} does not exist")
  return oid


async def _row(db: AsyncSession, model, raw_id: Any):
  oid = normalize_id(raw_id)
  if oid is None:
    return None
  return await db.get(model, oid)


async def _refreshed(db: AsyncSession, obj):
  await db.flush()
  await db.refresh(obj)
  return obj


class SqlStorageAdapter(StorageAdapter):
  """SQLAlchemy implementation shared by both engines."""

  engine_name = "sql"

  def __init__(self, engine: AsyncEngine) -> None:
    self._engine = engine
    self._sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

  @property
  def engine(self) -> AsyncEngine:
    return self._engine

  def classify_integrity_error(self, exc: IntegrityError) -> errors.KanbanError:
    return errors.StorageError()

  @asynccontextmanager
  async def migration_connection(self) -> AsyncIterator[AsyncConnection]:
    async with self._engine.connect() as conn:
      yield conn

  @asynccontextmanager
  async def _tx(self) -> AsyncIterator[AsyncSession]:
    try:
      async with self._sessions() as db:
        async with db.begin():
          yield db
    except errors.KanbanError:
      raise
    except IntegrityError as exc:
      log.warning("integrity violation engine=%s detail=%s", self.engine_name, exc.orig)
      raise self.classify_integrity_error(exc) from exc
    except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
      log.warning("storage failure engine=%s error=%s", self.engine_name, exc)
      raise errors.StorageError() from exc

  async def ping(self) -> bool:
    async with self._tx() as db:
      await db.execute(text("SELECT 1"))
    return True

  async def dispose(self) -> None:
    await self._engine.dispose()

  # users

  def _check_user_fields(self, fields: dict[str, Any]) -> None:
    if "role" in fields:
      check_choice("role", fields["role"], USER_ROLES)
    if "approval_status" in fields:
      check_choice("approval_status", fields["approval_status"], APPROVAL_STATUSES)
    _check_blob("notification_prefs", fields.get("notification_prefs"), dict)

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
  ) -> UserRecord:
    self._check_user_fields({"role": role, "approval_status": approval_status, "notification_prefs": notification_prefs})
    async with self._tx() as db:
      existing = await db.execute(select(User.id).where(func.lower(User.email) == email.strip().lower()))
      if existing.scalar_one_or_none():
        raise errors.ConflictError("Email already registered")
      u = User(
        email=email,
        name=name,
        password_hash=password_hash,
        role=role,
        approval_status=approval_status,
        avatar_url=avatar_url,
        notification_prefs=dict(notification_prefs or {}),
      )
      db.add(u)
      return UserRecord.from_row(await _refreshed(db, u))

  async def get_user(self, user_id: str) -> UserRecord | None:
    async with self._tx() as db:
      u = await _row(db, User, user_id)
      return UserRecord.from_row(u) if u else None

  async def get_user_by_email(self, email: str) -> UserRecord | None:
    async with self._tx() as db:
      res = await db.execute(select(User).where(func.lower(User.email) == (email or "").strip().lower()))
      u = res.scalars().first()
      return UserRecord.from_row(u) if u else None

  async def list_users(self, *, include_deleted: bool = False) -> list[UserRecord]:
    stmt = select(User).order_by(User.created_at.asc())
    if not include_deleted:
      stmt = stmt.where(User.deleted_at.is_(None))
    async with self._tx() as db:
      res = await db.execute(stmt)
      return [UserRecord.from_row(u) for u in res.scalars().all()]

  async def update_user(self, user_id: str, **fields: Any) -> UserRecord:
    _check_fields("user", fields, USER_FIELDS)
    self._check_user_fields(fields)
    async with self._tx() as db:
      u = await _row(db, User, user_id)
      if not u:
        raise errors.NotFoundError("User not found")
      if "email" in fields:
        clash = await db.execute(
          select(User.id).where(func.lower(User.email) == str(fields["email"]).strip().lower(), User.id != u.id)
        )
        if clash.scalar_one_or_none():
          raise errors.ConflictError("Email already registered")
      for key, value in fields.items():
        setattr(u, key, value)
      return UserRecord.from_row(await _refreshed(db, u))

  async def soft_delete_user(self, user_id: str) -> UserRecord:
    async with self._tx() as db:
      u = await _row(db, User, user_id)
      if not u:
        raise errors.NotFoundError("User not found")
      if u.deleted_at is None:
        u.deleted_at = _now()
      await db.execute(delete(DbSession).where(DbSession.user_id == u.id))
      return UserRecord.from_row(await _refreshed(db, u))

  # sessions

  async def create_session(
    self,
    *,
    user_id: str,
    token_hash: str,
    expires_at: datetime,
    created_ip: str | None = None,
    user_agent: str | None = None,
  ) -> SessionRecord:
    async with self._tx() as db:
      uid = _require_id(user_id, "User")
      if await db.get(User, uid) is None:
        raise errors.DanglingReferenceError("User does not exist")
      s = DbSession(user_id=uid, token_hash=token_hash, expires_at=expires_at, created_ip=created_ip, user_agent=user_agent)
      db.add(s)
      return SessionRecord.from_row(await _refreshed(db, s))

  async def replace_user_sessions(
    self,
    *,
    user_id: str,
    token_hash: str,
    expires_at: datetime,
    created_ip: str | None = None,
    user_agent: str | None = None,
  ) -> SessionRecord:
    async with self._tx() as db:
      uid = _require_id(user_id, "User")
      if await db.get(User, uid) is None:
        raise errors.DanglingReferenceError("User does not exist")
      await db.execute(delete(DbSession).where(DbSession.user_id == uid))
      s = DbSession(user_id=uid, token_hash=token_hash, expires_at=expires_at, created_ip=created_ip, user_agent=user_agent)
      db.add(s)
      return SessionRecord.from_row(await _refreshed(db, s))

  async def get_session_by_token_hash(self, token_hash: str) -> SessionRecord | None:
    async with self._tx() as db:
      res = await db.execute(select(DbSession).where(DbSession.token_hash == token_hash))
      s = res.scalar_one_or_none()
      return SessionRecord.from_row(s) if s else None

  async def delete_session_by_token_hash(self, token_hash: str) -> bool:
    async with self._tx() as db:
      res = await db.execute(delete(DbSession).where(DbSession.token_hash == token_hash))
      return (res.rowcount or 0) > 0

  async def delete_user_sessions(self, user_id: str, *, keep_token_hash: str | None = None) -> int:
    uid = normalize_id(user_id)
    if uid is None:
      return 0
    stmt = delete(DbSession).where(DbSession.user_id == uid)
    if keep_token_hash:
      stmt = stmt.where(DbSession.token_hash != keep_token_hash)
    async with self._tx() as db:
      res = await db.execute(stmt)
      return int(res.rowcount or 0)

  # projects

  async def create_project(
    self, *, name: str, owner_id: str, description: str = "", color: str | None = None
  ) -> ProjectRecord:
    async with self._tx() as db:
      oid = _require_id(owner_id, "Owner")
      if await db.get(User, oid) is None:
        raise errors.DanglingReferenceError("Owner does not exist")
      p = Project(name=name, description=description or "", color=color, owner_id=oid, is_active=True)
      db.add(p)
      await db.flush()
      db.add(ProjectMember(project_id=p.id, user_id=oid, role="owner"))
      return ProjectRecord.from_row(await _refreshed(db, p))

  async def get_project(self, project_id: str) -> ProjectRecord | None:
    async with self._tx() as db:
      p = await _row(db, Project, project_id)
      return ProjectRecord.from_row(p) if p else None

  async def list_projects_for_user(self, user_id: str) -> list[ProjectRecord]:
    uid = normalize_id(user_id)
    if uid is None:
      return []
    member_of = select(ProjectMember.project_id).where(ProjectMember.user_id == uid)
    async with self._tx() as db:
      res = await db.execute(
        select(Project).where(or_(Project.owner_id == uid, Project.id.in_(member_of))).order_by(Project.created_at.asc())
      )
      return [ProjectRecord.from_row(p) for p in res.scalars().all()]

  async def update_project(self, project_id: str, **fields: Any) -> ProjectRecord:
    _check_fields("project", fields, PROJECT_FIELDS)
    async with self._tx() as db:
      p = await _row(db, Project, project_id)
      if not p:
        raise errors.NotFoundError("Project not found")
      for key, value in fields.items():
        setattr(p, key, value)
      return ProjectRecord.from_row(await _refreshed(db, p))

  async def delete_project(self, project_id: str) -> bool:
    pid = normalize_id(project_id)
    if pid is None:
      return False
    async with self._tx() as db:
      board_ids = select(Board.id).where(Board.project_id == pid)
      await self._delete_tasks(db, Task.project_id == pid)
      await db.execute(delete(BoardColumn).where(BoardColumn.board_id.in_(board_ids)))
      await db.execute(delete(Board).where(Board.project_id == pid))
      await db.execute(delete(ProjectMember).where(ProjectMember.project_id == pid))
      res = await db.execute(delete(Project).where(Project.id == pid))
      return (res.rowcount or 0) > 0

  async def count_project_boards(self, project_id: str) -> int:
    pid = normalize_id(project_id)
    if pid is None:
      return 0
    async with self._tx() as db:
      res = await db.execute(select(func.count()).select_from(Board).where(Board.project_id == pid))
      return int(res.scalar_one() or 0)

  # membership

  async def add_member(self, *, project_id: str, user_id: str, role: str = "member") -> MemberRecord:
    check_choice("role", role, MEMBER_ROLES)
    async with self._tx() as db:
      pid = _require_id(project_id, "Project")
      uid = _require_id(user_id, "User")
      if await db.get(Project, pid) is None:
        raise errors.DanglingReferenceError("Project does not exist")
      u = await db.get(User, uid)
      if u is None:
        raise errors.DanglingReferenceError("User does not exist")
      if await db.get(ProjectMember, (pid, uid)) is not None:
        raise errors.ConflictError("User is already a member of this project")
      m = ProjectMember(project_id=pid, user_id=uid, role=role)
      db.add(m)
      return MemberRecord.from_row(await _refreshed(db, m), u)

  async def get_member(self, project_id: str, user_id: str) -> MemberRecord | None:
    pid, uid = normalize_id(project_id), normalize_id(user_id)
    if pid is None or uid is None:
      return None
    async with self._tx() as db:
      res = await db.execute(
        select(ProjectMember, User)
        .join(User, User.id == ProjectMember.user_id)
        .where(ProjectMember.project_id == pid, ProjectMember.user_id == uid)
      )
      row = res.first()
      return MemberRecord.from_row(row[0], row[1]) if row else None

  async def list_members(self, project_id: str) -> list[MemberRecord]:
    pid = normalize_id(project_id)
    if pid is None:
      return []
    async with self._tx() as db:
      res = await db.execute(
        select(ProjectMember, User)
        .join(User, User.id == ProjectMember.user_id)
        .where(ProjectMember.project_id == pid)
        .order_by(ProjectMember.joined_at.asc())
      )
      return [MemberRecord.from_row(m, u) for m, u in res.all()]

  async def update_member_role(self, project_id: str, user_id: str, role: str) -> MemberRecord:
    check_choice("role", role, MEMBER_ROLES)
    pid, uid = normalize_id(project_id), normalize_id(user_id)
    async with self._tx() as db:
      m = await db.get(ProjectMember, (pid, uid)) if pid and uid else None
      if m is None:
        raise errors.NotFoundError("Member not found")
      m.role = role
      u = await db.get(User, uid)
      return MemberRecord.from_row(await _refreshed(db, m), u)

  async def remove_member(self, project_id: str, user_id: str) -> bool:
    pid, uid = normalize_id(project_id), normalize_id(user_id)
    if pid is None or uid is None:
      return False
    async with self._tx() as db:
      res = await db.execute(delete(ProjectMember).where(ProjectMember.project_id == pid, ProjectMember.user_id == uid))
      return (res.rowcount or 0) > 0

  async def is_project_owner(self, project_id: str, user_id: str) -> bool:
    pid, uid = normalize_id(project_id), normalize_id(user_id)
    if pid is None or uid is None:
      return False
    async with self._tx() as db:
      res = await db.execute(select(Project.id).where(Project.id == pid, Project.owner_id == uid))
      return res.scalar_one_or_none() is not None

  async def is_project_member(self, project_id: str, user_id: str) -> bool:
    pid, uid = normalize_id(project_id), normalize_id(user_id)
    if pid is None or uid is None:
      return False
    async with self._tx() as db:
      res = await db.execute(
        select(ProjectMember.user_id).where(ProjectMember.project_id == pid, ProjectMember.user_id == uid)
      )
      return res.scalar_one_or_none() is not None

  # boards

  def _check_board_fields(self, fields: dict[str, Any]) -> None:
    if "visibility" in fields:
      check_choice("visibility", fields["visibility"], BOARD_VISIBILITIES)
    _check_blob("settings", fields.get("settings"), dict)

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
  ) -> BoardRecord:
    self._check_board_fields({"visibility": visibility, "settings": settings})
    async with self._tx() as db:
      pid = _require_id(project_id, "Project")
      if await db.get(Project, pid) is None:
        raise errors.DanglingReferenceError("Project does not exist")
      b = Board(
        project_id=pid,
        name=name,
        description=description or "",
        visibility=visibility,
        color=color,
        settings=dict(settings or {}),
        created_by=normalize_id(created_by),
      )
      db.add(b)
      return BoardRecord.from_row(await _refreshed(db, b))

  async def get_board(self, board_id: str) -> BoardRecord | None:
    async with self._tx() as db:
      b = await _row(db, Board, board_id)
      return BoardRecord.from_row(b) if b else None

  async def list_boards(self, project_id: str) -> list[BoardRecord]:
    pid = normalize_id(project_id)
    if pid is None:
      return []
    async with self._tx() as db:
      res = await db.execute(select(Board).where(Board.project_id == pid).order_by(Board.created_at.asc()))
      return [BoardRecord.from_row(b) for b in res.scalars().all()]

  async def list_public_boards(self) -> list[BoardRecord]:
    async with self._tx() as db:
      res = await db.execute(
        select(Board)
        .join(Project, Project.id == Board.project_id)
        .where(Board.visibility == "public", Project.is_active.is_(True))
        .order_by(Board.created_at.asc())
      )
      return [BoardRecord.from_row(b) for b in res.scalars().all()]

  async def update_board(self, board_id: str, **fields: Any) -> BoardRecord:
    _check_fields("board", fields, BOARD_FIELDS)
    self._check_board_fields(fields)
    async with self._tx() as db:
      b = await _row(db, Board, board_id)
      if not b:
        raise errors.NotFoundError("Board not found")
      for key, value in fields.items():
        setattr(b, key, value)
      return BoardRecord.from_row(await _refreshed(db, b))

  async def delete_board(self, board_id: str) -> bool:
    bid = normalize_id(board_id)
    if bid is None:
      return False
    async with self._tx() as db:
      await self._delete_tasks(db, Task.board_id == bid)
      await db.execute(delete(BoardColumn).where(BoardColumn.board_id == bid))
      res = await db.execute(delete(Board).where(Board.id == bid))
      return (res.rowcount or 0) > 0

  # columns

  def _check_column_fields(self, fields: dict[str, Any]) -> None:
    if "position" in fields:
      if fields["position"] is None:
        raise errors.ValidationError("position is required")
      _check_non_negative("position", fields["position"])
    _check_blob("settings", fields.get("settings"), dict)

  async def create_column(
    self,
    *,
    board_id: str,
    title: str,
    color: str | None = None,
    settings: dict[str, Any] | None = None,
    created_by: str | None = None,
  ) -> ColumnRecord:
    self._check_column_fields({"settings": settings})
    async with self._tx() as db:
      bid = _require_id(board_id, "Board")
      if await db.get(Board, bid) is None:
        raise errors.DanglingReferenceError("Board does not exist")
      res = await db.execute(select(func.max(BoardColumn.position)).where(BoardColumn.board_id == bid))
      max_pos = res.scalar_one()
      c = BoardColumn(
        board_id=bid,
        title=title,
        position=(max_pos + 1) if max_pos is not None else 0,
        color=color,
        settings=dict(settings or {}),
        created_by=normalize_id(created_by),
      )
      db.add(c)
      return ColumnRecord.from_row(await _refreshed(db, c))

  async def get_column(self, column_id: str) -> ColumnRecord | None:
    async with self._tx() as db:
      c = await _row(db, BoardColumn, column_id)
      return ColumnRecord.from_row(c) if c else None

  async def list_columns(self, board_id: str) -> list[ColumnRecord]:
    bid = normalize_id(board_id)
    if bid is None:
      return []
    async with self._tx() as db:
      res = await db.execute(
        select(BoardColumn)
        .where(BoardColumn.board_id == bid)
        .order_by(BoardColumn.position.asc(), BoardColumn.created_at.asc())
      )
      return [ColumnRecord.from_row(c) for c in res.scalars().all()]

  async def update_column(self, column_id: str, **fields: Any) -> ColumnRecord:
    _check_fields("column", fields, COLUMN_FIELDS)
    self._check_column_fields(fields)
    async with self._tx() as db:
      c = await _row(db, BoardColumn, column_id)
      if not c:
        raise errors.NotFoundError("Column not found")
      for key, value in fields.items():
        setattr(c, key, value)
      return ColumnRecord.from_row(await _refreshed(db, c))

  async def delete_column(self, column_id: str) -> bool:
    cid = normalize_id(column_id)
    if cid is None:
      return False
    async with self._tx() as db:
      await self._delete_tasks(db, Task.column_id == cid)
      res = await db.execute(delete(BoardColumn).where(BoardColumn.id == cid))
      return (res.rowcount or 0) > 0

  async def reorder_columns(self, board_id: str, column_ids: list[str]) -> list[ColumnRecord]:
    bid = normalize_id(board_id)
    wanted = [normalize_id(x) for x in column_ids]
    async with self._tx() as db:
      if bid is None or await db.get(Board, bid) is None:
        raise errors.NotFoundError("Board not found")
      res = await db.execute(select(BoardColumn).where(BoardColumn.board_id == bid))
      cols = {c.id: c for c in res.scalars().all()}
      if len(wanted) != len(cols) or set(wanted) != set(cols.keys()):
        raise errors.ValidationError("columnIds must list every column of the board exactly once")
      for idx, cid in enumerate(wanted):
        cols[cid].position = idx
      await db.flush()
      out: list[ColumnRecord] = []
      for cid in wanted:
        await db.refresh(cols[cid])
        out.append(ColumnRecord.from_row(cols[cid]))
      return out

  # tasks

  def _check_task_fields(self, fields: dict[str, Any]) -> None:
    if "title" in fields and not str(fields["title"] or "").strip():
      raise errors.ValidationError("title is required")
    if "status" in fields:
      check_choice("status", fields["status"], TASK_STATUSES)
    if "priority" in fields:
      check_choice("priority", fields["priority"], TASK_PRIORITIES)
    if "position" in fields:
      if fields["position"] is None:
        raise errors.ValidationError("position is required")
      _check_non_negative("position", fields["position"])
    _check_non_negative("estimated_hours", fields.get("estimated_hours"))
    _check_non_negative("actual_hours", fields.get("actual_hours"))
    _check_blob("tags", fields.get("tags"), list)
    _check_blob("assignee_ids", fields.get("assignee_ids"), list)
    _check_blob("settings", fields.get("settings"), dict)

  async def _resolve_users(self, db: AsyncSession, raw_ids: list[Any], what: str) -> list[str]:
    out: list[str] = []
    for raw in raw_ids:
      uid = _require_id(raw, what)
      if await db.get(User, uid) is None:
        raise errors.DanglingReferenceError(f"{what} does not exist")
      if uid not in out:
        out.append(uid)
    return out

  async def _check_parent(self, db: AsyncSession, raw_parent: Any, project_id: str, task_id: str | None) -> str:
    parent = await _row(db, Task, raw_parent)
    if parent is None:
      raise errors.DanglingReferenceError("Parent task does not exist")
    if parent.project_id != project_id:
      raise errors.ValidationError("Parent task belongs to a different project")
    # walk up to make sure the task would not become its own ancestor
    seen: set[str] = set()
    cursor = parent
    while cursor is not None and cursor.id not in seen:
      if task_id is not None and cursor.id == task_id:
        raise errors.ValidationError("A task cannot be its own ancestor")
      seen.add(cursor.id)
      cursor = await db.get(Task, cursor.parent_task_id) if cursor.parent_task_id else None
    return parent.id

  async def _next_task_position(self, db: AsyncSession, column_id: str) -> int:
    res = await db.execute(select(func.max(Task.position)).where(Task.column_id == column_id))
    max_pos = res.scalar_one()
    return (max_pos + 1) if max_pos is not None else 0

  async def create_task(self, *, title: str, column_id: str, **fields: Any) -> TaskRecord:
    _check_fields("task", fields, TASK_CREATE_FIELDS)
    self._check_task_fields({"title": title, **fields})
    async with self._tx() as db:
      col = await _row(db, BoardColumn, column_id)
      if col is None:
        raise errors.DanglingReferenceError("Column does not exist")
      board = await db.get(Board, col.board_id)
      if board is None:
        raise errors.DanglingReferenceError("Board does not exist")
      for key, actual in (("board_id", board.id), ("project_id", board.project_id)):
        given = fields.pop(key, None)
        if given is not None and normalize_id(given) != actual:
          raise errors.ValidationError(f"{key} does not match the column's {key.split('_')[0]}")
      if fields.get("parent_task_id") is not None:
        fields["parent_task_id"] = await self._check_parent(db, fields["parent_task_id"], board.project_id, None)
      if fields.get("reporter_id") is not None:
        fields["reporter_id"] = (await self._resolve_users(db, [fields["reporter_id"]], "Reporter"))[0]
      if fields.get("assignee_ids"):
        fields["assignee_ids"] = await self._resolve_users(db, fields["assignee_ids"], "Assignee")
      if "created_by" in fields:
        fields["created_by"] = normalize_id(fields["created_by"])
      t = Task(
        title=title,
        column_id=col.id,
        board_id=board.id,
        project_id=board.project_id,
        position=await self._next_task_position(db, col.id),
        status=fields.pop("status", None) or "todo",
        priority=fields.pop("priority", None) or "medium",
        description=fields.pop("description", None) or "",
        assignee_ids=list(fields.pop("assignee_ids", None) or []),
        tags=list(fields.pop("tags", None) or []),
        settings=dict(fields.pop("settings", None) or {}),
        **fields,
      )
      db.add(t)
      return TaskRecord.from_row(await _refreshed(db, t))

  async def get_task(self, task_id: str) -> TaskRecord | None:
    async with self._tx() as db:
      t = await _row(db, Task, task_id)
      return TaskRecord.from_row(t) if t else None

  async def list_tasks(
    self,
    *,
    project_id: str | None = None,
    board_id: str | None = None,
    column_id: str | None = None,
    parent_task_id: str | None = None,
  ) -> list[TaskRecord]:
    stmt = select(Task)
    for column, raw in (
      (Task.project_id, project_id),
      (Task.board_id, board_id),
      (Task.column_id, column_id),
      (Task.parent_task_id, parent_task_id),
    ):
      if raw is None:
        continue
      oid = normalize_id(raw)
      if oid is None:
        return []
      stmt = stmt.where(column == oid)
    async with self._tx() as db:
      res = await db.execute(stmt.order_by(Task.position.asc(), Task.created_at.asc()))
      return [TaskRecord.from_row(t) for t in res.scalars().all()]

  async def update_task(self, task_id: str, **fields: Any) -> TaskRecord:
    _check_fields("task", fields, TASK_FIELDS)
    self._check_task_fields(fields)
    async with self._tx() as db:
      t = await _row(db, Task, task_id)
      if not t:
        raise errors.NotFoundError("Task not found")
      if "column_id" in fields:
        col = await _row(db, BoardColumn, fields.pop("column_id"))
        if col is None:
          raise errors.DanglingReferenceError("Column does not exist")
        board = await db.get(Board, col.board_id)
        if board is None or board.project_id != t.project_id:
          raise errors.ValidationError("Tasks can only move between columns of the same project")
        if col.id != t.column_id:
          t.column_id = col.id
          t.board_id = board.id
          if "position" not in fields:
            t.position = await self._next_task_position(db, col.id)
      if "parent_task_id" in fields and fields["parent_task_id"] is not None:
        fields["parent_task_id"] = await self._check_parent(db, fields["parent_task_id"], t.project_id, t.id)
      if fields.get("reporter_id") is not None:
        fields["reporter_id"] = (await self._resolve_users(db, [fields["reporter_id"]], "Reporter"))[0]
      if "assignee_ids" in fields:
        fields["assignee_ids"] = await self._resolve_users(db, fields["assignee_ids"] or [], "Assignee")
      for key, value in fields.items():
        setattr(t, key, value)
      return TaskRecord.from_row(await _refreshed(db, t))

  async def delete_task(self, task_id: str) -> bool:
    tid = normalize_id(task_id)
    if tid is None:
      return False
    async with self._tx() as db:
      return (await self._delete_tasks(db, Task.id == tid)) > 0

  async def _delete_tasks(self, db: AsyncSession, condition) -> int:
    res = await db.execute(select(Task.id).where(condition))
    doomed = set(res.scalars().all())
    frontier = set(doomed)
    # subtasks go with their parents, wherever they live
    while frontier:
      res = await db.execute(select(Task.id).where(Task.parent_task_id.in_(list(frontier))))
      children = set(res.scalars().all()) - doomed
      doomed |= children
      frontier = children
    if doomed:
      await db.execute(delete(Task).where(Task.id.in_(list(doomed))))
    return len(doomed)
