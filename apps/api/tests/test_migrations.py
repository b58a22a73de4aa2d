from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import sqlalchemy as sa
from sqlalchemy import text

from kanban_api import errors
from kanban_api.migrations import MIGRATION_PLAN, Migrator, RetypeColumn
from kanban_api.storage.base import StorageAdapter
from kanban_api.storage.factory import create_storage
from conftest import make_settings

LEGACY_USERS = """
CREATE TABLE users (
  id VARCHAR(36) PRIMARY KEY,
  email VARCHAR(320) NOT NULL,
  name VARCHAR(120) NOT NULL,
  password_hash VARCHAR NOT NULL,
  role VARCHAR(16) NOT NULL DEFAULT 'user',
  created_at DATETIME NOT NULL,
  updated_at DATETIME NOT NULL
)
"""

LEGACY_TASKS = """
CREATE TABLE tasks (
  id VARCHAR(36) PRIMARY KEY,
  title VARCHAR(500) NOT NULL,
  description TEXT NOT NULL DEFAULT '',
  column_id VARCHAR(36) NOT NULL,
  board_id VARCHAR(36) NOT NULL,
  project_id VARCHAR(36) NOT NULL,
  status VARCHAR(16) NOT NULL DEFAULT 'todo',
  position INTEGER NOT NULL DEFAULT 0,
  due_date DATETIME,
  created_at DATETIME NOT NULL,
  updated_at DATETIME NOT NULL
)
"""


@pytest.fixture
async def bare_storage(tmp_path: Path) -> StorageAdapter:
  s = create_storage(make_settings(f"sqlite+aiosqlite:///{tmp_path / 'legacy_test.db'}"))
  yield s
  await s.dispose()


async def _legacy_user(storage: StorageAdapter, email: str) -> str:
  uid = str(uuid.uuid4())
  async with storage.engine.begin() as conn:
    await conn.execute(
      text(
        "INSERT INTO users (id, email, name, password_hash, role, created_at, updated_at) "
        "VALUES (:id, :email, 'Legacy', 'x', 'user', '2024-01-01 00:00:00', '2024-01-01 00:00:00')"
      ),
      {"id": uid, "email": email},
    )
  return uid


async def _columns(storage: StorageAdapter, table: str) -> dict[str, str]:
  async with storage.engine.connect() as conn:
    cols = await conn.run_sync(lambda c: sa.inspect(c).get_columns(table))
  return {c["name"]: str(c["type"]) for c in cols}


async def _has_table(storage: StorageAdapter, table: str) -> bool:
  async with storage.engine.connect() as conn:
    return await conn.run_sync(lambda c: sa.inspect(c).has_table(table))


@pytest.mark.anyio
async def test_fresh_database_then_rerun_is_a_no_op(any_storage: StorageAdapter) -> None:
  # any_storage is already migrated once by the fixture
  report = await Migrator(any_storage).run()
  assert report.applied == []
  assert not report.changed
  assert report.skipped == [s.step_id for s in MIGRATION_PLAN]


def test_step_ids_are_unique() -> None:
  ids = [s.step_id for s in MIGRATION_PLAN]
  assert len(ids) == len(set(ids))


@pytest.mark.anyio
async def test_legacy_schema_is_upgraded_without_losing_rows(bare_storage: StorageAdapter) -> None:
  async with bare_storage.engine.begin() as conn:
    await conn.execute(text(LEGACY_USERS))
    await conn.execute(text(LEGACY_TASKS))
  uid = await _legacy_user(bare_storage, "old@example.com")

  report = await Migrator(bare_storage).run()
  assert "0001_users" in report.skipped
  assert "0007_tasks" in report.skipped
  assert "0002_sessions" in report.applied
  assert "0008_users_approval_status" in report.applied
  assert "0025_tasks_parent_task_id" in report.applied
  assert "0033_ux_users_email" in report.applied

  # added reference columns carry the same foreign keys a fresh table gets
  async with bare_storage.engine.connect() as conn:
    reflected = await conn.run_sync(lambda c: sa.inspect(c).get_foreign_keys("tasks"))
    pragma = (await conn.execute(text("PRAGMA foreign_key_list(tasks)"))).mappings().all()
  refs = {fk["constrained_columns"][0]: fk["referred_table"] for fk in reflected}
  assert refs["parent_task_id"] == "tasks"
  assert refs["reporter_id"] == "users"
  assert refs["created_by"] == "users"
  on_delete = {row["from"]: row["on_delete"] for row in pragma}
  assert on_delete["parent_task_id"] == "CASCADE"
  assert on_delete["reporter_id"] == "SET NULL"
  assert on_delete["created_by"] == "SET NULL"

  cols = await _columns(bare_storage, "users")
  for name in ("approval_status", "notification_prefs", "avatar_url", "last_login_at", "deleted_at"):
    assert name in cols

  u = await bare_storage.get_user(uid)
  assert u is not None
  assert u.email == "old@example.com"
  assert u.approval_status == "approved"
  assert u.notification_prefs == {}
  assert u.deleted_at is None

  again = await Migrator(bare_storage).run()
  assert again.applied == []


@pytest.mark.anyio
async def test_conflicting_data_halts_at_failing_step(bare_storage: StorageAdapter) -> None:
  async with bare_storage.engine.begin() as conn:
    await conn.execute(text(LEGACY_USERS))
  await _legacy_user(bare_storage, "dup@example.com")
  await _legacy_user(bare_storage, "dup@example.com")

  with pytest.raises(errors.MigrationError) as ei:
    await Migrator(bare_storage).run()
  assert ei.value.step_id == "0033_ux_users_email"
  # earlier steps stay applied
  assert await _has_table(bare_storage, "tasks")
  assert "approval_status" in await _columns(bare_storage, "users")
  async with bare_storage.engine.connect() as conn:
    names = await conn.run_sync(lambda c: {i["name"] for i in sa.inspect(c).get_indexes("sessions")})
  assert "ux_sessions_token_hash" in names  # created together with its table in 0002

  async with bare_storage.engine.begin() as conn:
    await conn.execute(text("DELETE FROM users WHERE rowid = (SELECT MAX(rowid) FROM users)"))
  report = await Migrator(bare_storage).run()
  assert report.applied == ["0033_ux_users_email"]


@pytest.mark.anyio
async def test_destructive_retype_requires_opt_in(storage: StorageAdapter) -> None:
  await storage.create_user(email="keep@example.com", name="Keep", password_hash="x", approval_status="approved")
  step = RetypeColumn("9001_users_name_text", table="users", column="name", type_=sa.Text())

  with pytest.raises(errors.MigrationError) as ei:
    await Migrator(storage, steps=[step]).run()
  assert ei.value.step_id == "9001_users_name_text"
  assert len(await storage.list_users()) == 1

  report = await Migrator(storage, steps=[step]).run(allow_destructive=True)
  assert report.applied == ["9001_users_name_text"]
  assert await storage.list_users(include_deleted=True) == []
  assert (await _columns(storage, "users"))["name"].upper() == "TEXT"

  rerun = await Migrator(storage, steps=[step]).run()
  assert rerun.skipped == ["9001_users_name_text"]


@pytest.mark.anyio
async def test_destructive_retype_cascades_to_dependents(any_storage: StorageAdapter) -> None:
  owner = await any_storage.create_user(
    email="owner@example.com", name="Owner", password_hash="x", approval_status="approved"
  )
  project = await any_storage.create_project(name="P1", owner_id=owner.id)
  board = await any_storage.create_board(project_id=project.id, name="Board", created_by=owner.id)
  column = await any_storage.create_column(board_id=board.id, title="Todo", created_by=owner.id)
  parent = await any_storage.create_task(title="Parent", column_id=column.id, created_by=owner.id)
  child = await any_storage.create_task(title="Child", column_id=column.id, parent_task_id=parent.id)
  await any_storage.create_session(
    user_id=owner.id, token_hash="a" * 64, expires_at=datetime.now(timezone.utc) + timedelta(hours=1)
  )

  step = RetypeColumn("9001_users_name_text", table="users", column="name", type_=sa.Text())
  report = await Migrator(any_storage, steps=[step]).run(allow_destructive=True)
  assert report.applied == ["9001_users_name_text"]

  assert await any_storage.list_users(include_deleted=True) == []
  assert await any_storage.get_session_by_token_hash("a" * 64) is None
  assert await any_storage.get_project(project.id) is None
  assert await any_storage.get_member(project.id, owner.id) is None
  assert await any_storage.get_board(board.id) is None
  assert await any_storage.get_column(column.id) is None
  assert await any_storage.get_task(parent.id) is None
  assert await any_storage.get_task(child.id) is None
