"""
Schema migrator.

One ordered plan of named steps, applied against whichever engine the storage
adapter wraps. Every additive step inspects the live schema first and only
mutates when the structure is missing, so the plan can be rerun at will.
Each step commits on its own; a failing step halts the run with
``MigrationError`` and leaves earlier steps applied.

``RetypeColumn`` is the one destructive step kind: it empties the table before
changing the column type and refuses to run unless explicitly allowed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Sequence

import sqlalchemy as sa
from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from sqlalchemy.engine import Connection

from kanban_api import errors
from kanban_api.logs import get_logger
from kanban_api.models import Base
from kanban_api.storage.base import StorageAdapter

log = get_logger("migrate")


def _model_table(name: str) -> sa.Table:
  return Base.metadata.tables[name]


def _column_names(conn: Connection, table: str) -> set[str]:
  return {c["name"] for c in sa.inspect(conn).get_columns(table)}


def _sweep_orphans(conn: Connection) -> int:
  """
  Apply each model foreign key's ON DELETE action to rows whose referenced row is gone.

  SQLite migrations run with foreign key enforcement off, so a bulk delete
  there leaves dependents behind. Returns the number of rows touched; callers
  repeat until it is zero to follow cascades down the tree.
  """
  live = {name: _column_names(conn, name) for name in sa.inspect(conn).get_table_names()}
  touched = 0
  for table in Base.metadata.sorted_tables:
    for fk in table.foreign_keys:
      action = (fk.ondelete or "").upper()
      src_name = fk.parent.name
      if action not in ("CASCADE", "SET NULL") or src_name not in live.get(table.name, ()):
        continue
      src = sa.column(src_name)
      referenced = (
        sa.select(sa.column(fk.column.name))
        .select_from(sa.table(fk.column.table.name))
        .correlate(None)
      )
      orphaned = sa.and_(src.is_not(None), src.not_in(referenced))
      target = sa.table(table.name, src)
      if action == "CASCADE":
        res = conn.execute(sa.delete(target).where(orphaned))
      else:
        res = conn.execute(sa.update(target).where(orphaned).values({src_name: None}))
      touched += max(res.rowcount or 0, 0)
  return touched


@dataclass
class MigrationStep:
  step_id: str
  destructive: ClassVar[bool] = False

  def needed(self, conn: Connection) -> bool:
    raise NotImplementedError

  def apply(self, ops: Operations, conn: Connection) -> None:
    raise NotImplementedError


@dataclass
class CreateTable(MigrationStep):
  table: str = ""

  def needed(self, conn: Connection) -> bool:
    return not sa.inspect(conn).has_table(self.table)

  def apply(self, ops: Operations, conn: Connection) -> None:
    _model_table(self.table).create(conn)


@dataclass
class AddColumn(MigrationStep):
  """Add a model column to an existing table; nullable unless a server default is given."""

  table: str = ""
  column: str = ""
  server_default: Any = None

  def needed(self, conn: Connection) -> bool:
    return self.column not in _column_names(conn, self.table)

  def apply(self, ops: Operations, conn: Connection) -> None:
    model_col = _model_table(self.table).c[self.column]
    fks = list(model_col.foreign_keys)
    nullable = model_col.nullable or self.server_default is None
    if fks and conn.dialect.name == "sqlite":
      self._add_referencing_column_sqlite(conn, model_col, fks[0], nullable)
      return
    ops.add_column(
      self.table,
      sa.Column(
        self.column,
        model_col.type,
        *[sa.ForeignKey(fk.target_fullname, ondelete=fk.ondelete) for fk in fks],
        nullable=nullable,
        server_default=self.server_default,
      ),
    )

  def _add_referencing_column_sqlite(
    self, conn: Connection, model_col: sa.Column, fk: sa.ForeignKey, nullable: bool
  ) -> None:
    # SQLite has no ALTER TABLE ... ADD CONSTRAINT; the reference rides on ADD COLUMN,
    # which SQLite only accepts for columns defaulting to NULL
    bare = sa.Column(self.column, model_col.type, nullable=nullable, server_default=self.server_default)
    sa.Table(self.table, sa.MetaData(), bare)
    prep = conn.dialect.identifier_preparer
    spec = str(sa.schema.CreateColumn(bare).compile(dialect=conn.dialect))
    ref = f" REFERENCES {prep.quote(fk.column.table.name)} ({prep.quote(fk.column.name)})"
    if fk.ondelete:
      ref += f" ON DELETE {fk.ondelete}"
    conn.exec_driver_sql(f"ALTER TABLE {prep.quote(self.table)} ADD COLUMN {spec}{ref}")


@dataclass
class CreateIndex(MigrationStep):
  table: str = ""
  index: str = ""

  def _model_index(self) -> sa.Index:
    for idx in _model_table(self.table).indexes:
      if idx.name == self.index:
        return idx
    raise KeyError(self.index)

  def needed(self, conn: Connection) -> bool:
    insp = sa.inspect(conn)
    names = {i["name"] for i in insp.get_indexes(self.table)}
    names |= {u["name"] for u in insp.get_unique_constraints(self.table)}
    return self.index not in names

  def apply(self, ops: Operations, conn: Connection) -> None:
    idx = self._model_index()
    ops.create_index(self.index, self.table, [c.name for c in idx.columns], unique=bool(idx.unique))


@dataclass
class AddCheckConstraint(MigrationStep):
  """
  Add a named CHECK constraint.

  SQLite cannot add a constraint to an existing table without rebuilding it;
  there the storage adapter's own pre-write validation is the enforcement and
  the step is skipped.
  """

  table: str = ""
  constraint: str = ""

  def _model_constraint(self) -> sa.CheckConstraint:
    for c in _model_table(self.table).constraints:
      if isinstance(c, sa.CheckConstraint) and c.name == self.constraint:
        return c
    raise KeyError(self.constraint)

  def needed(self, conn: Connection) -> bool:
    if conn.dialect.name == "sqlite":
      return False
    names = {c["name"] for c in sa.inspect(conn).get_check_constraints(self.table)}
    return self.constraint not in names

  def apply(self, ops: Operations, conn: Connection) -> None:
    ops.create_check_constraint(self.constraint, self.table, self._model_constraint().sqltext)


@dataclass
class RetypeColumn(MigrationStep):
  """
  Change a column's type. BREAKING: deletes every row of the table first,
  along with the rows that cascade from them.

  Only runs when the migrator is invoked with ``allow_destructive=True``.
  """

  destructive: ClassVar[bool] = True

  table: str = ""
  column: str = ""
  type_: Any = None

  def _compiled(self, conn: Connection, type_: Any) -> str:
    return type_.compile(dialect=conn.dialect).upper().replace(" ", "")

  def needed(self, conn: Connection) -> bool:
    for col in sa.inspect(conn).get_columns(self.table):
      if col["name"] == self.column:
        return self._compiled(conn, col["type"]) != self._compiled(conn, self.type_)
    raise KeyError(f"{self.table}.{self.column}")

  def apply(self, ops: Operations, conn: Connection) -> None:
    conn.execute(sa.delete(sa.table(self.table)))
    while _sweep_orphans(conn):
      pass
    if conn.dialect.name == "sqlite":
      with ops.batch_alter_table(self.table, recreate="always") as batch:
        batch.alter_column(self.column, type_=self.type_)
      return
    target = self.type_.compile(dialect=conn.dialect)
    ops.alter_column(self.table, self.column, type_=self.type_, postgresql_using=f"{self.column}::text::{target}")


MIGRATION_PLAN: list[MigrationStep] = [
  CreateTable("0001_users", table="users"),
  CreateTable("0002_sessions", table="sessions"),
  CreateTable("0003_projects", table="projects"),
  CreateTable("0004_project_members", table="project_members"),
  CreateTable("0005_boards", table="boards"),
  CreateTable("0006_columns", table="columns"),
  CreateTable("0007_tasks", table="tasks"),
  # users approved before approval existed keep their access
  AddColumn("0008_users_approval_status", table="users", column="approval_status", server_default=sa.text("'approved'")),
  AddColumn("0009_users_notification_prefs", table="users", column="notification_prefs", server_default=sa.text("'{}'")),
  AddColumn("0010_users_avatar_url", table="users", column="avatar_url"),
  AddColumn("0011_users_last_login_at", table="users", column="last_login_at"),
  AddColumn("0012_users_deleted_at", table="users", column="deleted_at"),
  AddColumn("0013_sessions_created_ip", table="sessions", column="created_ip"),
  AddColumn("0014_sessions_user_agent", table="sessions", column="user_agent"),
  AddColumn("0015_projects_color", table="projects", column="color"),
  AddColumn("0016_projects_is_active", table="projects", column="is_active", server_default=sa.true()),
  AddColumn("0017_boards_visibility", table="boards", column="visibility", server_default=sa.text("'private'")),
  AddColumn("0018_boards_color", table="boards", column="color"),
  AddColumn("0019_boards_settings", table="boards", column="settings", server_default=sa.text("'{}'")),
  AddColumn("0020_boards_created_by", table="boards", column="created_by"),
  AddColumn("0021_columns_color", table="columns", column="color"),
  AddColumn("0022_columns_settings", table="columns", column="settings", server_default=sa.text("'{}'")),
  AddColumn("0023_columns_created_by", table="columns", column="created_by"),
  AddColumn("0024_tasks_priority", table="tasks", column="priority", server_default=sa.text("'medium'")),
  AddColumn("0025_tasks_parent_task_id", table="tasks", column="parent_task_id"),
  AddColumn("0026_tasks_reporter_id", table="tasks", column="reporter_id"),
  AddColumn("0027_tasks_assignee_ids", table="tasks", column="assignee_ids", server_default=sa.text("'[]'")),
  AddColumn("0028_tasks_estimated_hours", table="tasks", column="estimated_hours"),
  AddColumn("0029_tasks_actual_hours", table="tasks", column="actual_hours"),
  AddColumn("0030_tasks_tags", table="tasks", column="tags", server_default=sa.text("'[]'")),
  AddColumn("0031_tasks_settings", table="tasks", column="settings", server_default=sa.text("'{}'")),
  AddColumn("0032_tasks_created_by", table="tasks", column="created_by"),
  CreateIndex("0033_ux_users_email", table="users", index="ux_users_email"),
  CreateIndex("0034_ux_sessions_token_hash", table="sessions", index="ux_sessions_token_hash"),
  CreateIndex("0035_ix_sessions_user_id", table="sessions", index="ix_sessions_user_id"),
  CreateIndex("0036_ix_projects_owner_id", table="projects", index="ix_projects_owner_id"),
  CreateIndex("0037_ix_project_members_user_id", table="project_members", index="ix_project_members_user_id"),
  CreateIndex("0038_ix_boards_project_id", table="boards", index="ix_boards_project_id"),
  CreateIndex("0039_ix_columns_board_position", table="columns", index="ix_columns_board_position"),
  CreateIndex("0040_ix_tasks_column_position", table="tasks", index="ix_tasks_column_position"),
  CreateIndex("0041_ix_tasks_board_id", table="tasks", index="ix_tasks_board_id"),
  CreateIndex("0042_ix_tasks_project_id", table="tasks", index="ix_tasks_project_id"),
  CreateIndex("0043_ix_tasks_parent_task_id", table="tasks", index="ix_tasks_parent_task_id"),
  AddCheckConstraint("0044_ck_users_role", table="users", constraint="ck_users_role"),
  AddCheckConstraint("0045_ck_users_approval_status", table="users", constraint="ck_users_approval_status"),
  AddCheckConstraint("0046_ck_project_members_role", table="project_members", constraint="ck_project_members_role"),
  AddCheckConstraint("0047_ck_boards_visibility", table="boards", constraint="ck_boards_visibility"),
  AddCheckConstraint("0048_ck_columns_position", table="columns", constraint="ck_columns_position"),
  AddCheckConstraint("0049_ck_tasks_status", table="tasks", constraint="ck_tasks_status"),
  AddCheckConstraint("0050_ck_tasks_priority", table="tasks", constraint="ck_tasks_priority"),
]


@dataclass
class MigrationReport:
  applied: list[str] = field(default_factory=list)
  skipped: list[str] = field(default_factory=list)

  @property
  def changed(self) -> bool:
    return bool(self.applied)


class Migrator:
  def __init__(self, storage: StorageAdapter, steps: Sequence[MigrationStep] | None = None) -> None:
    self.storage = storage
    self.steps = list(MIGRATION_PLAN if steps is None else steps)

  @staticmethod
  def _run_step(conn: Connection, step: MigrationStep, allow_destructive: bool) -> bool:
    if not step.needed(conn):
      return False
    if step.destructive and not allow_destructive:
      raise errors.MigrationError(
        step.step_id, f"Migration step {step.step_id} deletes data; rerun with allow_destructive=True"
      )
    step.apply(Operations(MigrationContext.configure(conn)), conn)
    return True

  async def run(self, *, allow_destructive: bool = False) -> MigrationReport:
    report = MigrationReport()
    async with self.storage.migration_connection() as conn:
      for step in self.steps:
        try:
          async with conn.begin():
            applied = await conn.run_sync(self._run_step, step, allow_destructive)
        except errors.MigrationError:
          log.warning("migration halted step=%s reason=destructive", step.step_id)
          raise
        except Exception as exc:
          log.warning("migration failed step=%s error=%s", step.step_id, exc)
          raise errors.MigrationError(step.step_id) from exc
        if applied:
          log.info("migration applied step=%s engine=%s", step.step_id, self.storage.engine_name)
          report.applied.append(step.step_id)
        else:
          report.skipped.append(step.step_id)
    return report
