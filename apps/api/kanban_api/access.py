"""
Access resolver.

Every entity climbs to its project; the project rule is the only rule:
the caller must be the project's owner or hold a membership row. Managing
membership or deleting the project additionally needs the owner or a
membership role of ``owner``/``admin``. On a deactivated project only the
owner keeps read access and nobody may write.

A missing entity yields ``not_found``; an existing one the caller can't use
yields ``forbidden``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from kanban_api import errors
from kanban_api.logs import get_logger
from kanban_api.storage.base import StorageAdapter
from kanban_api.storage.records import ProjectRecord

log = get_logger("access")

ENTITY_KINDS = ("project", "board", "column", "task")
ACTIONS = ("read", "write", "manage")
MANAGER_MEMBER_ROLES = {"owner", "admin"}


@dataclass(frozen=True)
class AccessDecision:
  granted: bool
  reason: str | None = None  # not_found | forbidden
  project: ProjectRecord | None = None
  target: Any = None

  def raise_if_denied(self, kind: str) -> None:
    if self.granted:
      return
    if self.reason == "not_found":
      raise errors.NotFoundError(f"{kind.capitalize()} not found")
    raise errors.ForbiddenError()


class AccessResolver:
  def __init__(self, storage: StorageAdapter) -> None:
    self.storage = storage

  async def locate(self, kind: str, entity_id: str) -> tuple[Any, ProjectRecord | None]:
    """Fetch the target and the project it belongs to; ``(None, None)`` when absent."""
    if kind not in ENTITY_KINDS:
      raise ValueError(f"unknown entity kind {kind!r}")
    if kind == "project":
      p = await self.storage.get_project(entity_id)
      return p, p
    if kind == "task":
      t = await self.storage.get_task(entity_id)
      if t is None:
        return None, None
      return t, await self.storage.get_project(t.project_id)
    if kind == "column":
      target = await self.storage.get_column(entity_id)
      board = await self.storage.get_board(target.board_id) if target else None
    else:
      target = board = await self.storage.get_board(entity_id)
    if target is None or board is None:
      return None, None
    return target, await self.storage.get_project(board.project_id)

  async def has_project_access(self, user_id: str, project: ProjectRecord) -> bool:
    if project.owner_id == user_id:
      return True
    return await self.storage.is_project_member(project.id, user_id)

  async def can_manage(self, user_id: str, project: ProjectRecord) -> bool:
    if project.owner_id == user_id:
      return True
    m = await self.storage.get_member(project.id, user_id)
    return m is not None and m.role in MANAGER_MEMBER_ROLES

  async def check(self, user_id: str, kind: str, entity_id: str) -> bool:
    """Owner-or-member relation between the caller and the entity's project."""
    _, project = await self.locate(kind, entity_id)
    if project is None:
      return False
    return await self.has_project_access(user_id, project)

  async def decide(self, user_id: str, kind: str, entity_id: str, action: str = "read") -> AccessDecision:
    if action not in ACTIONS:
      raise ValueError(f"unknown action {action!r}")
    target, project = await self.locate(kind, entity_id)
    if target is None or project is None:
      return AccessDecision(False, "not_found")

    is_owner = project.owner_id == user_id
    if action == "manage":
      allowed = await self.can_manage(user_id, project)
    else:
      allowed = await self.has_project_access(user_id, project)
    if allowed and not project.is_active:
      # deactivated: owner may look, nobody may change
      allowed = is_owner and action == "read"

    if not allowed:
      log.info("access denied user_id=%s kind=%s id=%s action=%s", user_id, kind, entity_id, action)
      return AccessDecision(False, "forbidden", project=project)
    return AccessDecision(True, project=project, target=target)

  async def require(self, user_id: str, kind: str, entity_id: str, action: str = "read") -> AccessDecision:
    decision = await self.decide(user_id, kind, entity_id, action)
    decision.raise_if_denied(kind)
    return decision

  async def accessible_projects(self, user_id: str) -> list[ProjectRecord]:
    """Projects the caller may read, honouring the deactivation rule."""
    projects = await self.storage.list_projects_for_user(user_id)
    return [p for p in projects if p.is_active or p.owner_id == user_id]
