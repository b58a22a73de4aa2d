from __future__ import annotations

from fastapi import APIRouter, Depends, status

from kanban_api import errors
from kanban_api.access import AccessResolver
from kanban_api.deps import get_current_identity, get_resolver, get_storage
from kanban_api.logs import get_logger
from kanban_api.schemas import (
  PROJECT_FIELDS,
  MemberAddIn,
  MemberOut,
  MemberUpdateIn,
  ProjectCreateIn,
  ProjectOut,
  ProjectUpdateIn,
  envelope,
  to_fields,
)
from kanban_api.sessions import Identity
from kanban_api.storage.base import StorageAdapter
from kanban_api.storage.records import ProjectRecord

router = APIRouter(prefix="/projects", tags=["projects"])
log = get_logger("access")


async def _managed_project(project_id: str, identity: Identity, resolver: AccessResolver) -> ProjectRecord:
  decision = await resolver.require(identity.user_id, "project", project_id, "manage")
  return decision.project


@router.get("")
async def list_projects(identity: Identity = Depends(get_current_identity), resolver: AccessResolver = Depends(get_resolver)) -> dict:
  projects = await resolver.accessible_projects(identity.user_id)
  return envelope([ProjectOut.of(p) for p in projects])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(
  payload: ProjectCreateIn,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
) -> dict:
  name = payload.name.strip()
  if not name:
    raise errors.ValidationError("name is required")
  p = await storage.create_project(name=name, owner_id=identity.user_id, description=payload.description, color=payload.color)
  return envelope(ProjectOut.of(p))


@router.get("/{project_id}")
async def get_project(
  project_id: str,
  identity: Identity = Depends(get_current_identity),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  decision = await resolver.require(identity.user_id, "project", project_id)
  return envelope(ProjectOut.of(decision.project))


@router.patch("/{project_id}")
async def update_project(
  project_id: str,
  payload: ProjectUpdateIn,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  fields = to_fields(payload, PROJECT_FIELDS, nullable={"color"})
  project = (await resolver.require(identity.user_id, "project", project_id)).project
  if "is_active" in fields and project.owner_id != identity.user_id:
    raise errors.ForbiddenError("Only the project owner can activate or deactivate it")
  reactivating = fields.get("is_active") is True
  if set(fields) - {"is_active"} and not reactivating:
    await resolver.require(identity.user_id, "project", project_id, "manage")
  if "name" in fields:
    fields["name"] = fields["name"].strip()
    if not fields["name"]:
      raise errors.ValidationError("name is required")
  if not fields:
    return envelope(ProjectOut.of(project))
  p = await storage.update_project(project.id, **fields)
  if "is_active" in fields and fields["is_active"] != project.is_active:
    log.info("project active=%s project_id=%s by=%s", p.is_active, p.id, identity.user_id)
  return envelope(ProjectOut.of(p))


@router.delete("/{project_id}")
async def delete_project(
  project_id: str,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  project = (await resolver.require(identity.user_id, "project", project_id)).project
  is_owner = project.owner_id == identity.user_id
  if not is_owner:
    # non-owners go through the full rule, which also refuses inactive projects
    await resolver.require(identity.user_id, "project", project_id, "manage")
  if await storage.count_project_boards(project.id) > 0:
    if not is_owner:
      raise errors.ForbiddenError("Only the project owner can deactivate a project with boards")
    p = await storage.update_project(project.id, is_active=False)
    log.info("project deactivated instead of deleted project_id=%s", p.id)
    return envelope({"deleted": False, "deactivated": True, "project": ProjectOut.of(p).model_dump(mode="json")})
  await storage.delete_project(project.id)
  return envelope({"deleted": True, "deactivated": False})


# members


@router.get("/{project_id}/members")
async def list_members(
  project_id: str,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  project = (await resolver.require(identity.user_id, "project", project_id)).project
  return envelope([MemberOut.of(m) for m in await storage.list_members(project.id)])


@router.post("/{project_id}/members", status_code=status.HTTP_201_CREATED)
async def add_member(
  project_id: str,
  payload: MemberAddIn,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  project = await _managed_project(project_id, identity, resolver)
  if payload.userId:
    user = await storage.get_user(payload.userId)
  elif payload.email:
    user = await storage.get_user_by_email(payload.email)
  else:
    raise errors.ValidationError("userId or email is required")
  if user is None or user.is_deleted:
    raise errors.NotFoundError("User not found")
  if user.id == project.owner_id:
    raise errors.ConflictError("User already owns this project")
  m = await storage.add_member(project_id=project.id, user_id=user.id, role=payload.role)
  log.info("member added project_id=%s user_id=%s role=%s by=%s", project.id, user.id, m.role, identity.user_id)
  return envelope(MemberOut.of(m))


@router.patch("/{project_id}/members/{user_id}")
async def update_member(
  project_id: str,
  user_id: str,
  payload: MemberUpdateIn,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  project = await _managed_project(project_id, identity, resolver)
  current = await storage.get_member(project.id, user_id)
  if current is None:
    raise errors.NotFoundError("Member not found")
  if current.user_id == project.owner_id or current.role == "owner":
    raise errors.ForbiddenError("The owner's membership cannot be changed")
  m = await storage.update_member_role(project.id, current.user_id, payload.role)
  return envelope(MemberOut.of(m))


@router.delete("/{project_id}/members/{user_id}")
async def remove_member(
  project_id: str,
  user_id: str,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  project = await _managed_project(project_id, identity, resolver)
  current = await storage.get_member(project.id, user_id)
  if current is None:
    raise errors.NotFoundError("Member not found")
  if current.user_id == project.owner_id or current.role == "owner":
    raise errors.ForbiddenError("The owner's membership cannot be removed")
  await storage.remove_member(project.id, current.user_id)
  log.info("member removed project_id=%s user_id=%s by=%s", project.id, current.user_id, identity.user_id)
  return envelope({"ok": True})
