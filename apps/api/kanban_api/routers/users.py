from __future__ import annotations

from fastapi import APIRouter, Depends

from kanban_api import errors
from kanban_api.deps import get_authenticator, get_current_identity, get_storage, require_admin
from kanban_api.logs import get_logger
from kanban_api.schemas import (
  PROFILE_FIELDS,
  ApprovalIn,
  PasswordChangeIn,
  ProfileUpdateIn,
  UserOut,
  envelope,
  to_fields,
)
from kanban_api.sessions import Identity, SessionAuthenticator
from kanban_api.storage.base import StorageAdapter

router = APIRouter(prefix="/users", tags=["users"])
log = get_logger("auth")


@router.get("")
async def list_users(
  include_deleted: bool = False,
  _: Identity = Depends(require_admin),
  storage: StorageAdapter = Depends(get_storage),
) -> dict:
  users = await storage.list_users(include_deleted=include_deleted)
  return envelope([UserOut.of(u) for u in users])


@router.patch("/me")
async def update_me(
  payload: ProfileUpdateIn,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
) -> dict:
  fields = to_fields(payload, PROFILE_FIELDS, nullable={"avatarUrl"})
  if "name" in fields:
    fields["name"] = fields["name"].strip()
    if not fields["name"]:
      raise errors.ValidationError("name is required")
  user = await storage.update_user(identity.user_id, **fields) if fields else identity.user
  return envelope(UserOut.of(user))


@router.post("/me/password")
async def change_password(
  payload: PasswordChangeIn,
  identity: Identity = Depends(get_current_identity),
  authenticator: SessionAuthenticator = Depends(get_authenticator),
) -> dict:
  user = await authenticator.change_password(identity, payload.currentPassword, payload.newPassword)
  return envelope(UserOut.of(user))


@router.post("/{user_id}/approval")
async def set_approval(
  user_id: str,
  payload: ApprovalIn,
  admin: Identity = Depends(require_admin),
  storage: StorageAdapter = Depends(get_storage),
) -> dict:
  target = await storage.get_user(user_id)
  if target is None or target.is_deleted:
    raise errors.NotFoundError("User not found")
  user = await storage.update_user(target.id, approval_status=payload.status)
  log.info("approval changed user_id=%s status=%s by=%s", user.id, payload.status, admin.user_id)
  return envelope(UserOut.of(user))


@router.delete("/{user_id}")
async def delete_user(
  user_id: str,
  admin: Identity = Depends(require_admin),
  storage: StorageAdapter = Depends(get_storage),
) -> dict:
  target = await storage.get_user(user_id)
  if target is None:
    raise errors.NotFoundError("User not found")
  if target.id == admin.user_id:
    raise errors.ValidationError("Cannot delete your own account")
  user = await storage.soft_delete_user(target.id)
  log.info("user deleted user_id=%s by=%s", user.id, admin.user_id)
  return envelope(UserOut.of(user))
