from __future__ import annotations

import uuid

import pytest

from kanban_api import errors
from kanban_api.access import AccessResolver
from kanban_api.storage.base import StorageAdapter
from conftest import new_user


async def _world(storage: StorageAdapter) -> dict:
  owner = await new_user(storage, "owner@example.com")
  member = await new_user(storage, "member@example.com")
  admin_member = await new_user(storage, "admin-member@example.com")
  outsider = await new_user(storage, "outsider@example.com")
  sysadmin = await new_user(storage, "root@example.com", role="admin")
  project = await storage.create_project(name="P1", owner_id=owner.id)
  await storage.add_member(project_id=project.id, user_id=member.id, role="member")
  await storage.add_member(project_id=project.id, user_id=admin_member.id, role="admin")
  board = await storage.create_board(project_id=project.id, name="B", visibility="public")
  column = await storage.create_column(board_id=board.id, title="C")
  task = await storage.create_task(title="T", column_id=column.id)
  return {
    "owner": owner,
    "member": member,
    "admin_member": admin_member,
    "outsider": outsider,
    "sysadmin": sysadmin,
    "project": project,
    "targets": [("project", project.id), ("board", board.id), ("column", column.id), ("task", task.id)],
  }


@pytest.mark.anyio
async def test_check_is_owner_or_member_at_every_level(any_storage: StorageAdapter) -> None:
  w = await _world(any_storage)
  resolver = AccessResolver(any_storage)
  expected = {"owner": True, "member": True, "admin_member": True, "outsider": False, "sysadmin": False}
  for who, granted in expected.items():
    for kind, oid in w["targets"]:
      assert await resolver.check(w[who].id, kind, oid) is granted, (who, kind)


@pytest.mark.anyio
async def test_ownership_alone_is_enough(any_storage: StorageAdapter) -> None:
  w = await _world(any_storage)
  await any_storage.remove_member(w["project"].id, w["owner"].id)
  resolver = AccessResolver(any_storage)
  for kind, oid in w["targets"]:
    assert await resolver.check(w["owner"].id, kind, oid)
    assert (await resolver.decide(w["owner"].id, kind, oid, "manage")).granted


@pytest.mark.anyio
async def test_missing_vs_forbidden(any_storage: StorageAdapter) -> None:
  w = await _world(any_storage)
  resolver = AccessResolver(any_storage)
  for kind in ("project", "board", "column", "task"):
    d = await resolver.decide(w["owner"].id, kind, str(uuid.uuid4()))
    assert (d.granted, d.reason) == (False, "not_found")
    with pytest.raises(errors.NotFoundError):
      await resolver.require(w["owner"].id, kind, "not-an-id")
  for kind, oid in w["targets"]:
    d = await resolver.decide(w["outsider"].id, kind, oid)
    assert (d.granted, d.reason) == (False, "forbidden")
    with pytest.raises(errors.ForbiddenError):
      await resolver.require(w["outsider"].id, kind, oid)


@pytest.mark.anyio
async def test_manage_needs_owner_or_admin_role(any_storage: StorageAdapter) -> None:
  w = await _world(any_storage)
  resolver = AccessResolver(any_storage)
  pid = w["project"].id
  assert (await resolver.decide(w["owner"].id, "project", pid, "manage")).granted
  assert (await resolver.decide(w["admin_member"].id, "project", pid, "manage")).granted
  assert not (await resolver.decide(w["member"].id, "project", pid, "manage")).granted
  assert (await resolver.decide(w["member"].id, "project", pid, "write")).granted


@pytest.mark.anyio
async def test_deactivated_project_is_read_only_for_owner(any_storage: StorageAdapter) -> None:
  w = await _world(any_storage)
  await any_storage.update_project(w["project"].id, is_active=False)
  resolver = AccessResolver(any_storage)
  for kind, oid in w["targets"]:
    assert (await resolver.decide(w["owner"].id, kind, oid, "read")).granted
    assert not (await resolver.decide(w["owner"].id, kind, oid, "write")).granted
    for who in ("member", "admin_member"):
      d = await resolver.decide(w[who].id, kind, oid, "read")
      assert (d.granted, d.reason) == (False, "forbidden")
  # the relation itself is unchanged
  assert await resolver.check(w["member"].id, "project", w["project"].id)
  assert [p.id for p in await resolver.accessible_projects(w["member"].id)] == []
  assert [p.id for p in await resolver.accessible_projects(w["owner"].id)] == [w["project"].id]


@pytest.mark.anyio
async def test_created_children_are_accessible_to_creator(any_storage: StorageAdapter) -> None:
  w = await _world(any_storage)
  resolver = AccessResolver(any_storage)
  member = w["member"]
  board = await any_storage.create_board(project_id=w["project"].id, name="Mine", created_by=member.id)
  column = await any_storage.create_column(board_id=board.id, title="Mine", created_by=member.id)
  task = await any_storage.create_task(title="Mine", column_id=column.id, created_by=member.id)
  for kind, oid in (("board", board.id), ("column", column.id), ("task", task.id)):
    assert await resolver.check(member.id, kind, oid)
  # creating something doesn't survive losing membership
  await any_storage.remove_member(w["project"].id, member.id)
  assert not await resolver.check(member.id, "board", board.id)
