from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from kanban_api import errors
from kanban_api.access import AccessResolver
from kanban_api.deps import get_current_identity, get_resolver, get_storage
from kanban_api.schemas import (
  BoardCreateIn,
  BoardOut,
  BoardUpdateIn,
  ColumnOut,
  ColumnReorderIn,
  PublicBoardOut,
  envelope,
  to_fields,
)
from kanban_api.sessions import Identity
from kanban_api.storage.base import StorageAdapter

router = APIRouter(prefix="/boards", tags=["boards"])


@router.get("")
async def list_boards(
  project_id: str | None = Query(default=None, alias="projectId"),
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  if project_id is not None:
    project = (await resolver.require(identity.user_id, "project", project_id)).project
    projects = [project]
  else:
    projects = await resolver.accessible_projects(identity.user_id)
  out: list[BoardOut] = []
  for p in projects:
    out.extend(BoardOut.of(b) for b in await storage.list_boards(p.id))
  return envelope(out)


@router.get("/public")
async def list_public_boards(
  _: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
) -> dict:
  return envelope([PublicBoardOut.of(b) for b in await storage.list_public_boards()])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_board(
  payload: BoardCreateIn,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  project = (await resolver.require(identity.user_id, "project", payload.projectId, "write")).project
  name = payload.name.strip()
  if not name:
    raise errors.ValidationError("name is required")
  b = await storage.create_board(
    project_id=project.id,
    name=name,
    description=payload.description,
    visibility=payload.visibility,
    color=payload.color,
    settings=payload.settings,
    created_by=identity.user_id,
  )
  return envelope(BoardOut.of(b))


@router.get("/{board_id}")
async def get_board(
  board_id: str,
  identity: Identity = Depends(get_current_identity),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  decision = await resolver.require(identity.user_id, "board", board_id)
  return envelope(BoardOut.of(decision.target))


@router.patch("/{board_id}")
async def update_board(
  board_id: str,
  payload: BoardUpdateIn,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  board = (await resolver.require(identity.user_id, "board", board_id, "write")).target
  fields = to_fields(payload, {}, nullable={"color"})
  if "name" in fields:
    fields["name"] = fields["name"].strip()
    if not fields["name"]:
      raise errors.ValidationError("name is required")
  b = await storage.update_board(board.id, **fields) if fields else board
  return envelope(BoardOut.of(b))


@router.delete("/{board_id}")
async def delete_board(
  board_id: str,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  board = (await resolver.require(identity.user_id, "board", board_id, "write")).target
  await storage.delete_board(board.id)
  return envelope({"ok": True})


@router.post("/{board_id}/columns/reorder")
async def reorder_columns(
  board_id: str,
  payload: ColumnReorderIn,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  board = (await resolver.require(identity.user_id, "board", board_id, "write")).target
  cols = await storage.reorder_columns(board.id, payload.columnIds)
  return envelope([ColumnOut.of(c) for c in cols])
