from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from kanban_api import errors
from kanban_api.access import AccessResolver
from kanban_api.deps import get_current_identity, get_resolver, get_storage
from kanban_api.schemas import ColumnCreateIn, ColumnOut, ColumnUpdateIn, envelope, to_fields
from kanban_api.sessions import Identity
from kanban_api.storage.base import StorageAdapter

router = APIRouter(prefix="/columns", tags=["columns"])


@router.get("")
async def list_columns(
  board_id: str | None = Query(default=None, alias="boardId"),
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  if not board_id:
    raise errors.ValidationError("boardId is required")
  board = (await resolver.require(identity.user_id, "board", board_id)).target
  return envelope([ColumnOut.of(c) for c in await storage.list_columns(board.id)])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_column(
  payload: ColumnCreateIn,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  board = (await resolver.require(identity.user_id, "board", payload.boardId, "write")).target
  title = payload.title.strip()
  if not title:
    raise errors.ValidationError("title is required")
  c = await storage.create_column(
    board_id=board.id,
    title=title,
    color=payload.color,
    settings=payload.settings,
    created_by=identity.user_id,
  )
  return envelope(ColumnOut.of(c))


@router.get("/{column_id}")
async def get_column(
  column_id: str,
  identity: Identity = Depends(get_current_identity),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  decision = await resolver.require(identity.user_id, "column", column_id)
  return envelope(ColumnOut.of(decision.target))


@router.patch("/{column_id}")
async def update_column(
  column_id: str,
  payload: ColumnUpdateIn,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  column = (await resolver.require(identity.user_id, "column", column_id, "write")).target
  fields = to_fields(payload, {}, nullable={"color"})
  if "title" in fields:
    fields["title"] = fields["title"].strip()
    if not fields["title"]:
      raise errors.ValidationError("title is required")
  c = await storage.update_column(column.id, **fields) if fields else column
  return envelope(ColumnOut.of(c))


@router.delete("/{column_id}")
async def delete_column(
  column_id: str,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  column = (await resolver.require(identity.user_id, "column", column_id, "write")).target
  await storage.delete_column(column.id)
  return envelope({"ok": True})
