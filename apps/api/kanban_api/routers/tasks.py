from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from kanban_api import errors
from kanban_api.access import AccessResolver
from kanban_api.deps import get_current_identity, get_resolver, get_storage
from kanban_api.schemas import TASK_FIELDS, TaskCreateIn, TaskOut, TaskUpdateIn, envelope, to_fields
from kanban_api.sessions import Identity
from kanban_api.storage.base import StorageAdapter
from kanban_api.storage.records import ProjectRecord

router = APIRouter(prefix="/tasks", tags=["tasks"])

NULLABLE_TASK_FIELDS = {"reporterId", "parentTaskId", "dueDate", "estimatedHours", "actualHours"}


async def _check_assignees(
  assignee_ids: list[str], project: ProjectRecord, storage: StorageAdapter, resolver: AccessResolver
) -> None:
  for raw in assignee_ids:
    u = await storage.get_user(raw)
    if u is None or u.is_deleted:
      raise errors.DanglingReferenceError("Assignee does not exist")
    if not await resolver.has_project_access(u.id, project):
      raise errors.ValidationError("Assignee has no access to this project")


@router.get("")
async def list_tasks(
  project_id: str | None = Query(default=None, alias="projectId"),
  board_id: str | None = Query(default=None, alias="boardId"),
  column_id: str | None = Query(default=None, alias="columnId"),
  parent_task_id: str | None = Query(default=None, alias="parentTaskId"),
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  filters = {"project": project_id, "board": board_id, "column": column_id, "task": parent_task_id}
  given = {kind: raw for kind, raw in filters.items() if raw is not None}
  # every requested parent is authorized on its own
  for kind, raw in given.items():
    await resolver.require(identity.user_id, kind, raw)
  if given:
    tasks = await storage.list_tasks(
      project_id=project_id, board_id=board_id, column_id=column_id, parent_task_id=parent_task_id
    )
  else:
    tasks = []
    for p in await resolver.accessible_projects(identity.user_id):
      tasks.extend(await storage.list_tasks(project_id=p.id))
  return envelope([TaskOut.of(t) for t in tasks])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_task(
  payload: TaskCreateIn,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  project = (await resolver.require(identity.user_id, "column", payload.columnId, "write")).project
  title = payload.title.strip()
  if not title:
    raise errors.ValidationError("title is required")
  fields = to_fields(payload, TASK_FIELDS, nullable=NULLABLE_TASK_FIELDS)
  fields.pop("title")
  column_id = fields.pop("column_id")
  if fields.get("assignee_ids"):
    await _check_assignees(fields["assignee_ids"], project, storage, resolver)
  t = await storage.create_task(title=title, column_id=column_id, created_by=identity.user_id, **fields)
  return envelope(TaskOut.of(t))


@router.get("/{task_id}")
async def get_task(
  task_id: str,
  identity: Identity = Depends(get_current_identity),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  decision = await resolver.require(identity.user_id, "task", task_id)
  return envelope(TaskOut.of(decision.target))


@router.patch("/{task_id}")
async def update_task(
  task_id: str,
  payload: TaskUpdateIn,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  decision = await resolver.require(identity.user_id, "task", task_id, "write")
  task = decision.target
  fields = to_fields(payload, TASK_FIELDS, nullable=NULLABLE_TASK_FIELDS)
  if "title" in fields:
    fields["title"] = fields["title"].strip()
    if not fields["title"]:
      raise errors.ValidationError("title is required")
  if "column_id" in fields and fields["column_id"] != task.column_id:
    await resolver.require(identity.user_id, "column", fields["column_id"], "write")
  if fields.get("assignee_ids"):
    await _check_assignees(fields["assignee_ids"], decision.project, storage, resolver)
  t = await storage.update_task(task.id, **fields) if fields else task
  return envelope(TaskOut.of(t))


@router.delete("/{task_id}")
async def delete_task(
  task_id: str,
  identity: Identity = Depends(get_current_identity),
  storage: StorageAdapter = Depends(get_storage),
  resolver: AccessResolver = Depends(get_resolver),
) -> dict:
  task = (await resolver.require(identity.user_id, "task", task_id, "write")).target
  await storage.delete_task(task.id)
  return envelope({"ok": True})
