"""
Error taxonomy shared by every layer.

Each class carries the HTTP status and the stable machine code the request
handlers render into the response envelope. Messages are safe to show to
callers; engine error text never ends up in one.
"""

from __future__ import annotations


class KanbanError(Exception):
  status_code = 500
  code = "error"
  default_message = "Request failed"

  def __init__(self, message: str | None = None) -> None:
    self.message = message or self.default_message
    super().__init__(self.message)


class ValidationError(KanbanError):
  status_code = 400
  code = "validation_error"
  default_message = "Invalid input"


class AuthError(KanbanError):
  status_code = 401
  code = "unauthorized"
  default_message = "Not authenticated"


class ForbiddenError(KanbanError):
  status_code = 403
  code = "forbidden"
  default_message = "Access denied"


class NotFoundError(KanbanError):
  status_code = 404
  code = "not_found"
  default_message = "Not found"


class ConflictError(KanbanError):
  status_code = 409
  code = "conflict"
  default_message = "Already exists"


class DanglingReferenceError(KanbanError):
  status_code = 400
  code = "invalid_reference"
  default_message = "Referenced entity does not exist"


class StorageError(KanbanError):
  status_code = 500
  code = "storage_error"
  default_message = "Storage failure"


class MigrationError(KanbanError):
  code = "migration_error"
  default_message = "Migration failed"

  def __init__(self, step_id: str, message: str | None = None) -> None:
    self.step_id = step_id
    super().__init__(message or f"Migration step {step_id} failed")
