"""Column types that hide engine differences behind one value shape."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.types import TypeDecorator


def new_id() -> str:
  return str(uuid.uuid4())


def normalize_id(value: object) -> str | None:
  """Canonical lowercase UUID string, or None when the value is not an id."""
  if value is None:
    return None
  try:
    return str(uuid.UUID(str(value).strip()))
  except (ValueError, AttributeError, TypeError):
    return None


def as_utc(value: datetime | None) -> datetime | None:
  if value is None:
    return None
  if value.tzinfo is None:
    return value.replace(tzinfo=timezone.utc)
  return value.astimezone(timezone.utc)


class EntityId(TypeDecorator):
  """Native UUID on PostgreSQL, CHAR(36) text elsewhere; always str in Python."""

  impl = String(36)
  cache_ok = True

  def load_dialect_impl(self, dialect):
    if dialect.name == "postgresql":
      return dialect.type_descriptor(UUID(as_uuid=False))
    return dialect.type_descriptor(String(36))

  def process_bind_param(self, value, dialect):
    if value is None:
      return None
    return str(value)

  def process_result_value(self, value, dialect):
    if value is None:
      return None
    return str(value)


class JsonBlob(TypeDecorator):
  """
  JSON document column.

  JSONB on PostgreSQL, serialized text elsewhere. Reads never fail: a NULL,
  unparsable, or wrong-typed stored value comes back as ``kind()``.
  """

  impl = Text
  cache_ok = True

  def __init__(self, kind: type = dict) -> None:
    super().__init__()
    self.kind = kind

  def load_dialect_impl(self, dialect):
    if dialect.name == "postgresql":
      return dialect.type_descriptor(JSONB())
    return dialect.type_descriptor(Text())

  def coerce(self, value: Any) -> Any:
    if isinstance(value, self.kind):
      return value
    return self.kind()

  def process_bind_param(self, value, dialect):
    value = self.coerce(value)
    if dialect.name == "postgresql":
      return value
    return json.dumps(value)

  def process_result_value(self, value, dialect):
    if isinstance(value, (str, bytes)):
      try:
        value = json.loads(value)
      except ValueError:
        return self.kind()
    return self.coerce(value)
