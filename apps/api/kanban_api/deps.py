from __future__ import annotations

from fastapi import Cookie, Depends, Request

from kanban_api import errors
from kanban_api.access import AccessResolver
from kanban_api.config import Settings
from kanban_api.security import SESSION_COOKIE_NAME
from kanban_api.sessions import Identity, SessionAuthenticator
from kanban_api.storage.base import StorageAdapter


def get_settings(request: Request) -> Settings:
  return request.app.state.settings


def get_storage(request: Request) -> StorageAdapter:
  return request.app.state.storage


def get_authenticator(request: Request) -> SessionAuthenticator:
  return request.app.state.authenticator


def get_resolver(request: Request) -> AccessResolver:
  return request.app.state.resolver


def request_token(request: Request, cookie_token: str | None) -> str | None:
  auth = request.headers.get("authorization")
  if auth and auth.lower().startswith("bearer "):
    token = auth.split(" ", 1)[1].strip()
    if token:
      return token
  return cookie_token or None


async def get_current_identity(
  request: Request,
  authenticator: SessionAuthenticator = Depends(get_authenticator),
  session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> Identity:
  return await authenticator.resolve(request_token(request, session_token))


async def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
  if identity.role != "admin":
    raise errors.ForbiddenError("Admin only")
  return identity
