"""
Session authenticator.

Owns every path that creates or validates a session token. Tokens are signed
JWTs, but the claims are never trusted alone: each resolve looks the session
row up by the keyed token hash, so deleting the row revokes the token.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone

from kanban_api import errors
from kanban_api.config import Settings
from kanban_api.logs import get_logger
from kanban_api.security import (
  TokenDecodeError,
  decode_session_token,
  encode_session_token,
  hash_password,
  new_session_expires_at,
  token_hash,
  verify_password,
)
from kanban_api.storage.base import StorageAdapter
from kanban_api.storage.records import SessionRecord, UserRecord

log = get_logger("auth")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class Identity:
  user: UserRecord
  session: SessionRecord
  token: str

  @property
  def user_id(self) -> str:
    return self.user.id

  @property
  def role(self) -> str:
    return self.user.role


@dataclass(frozen=True)
class LoginResult:
  token: str
  expires_at: datetime
  user: UserRecord


class SessionAuthenticator:
  def __init__(self, storage: StorageAdapter, settings: Settings) -> None:
    self.storage = storage
    self.settings = settings

  def _hash(self, token: str) -> str:
    return token_hash(token, self.settings.app_secret)

  def _check_password(self, password: str) -> None:
    if len(password or "") < self.settings.min_password_length:
      raise errors.ValidationError(f"Password must be at least {self.settings.min_password_length} characters")

  async def register(self, email: str, password: str, name: str) -> UserRecord:
    email_norm = (email or "").strip().lower()
    if not EMAIL_RE.match(email_norm):
      raise errors.ValidationError("Invalid email address")
    display = (name or "").strip()
    if not display:
      raise errors.ValidationError("name is required")
    self._check_password(password)
    if await self.storage.get_user_by_email(email_norm) is not None:
      raise errors.ConflictError("Email already registered")
    approval = "approved" if self.settings.auto_approve_users else "pending"
    user = await self.storage.create_user(
      email=email_norm,
      name=display,
      password_hash=hash_password(password),
      approval_status=approval,
    )
    log.info("user registered user_id=%s approval=%s", user.id, approval)
    return user

  async def login(
    self,
    email: str,
    password: str,
    *,
    created_ip: str | None = None,
    user_agent: str | None = None,
  ) -> LoginResult:
    email_norm = (email or "").strip().lower()
    user = await self.storage.get_user_by_email(email_norm) if email_norm else None
    if user is None or user.is_deleted or not verify_password(password or "", user.password_hash):
      log.warning("login failed email=%s ip=%s", email_norm, created_ip)
      raise errors.AuthError("Invalid credentials")
    if self.settings.require_approval_for_login and user.role != "admin" and user.approval_status != "approved":
      log.warning("login refused user_id=%s approval=%s", user.id, user.approval_status)
      raise errors.AuthError("Account is not approved")

    expires_at = new_session_expires_at(self.settings.session_ttl_hours)
    token = encode_session_token(
      user_id=user.id,
      email=user.email,
      role=user.role,
      expires_at=expires_at,
      secret=self.settings.app_secret,
    )
    # one transaction: earlier sessions go, the new one lands
    await self.storage.replace_user_sessions(
      user_id=user.id,
      token_hash=self._hash(token),
      expires_at=expires_at,
      created_ip=created_ip,
      user_agent=user_agent,
    )
    user = await self.storage.update_user(user.id, last_login_at=datetime.now(timezone.utc))
    log.info("login ok user_id=%s ip=%s", user.id, created_ip)
    return LoginResult(token=token, expires_at=expires_at, user=user)

  async def resolve(self, token: str | None) -> Identity:
    if not token:
      raise errors.AuthError("Not authenticated")
    try:
      claims = decode_session_token(token, self.settings.app_secret)
    except TokenDecodeError:
      raise errors.AuthError("Invalid session")
    session = await self.storage.get_session_by_token_hash(self._hash(token))
    if session is None or claims.get("sub") != session.user_id:
      raise errors.AuthError("Invalid session")
    if session.expires_at <= datetime.now(timezone.utc):
      raise errors.AuthError("Session expired")
    user = await self.storage.get_user(session.user_id)
    if user is None or user.is_deleted:
      raise errors.AuthError("Invalid session")
    return Identity(user=user, session=session, token=token)

  async def logout(self, token: str | None) -> bool:
    if not token:
      return False
    removed = await self.storage.delete_session_by_token_hash(self._hash(token))
    if removed:
      log.info("logout ok")
    return removed

  async def change_password(self, identity: Identity, current_password: str, new_password: str) -> UserRecord:
    if not verify_password(current_password or "", identity.user.password_hash):
      raise errors.AuthError("Invalid credentials")
    self._check_password(new_password)
    user = await self.storage.update_user(identity.user_id, password_hash=hash_password(new_password))
    dropped = await self.storage.delete_user_sessions(identity.user_id, keep_token_hash=identity.session.token_hash)
    log.info("password changed user_id=%s sessions_dropped=%s", user.id, dropped)
    return user
