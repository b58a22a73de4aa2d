from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from kanban_api import errors
from kanban_api.models import Session as DbSession
from kanban_api.security import decode_session_token, token_hash
from kanban_api.sessions import SessionAuthenticator
from kanban_api.storage.base import StorageAdapter
from conftest import PASSWORD, make_settings


@pytest.mark.anyio
async def test_register_login_resolve(authenticator: SessionAuthenticator) -> None:
  alice = await authenticator.register("alice@example.com", "pw1", "Alice")
  assert alice.password_hash != "pw1"
  result = await authenticator.login("alice@example.com", "pw1")
  identity = await authenticator.resolve(result.token)
  assert identity.user_id == alice.id
  assert identity.role == "user"

  claims = decode_session_token(result.token, authenticator.settings.app_secret)
  assert claims["sub"] == alice.id
  assert claims["email"] == "alice@example.com"
  assert {"iat", "exp", "jti", "role"} <= set(claims)


@pytest.mark.anyio
async def test_register_validation(authenticator: SessionAuthenticator) -> None:
  await authenticator.register("dupe@example.com", PASSWORD, "Dupe")
  with pytest.raises(errors.ConflictError):
    await authenticator.register("DUPE@example.com", PASSWORD, "Dupe")
  with pytest.raises(errors.ValidationError):
    await authenticator.register("not-an-email", PASSWORD, "X")
  with pytest.raises(errors.ValidationError):
    await authenticator.register("empty@example.com", "", "X")
  with pytest.raises(errors.ValidationError):
    await authenticator.register("noname@example.com", PASSWORD, "   ")


@pytest.mark.anyio
async def test_minimum_password_length_is_configurable(any_storage: StorageAdapter) -> None:
  strict = SessionAuthenticator(any_storage, make_settings("sqlite+aiosqlite://", min_password_length=6))
  with pytest.raises(errors.ValidationError):
    await strict.register("short@example.com", "12345", "Short")
  await strict.register("long@example.com", "123456", "Long")


@pytest.mark.anyio
async def test_approval_default_follows_settings(any_storage: StorageAdapter) -> None:
  manual = SessionAuthenticator(any_storage, make_settings("sqlite+aiosqlite://", auto_approve_users=False))
  u = await manual.register("pending@example.com", PASSWORD, "Pending")
  assert u.approval_status == "pending"
  # approval only gates login when asked to
  await manual.login("pending@example.com", PASSWORD)

  strict = SessionAuthenticator(
    any_storage, make_settings("sqlite+aiosqlite://", auto_approve_users=False, require_approval_for_login=True)
  )
  with pytest.raises(errors.AuthError):
    await strict.login("pending@example.com", PASSWORD)
  await any_storage.update_user(u.id, approval_status="approved")
  await strict.login("pending@example.com", PASSWORD)


@pytest.mark.anyio
async def test_login_failures(authenticator: SessionAuthenticator) -> None:
  await authenticator.register("bob@example.com", PASSWORD, "Bob")
  with pytest.raises(errors.AuthError):
    await authenticator.login("bob@example.com", "wrong-password")
  with pytest.raises(errors.AuthError):
    await authenticator.login("nobody@example.com", PASSWORD)


@pytest.mark.anyio
async def test_second_login_supersedes_first(authenticator: SessionAuthenticator) -> None:
  await authenticator.register("carol@example.com", PASSWORD, "Carol")
  first = await authenticator.login("carol@example.com", PASSWORD)
  second = await authenticator.login("carol@example.com", PASSWORD)
  assert first.token != second.token
  with pytest.raises(errors.AuthError):
    await authenticator.resolve(first.token)
  assert (await authenticator.resolve(second.token)).user.email == "carol@example.com"


@pytest.mark.anyio
async def test_expired_row_fails_even_though_it_exists(authenticator: SessionAuthenticator) -> None:
  await authenticator.register("dave@example.com", PASSWORD, "Dave")
  result = await authenticator.login("dave@example.com", PASSWORD)
  h = token_hash(result.token, authenticator.settings.app_secret)
  async with authenticator.storage.engine.begin() as conn:
    await conn.execute(
      update(DbSession).where(DbSession.token_hash == h).values(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    )
  assert await authenticator.storage.get_session_by_token_hash(h) is not None
  with pytest.raises(errors.AuthError):
    await authenticator.resolve(result.token)


@pytest.mark.anyio
async def test_forged_and_foreign_tokens_fail(authenticator: SessionAuthenticator) -> None:
  from kanban_api.security import encode_session_token

  u = await authenticator.register("erin@example.com", PASSWORD, "Erin")
  later = datetime.now(timezone.utc) + timedelta(hours=1)
  # well formed and correctly signed, but never issued through login
  forged = encode_session_token(user_id=u.id, email=u.email, role="admin", expires_at=later, secret=authenticator.settings.app_secret)
  with pytest.raises(errors.AuthError):
    await authenticator.resolve(forged)
  wrong_key = encode_session_token(user_id=u.id, email=u.email, role="user", expires_at=later, secret="another-secret")
  with pytest.raises(errors.AuthError):
    await authenticator.resolve(wrong_key)
  for junk in (None, "", "abc.def.ghi"):
    with pytest.raises(errors.AuthError):
      await authenticator.resolve(junk)


@pytest.mark.anyio
async def test_logout_is_idempotent(authenticator: SessionAuthenticator) -> None:
  await authenticator.register("frank@example.com", PASSWORD, "Frank")
  result = await authenticator.login("frank@example.com", PASSWORD)
  assert await authenticator.logout(result.token)
  assert not await authenticator.logout(result.token)
  assert not await authenticator.logout(None)
  with pytest.raises(errors.AuthError):
    await authenticator.resolve(result.token)


@pytest.mark.anyio
async def test_soft_deleted_user_cannot_log_in_or_resolve(authenticator: SessionAuthenticator) -> None:
  u = await authenticator.register("gina@example.com", PASSWORD, "Gina")
  result = await authenticator.login("gina@example.com", PASSWORD)
  await authenticator.storage.soft_delete_user(u.id)
  with pytest.raises(errors.AuthError):
    await authenticator.resolve(result.token)
  with pytest.raises(errors.AuthError):
    await authenticator.login("gina@example.com", PASSWORD)


@pytest.mark.anyio
async def test_change_password_keeps_only_current_session(authenticator: SessionAuthenticator) -> None:
  u = await authenticator.register("hank@example.com", PASSWORD, "Hank")
  current = await authenticator.login("hank@example.com", PASSWORD)
  identity = await authenticator.resolve(current.token)
  later = datetime.now(timezone.utc) + timedelta(hours=1)
  await authenticator.storage.create_session(user_id=u.id, token_hash="f" * 64, expires_at=later)

  with pytest.raises(errors.AuthError):
    await authenticator.change_password(identity, "wrong", "newsecret")
  with pytest.raises(errors.ValidationError):
    await authenticator.change_password(identity, PASSWORD, "")

  await authenticator.change_password(identity, PASSWORD, "newsecret")
  assert await authenticator.storage.get_session_by_token_hash("f" * 64) is None
  assert (await authenticator.resolve(current.token)).user_id == u.id
  await authenticator.login("hank@example.com", "newsecret")
