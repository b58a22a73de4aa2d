from __future__ import annotations

import hashlib
import hmac
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SESSION_COOKIE_NAME = "kb_session"
TOKEN_ALGORITHM = "HS256"


class TokenDecodeError(ValueError):
  pass


def hash_password(password: str) -> str:
  return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
  try:
    return pwd_context.verify(password, password_hash)
  except ValueError:
    # unknown or corrupt hash format
    return False


def token_hash(token: str, secret: str) -> str:
  # Keyed hash so a leaked sessions table can't be replayed.
  key = (secret or "").encode("utf-8")
  msg = (token or "").strip().encode("utf-8")
  return hmac.new(key, msg, hashlib.sha256).hexdigest()


def new_session_expires_at(ttl_hours: int) -> datetime:
  return datetime.now(timezone.utc) + timedelta(hours=ttl_hours)


def encode_session_token(*, user_id: str, email: str, role: str, expires_at: datetime, secret: str) -> str:
  claims = {
    "sub": user_id,
    "email": email,
    "role": role,
    "iat": datetime.now(timezone.utc),
    "exp": expires_at,
    "jti": str(uuid.uuid4()),
  }
  return jwt.encode(claims, secret, algorithm=TOKEN_ALGORITHM)


def decode_session_token(token: str, secret: str) -> dict[str, Any]:
  """
  Verify the signature and return the claims.

  Expiry is not checked here: the session row's ``expires_at`` decides.
  """
  try:
    return jwt.decode(token, secret, algorithms=[TOKEN_ALGORITHM], options={"verify_exp": False})
  except JWTError as exc:
    raise TokenDecodeError(str(exc)) from exc
