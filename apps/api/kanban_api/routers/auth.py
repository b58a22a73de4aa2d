from __future__ import annotations

from fastapi import APIRouter, Cookie, Depends, Request, Response, status

from kanban_api.config import Settings
from kanban_api.deps import get_authenticator, get_current_identity, get_settings, request_token
from kanban_api.schemas import LoginIn, LoginOut, RegisterIn, UserOut, envelope
from kanban_api.security import SESSION_COOKIE_NAME
from kanban_api.sessions import Identity, SessionAuthenticator

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterIn, authenticator: SessionAuthenticator = Depends(get_authenticator)) -> dict:
  user = await authenticator.register(payload.email, payload.password, payload.name)
  return envelope(UserOut.of(user))


@router.post("/login")
async def login(
  payload: LoginIn,
  request: Request,
  response: Response,
  authenticator: SessionAuthenticator = Depends(get_authenticator),
  settings: Settings = Depends(get_settings),
) -> dict:
  result = await authenticator.login(
    payload.email,
    payload.password,
    created_ip=request.client.host if request.client else None,
    user_agent=request.headers.get("user-agent"),
  )
  response.set_cookie(
    key=SESSION_COOKIE_NAME,
    value=result.token,
    httponly=True,
    samesite="lax",
    secure=settings.cookie_secure,
    domain=settings.cookie_domain,
    max_age=settings.session_ttl_hours * 3600,
    path="/",
  )
  return envelope(LoginOut(token=result.token, expiresAt=result.expires_at, user=UserOut.of(result.user)))


@router.post("/logout")
async def logout(
  request: Request,
  response: Response,
  authenticator: SessionAuthenticator = Depends(get_authenticator),
  settings: Settings = Depends(get_settings),
  session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> dict:
  await authenticator.logout(request_token(request, session_token))
  response.delete_cookie(SESSION_COOKIE_NAME, path="/", domain=settings.cookie_domain)
  return envelope({"ok": True})


@router.get("/me")
async def me(identity: Identity = Depends(get_current_identity)) -> dict:
  return envelope(UserOut.of(identity.user))
