from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

from kanban_api.config import Settings
from kanban_api.main import create_app
from kanban_api.migrations import Migrator
from kanban_api.models import Base
from kanban_api.sessions import SessionAuthenticator
from kanban_api.storage.base import StorageAdapter
from kanban_api.storage.factory import create_storage

POSTGRES_URL = os.environ.get("KANBAN_TEST_POSTGRES_URL")
PASSWORD = "secret123"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


def make_settings(database_url: str, **overrides) -> Settings:
  values = dict(
    database_url=database_url,
    app_secret="test-only-secret",
    environment="test",
    auto_approve_users=True,
    migrate_on_start=False,
    log_level="WARNING",
  )
  values.update(overrides)
  return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
  return make_settings(f"sqlite+aiosqlite:///{tmp_path / 'kanban_test.db'}")


@pytest.fixture
async def storage(settings: Settings) -> StorageAdapter:
  s = create_storage(settings)
  await Migrator(s).run()
  yield s
  await s.dispose()


@pytest.fixture(params=["sqlite", "postgresql"])
async def any_storage(request, tmp_path: Path) -> StorageAdapter:
  """Migrated storage on each engine; the PostgreSQL leg needs KANBAN_TEST_POSTGRES_URL."""
  if request.param == "postgresql":
    if not POSTGRES_URL:
      pytest.skip("KANBAN_TEST_POSTGRES_URL not set")
    s = create_storage(make_settings(POSTGRES_URL))
    async with s.engine.begin() as conn:
      await conn.run_sync(Base.metadata.drop_all)
  else:
    s = create_storage(make_settings(f"sqlite+aiosqlite:///{tmp_path / 'kanban_test.db'}"))
  await Migrator(s).run()
  yield s
  await s.dispose()


@pytest.fixture
def authenticator(any_storage: StorageAdapter) -> SessionAuthenticator:
  return SessionAuthenticator(any_storage, make_settings("sqlite+aiosqlite://"))


@pytest.fixture
async def client(settings: Settings, storage: StorageAdapter) -> AsyncClient:
  app = create_app(settings, storage=storage)
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


async def new_user(storage: StorageAdapter, email: str, *, role: str = "user", name: str | None = None):
  from kanban_api.security import hash_password

  return await storage.create_user(
    email=email,
    name=name or email.split("@", 1)[0].title(),
    password_hash=hash_password(PASSWORD),
    role=role,
    approval_status="approved",
  )


async def register(client: AsyncClient, email: str, password: str = PASSWORD, name: str | None = None) -> dict:
  res = await client.post(
    "/auth/register",
    json={"email": email, "password": password, "name": name or email.split("@", 1)[0].title()},
  )
  assert res.status_code == 201, res.text
  return res.json()["data"]


async def login(client: AsyncClient, email: str, password: str = PASSWORD) -> dict[str, str]:
  res = await client.post("/auth/login", json={"email": email, "password": password})
  assert res.status_code == 200, res.text
  cookie = res.headers.get("set-cookie")
  assert cookie and "kb_session=" in cookie
  # callers switch identities through the header, so don't let the cookie leak between them
  client.cookies.clear()
  return {"Authorization": f"Bearer {res.json()['data']['token']}"}


async def signup(client: AsyncClient, email: str) -> tuple[str, dict[str, str]]:
  user = await register(client, email)
  return user["id"], await login(client, email)
