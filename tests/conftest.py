"""
Test infrastructure for the Community API.

Strategy
--------
- SQLite in-memory via aiosqlite, shared through StaticPool because an
  in-memory database is connection-scoped; ``PRAGMA foreign_keys=ON`` is
  installed so ON DELETE CASCADE behaves as in production.
- The app's get_db dependency is overridden so every request uses the test
  session factory.
- Tables are created before and dropped after each test.
- Redis is disabled by setting cache._redis = None; the CacheManager turns
  every call into a no-op, so tests exercise the database path.
- bcrypt runs with the minimum cost (4) and the signing secret is fixed,
  both through environment variables read by Settings at import time.
"""
import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET", "test-secret-key-with-at-least-32-bytes!!")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from community.cache import cache
from community.database import Base, get_db, install_sqlite_pragmas
from community.main import app

# ---------------------------------------------------------------------------
# Test database engine: SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
install_sqlite_pragmas(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    cache._redis = None
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """A live AsyncSession for tests that call service functions directly."""
    async with async_session_test() as session:
        yield session


@pytest.fixture
def session_factory() -> async_sessionmaker:
    """The test session factory, for tests that need several sessions."""
    return async_session_test


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    """httpx.AsyncClient wired to the FastAPI app via ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def register(async_client: AsyncClient):
    """
    Return a coroutine that signs up and logs in a member and yields
    ``(user_id, auth_headers)``.
    """

    async def _register(
        email: str,
        nickname: str | None = None,
        password: str = "correct-horse-1",
    ) -> tuple[int, dict]:
        resp = await async_client.post("/api/v1/users/signup", json={
            "email": email,
            "password": password,
            "nickname": nickname or email.split("@")[0],
        })
        assert resp.status_code == 201, resp.text
        user_id = resp.json()["user_id"]

        resp = await async_client.post("/api/v1/users/login", json={
            "email": email,
            "password": password,
        })
        assert resp.status_code == 200, resp.text
        return user_id, {"Authorization": f"Bearer {resp.json()['token']}"}

    return _register
