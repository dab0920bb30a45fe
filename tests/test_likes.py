"""
Like tests: like / unlike through the API, like statistics, and the
at-most-one-like-per-(user, post) guarantee under concurrent requests.

The concurrency tests use a file-backed SQLite database with one
connection per session, so the racing sessions really are separate
transactions.  The shared in-memory engine from conftest funnels every
session through a single connection and cannot model that.
"""
import asyncio

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from community.database import Base, install_sqlite_pragmas
from community.errors import DuplicateLike, ResourceNotFound
from community.models import Like, Post, User
from community.services import like_service


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_post(client: AsyncClient, headers: dict) -> int:
    resp = await client.post("/api/v1/posts", headers=headers, json={"title": "Likeable", "content": "Body"})
    assert resp.status_code == 201
    return resp.json()["id"]


async def _seed_user_and_post(session_factory) -> tuple[int, int]:
    async with session_factory() as session:
        user = User(email="racer@x.com", nickname="racer", password_hash="x" * 60)
        session.add(user)
        await session.flush()
        post = Post(title="Race", content="Body", user_id=user.id)
        session.add(post)
        await session.commit()
        return user.id, post.id


# ---------------------------------------------------------------------------
# Like / unlike through the API
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_like_then_unlike(async_client: AsyncClient, register):
    """Like, like again, unlike, unlike again: 201, 409, 200, 404."""
    _, headers = await register("liker@x.com")
    post_id = await _create_post(async_client, headers)
    url = f"/api/v1/posts/{post_id}/like"

    first = await async_client.post(url, headers=headers)
    assert first.status_code == 201
    assert first.json() == {"post_id": post_id, "like_count": 1}

    again = await async_client.post(url, headers=headers)
    assert again.status_code == 409
    assert again.json()["message"] == "duplicate_like"

    removed = await async_client.delete(url, headers=headers)
    assert removed.status_code == 200
    assert removed.json() == {"post_id": post_id, "like_count": 0}

    missing = await async_client.delete(url, headers=headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_like_after_unlike_is_allowed(async_client: AsyncClient, register):
    _, headers = await register("fickle@x.com")
    post_id = await _create_post(async_client, headers)
    url = f"/api/v1/posts/{post_id}/like"

    assert (await async_client.post(url, headers=headers)).status_code == 201
    assert (await async_client.delete(url, headers=headers)).status_code == 200
    resp = await async_client.post(url, headers=headers)
    assert resp.status_code == 201
    assert resp.json()["like_count"] == 1


@pytest.mark.asyncio
async def test_like_missing_post(async_client: AsyncClient, register):
    _, headers = await register("nowhere@x.com")
    assert (await async_client.post("/api/v1/posts/9999/like", headers=headers)).status_code == 404
    assert (await async_client.delete("/api/v1/posts/9999/like", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_like_stats(async_client: AsyncClient, register):
    _, author = await register("popular@x.com")
    _, fan = await register("fan@x.com")
    _, bystander = await register("bystander@x.com")
    post_id = await _create_post(async_client, author)

    await async_client.post(f"/api/v1/posts/{post_id}/like", headers=author)
    await async_client.post(f"/api/v1/posts/{post_id}/like", headers=fan)

    fan_view = (await async_client.get(f"/api/v1/posts/{post_id}/likes", headers=fan)).json()
    assert fan_view == {"post_id": post_id, "like_count": 2, "user_liked": True}

    other_view = (await async_client.get(f"/api/v1/posts/{post_id}/likes", headers=bystander)).json()
    assert other_view["like_count"] == 2
    assert other_view["user_liked"] is False

    detail = (await async_client.get(f"/api/v1/posts/{post_id}", headers=fan)).json()
    assert detail["like_count"] == 2
    assert detail["user_liked"] is True


@pytest.mark.asyncio
async def test_like_stats_missing_post(async_client: AsyncClient, register):
    _, headers = await register("statless@x.com")
    assert (await async_client.get("/api/v1/posts/9999/likes", headers=headers)).status_code == 404


# ---------------------------------------------------------------------------
# Service layer
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_add_like_for_unknown_user(db_session: AsyncSession):
    with pytest.raises(ResourceNotFound) as exc_info:
        await like_service.add_like(db_session, 9999, 1)
    assert exc_info.value.resource == "user"


@pytest.mark.asyncio
async def test_constraint_rejects_duplicate_missed_by_precheck(db_session, session_factory, monkeypatch):
    """
    When the existence pre-check misses a concurrent insert, the primary
    key still rejects the second row and the caller sees DuplicateLike.
    """
    user_id, post_id = await _seed_user_and_post(session_factory)
    await like_service.add_like(db_session, user_id, post_id)
    await db_session.commit()

    async def _never_liked(db, uid, pid):
        return False

    monkeypatch.setattr(like_service, "has_liked", _never_liked)
    async with session_factory() as session:
        with pytest.raises(DuplicateLike):
            await like_service.add_like(session, user_id, post_id)
        # The savepoint rollback leaves the session usable.
        count = await like_service.count_likes(session, post_id)
    assert count == 1


@pytest.mark.asyncio
async def test_post_deleted_before_insert_is_not_found(session_factory, monkeypatch):
    """A foreign-key failure at insert time is reported as a missing post, not a duplicate."""
    user_id, _ = await _seed_user_and_post(session_factory)

    async def _checks_passed(db, uid, pid):
        return None

    monkeypatch.setattr(like_service, "_ensure_user_and_post", _checks_passed)
    async with session_factory() as session:
        with pytest.raises(ResourceNotFound) as exc_info:
            await like_service.add_like(session, user_id, 424242)
        total = (await session.execute(select(func.count()).select_from(Like))).scalar_one()
    assert exc_info.value.resource == "post"
    assert total == 0


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Session factory on a fresh SQLite file; every session gets its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'likes.db'}")
    install_sqlite_pragmas(engine, immediate=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


async def _attempt_like(session_factory, user_id: int, post_id: int) -> str:
    async with session_factory() as session:
        try:
            await like_service.add_like(session, user_id, post_id)
            await session.commit()
            return "ok"
        except DuplicateLike:
            await session.rollback()
            return "duplicate"


@pytest.mark.asyncio
@pytest.mark.parametrize("attempts", [1, 2, 10])
async def test_concurrent_likes_store_one_row(file_session_factory, attempts: int):
    """Of N simultaneous likes by the same user exactly one succeeds."""
    user_id, post_id = await _seed_user_and_post(file_session_factory)

    results = await asyncio.gather(
        *(_attempt_like(file_session_factory, user_id, post_id) for _ in range(attempts))
    )

    assert results.count("ok") == 1
    assert results.count("duplicate") == attempts - 1
    async with file_session_factory() as session:
        rows = (
            await session.execute(
                select(func.count()).select_from(Like).where(Like.user_id == user_id, Like.post_id == post_id)
            )
        ).scalar_one()
    assert rows == 1


@pytest.mark.asyncio
async def test_concurrent_unlikes_remove_once(file_session_factory):
    user_id, post_id = await _seed_user_and_post(file_session_factory)
    assert await _attempt_like(file_session_factory, user_id, post_id) == "ok"

    async def _attempt_unlike() -> str:
        async with file_session_factory() as session:
            try:
                await like_service.remove_like(session, user_id, post_id)
                await session.commit()
                return "ok"
            except ResourceNotFound:
                await session.rollback()
                return "missing"

    results = await asyncio.gather(*(_attempt_unlike() for _ in range(5)))
    assert sorted(results) == ["missing"] * 4 + ["ok"]
