"""
Like service: at most one like per (user, post).

The guarantee comes from the ``likes`` primary key ``(user_id, post_id)``,
not from the application.  ``add_like`` looks for an existing row first
only to fail fast in the common case.  Two concurrent requests can both
pass that check, and then the insert decides.  It runs inside a SAVEPOINT,
so the losing request's ``IntegrityError`` rolls back only the insert and
surfaces as ``DuplicateLike`` instead of poisoning the whole session.
When the user or post was deleted between the check and the insert, the
failing constraint is a foreign key and the result is ``ResourceNotFound``.

``remove_like`` deletes with a single statement and inspects the affected
row count, so of two concurrent unlikes exactly one succeeds and the other
sees ``ResourceNotFound``.
"""
import logging

from sqlalchemy import delete, exists, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from community.cache import cache
from community.config import settings
from community.errors import DuplicateLike, ResourceNotFound
from community.models import Like, Post, User

logger = logging.getLogger(__name__)


async def _missing_target(db: AsyncSession, user_id: int, post_id: int) -> ResourceNotFound | None:
    if await db.get(User, user_id) is None:
        return ResourceNotFound("user", "id", user_id)
    if await db.get(Post, post_id) is None:
        return ResourceNotFound("post", "id", post_id)
    return None


async def _ensure_user_and_post(db: AsyncSession, user_id: int, post_id: int) -> None:
    missing = await _missing_target(db, user_id, post_id)
    if missing is not None:
        raise missing


async def has_liked(db: AsyncSession, user_id: int, post_id: int) -> bool:
    q = select(exists().where(Like.user_id == user_id, Like.post_id == post_id))
    return bool((await db.execute(q)).scalar())


async def count_likes(db: AsyncSession, post_id: int) -> int:
    q = select(func.count()).select_from(Like).where(Like.post_id == post_id)
    return (await db.execute(q)).scalar_one()


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def add_like(db: AsyncSession, user_id: int, post_id: int) -> Like:
    """
    Record that *user_id* likes *post_id* and return the new row.

    Raises ``ResourceNotFound`` when the user or post is missing and
    ``DuplicateLike`` when the pair already exists, whether detected by the
    pre-check or by the primary key at insert time.
    """
    await _ensure_user_and_post(db, user_id, post_id)

    if await has_liked(db, user_id, post_id):
        raise DuplicateLike(user_id, post_id)

    like = Like(user_id=user_id, post_id=post_id)
    try:
        async with db.begin_nested():
            db.add(like)
    except IntegrityError as exc:
        # Either foreign key (user or post deleted meanwhile) or the primary key.
        missing = await _missing_target(db, user_id, post_id)
        if missing is not None:
            logger.info("Like target vanished before insert: user=%s post=%s", user_id, post_id)
            raise missing from exc
        logger.info("Concurrent like rejected by constraint: user=%s post=%s", user_id, post_id)
        raise DuplicateLike(user_id, post_id) from exc

    await db.refresh(like)
    await cache.invalidate_likes(post_id)
    return like


async def remove_like(db: AsyncSession, user_id: int, post_id: int) -> None:
    """Delete the like of *user_id* on *post_id*; ``ResourceNotFound`` if there is none."""
    await _ensure_user_and_post(db, user_id, post_id)

    result = await db.execute(
        delete(Like)
        .where(Like.user_id == user_id, Like.post_id == post_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ResourceNotFound("like", "user_id,post_id", f"{user_id},{post_id}")

    await cache.invalidate_likes(post_id)


async def get_like_count(db: AsyncSession, post_id: int) -> int:
    """Like count for *post_id*, served from the cache when possible."""
    key = cache.like_count_key(post_id)
    cached = await cache.get(key)
    if cached is not None:
        return cached
    count = await count_likes(db, post_id)
    await cache.set(key, count, ttl=settings.CACHE_TTL_STATS)
    return count


async def get_like_stats(db: AsyncSession, post_id: int, user_id: int | None = None) -> dict:
    """Like count of a post plus whether *user_id* is among the likers."""
    if await db.get(Post, post_id) is None:
        raise ResourceNotFound("post", "id", post_id)
    return {
        "post_id": post_id,
        "like_count": await get_like_count(db, post_id),
        "user_liked": await has_liked(db, user_id, post_id) if user_id is not None else False,
    }
