"""
Post service: business logic for the Post aggregate.

Design notes
------------
- The feed (``get_posts``) goes through the cache-aside pattern; every
  write to posts, comments or likes clears the feed pages because they
  embed comment and like counts.
- Comment and like counts for a page are fetched with one grouped query
  each instead of one query per post.
- Update and delete load the post first (``ResourceNotFound``), then check
  ownership (``Unauthorized``), then mutate.  A caller probing a post id
  that does not exist always sees 404, never 401.
- Service functions flush but do not commit; the transaction boundary is
  owned by the ``get_db`` dependency in the router layer.
"""
import logging
import math

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from community.auth import assert_owner
from community.cache import cache
from community.config import settings
from community.errors import ResourceNotFound
from community.models import Comment, Like, Post
from community.schemas import PaginatedResponse, PostCreate, PostUpdate
from community.services import like_service
from community.tokens import Principal

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _serialize_author(author) -> dict | None:
    if author is None:
        return None
    return {"id": author.id, "nickname": author.nickname, "profile_img": author.profile_img}


def _post_to_dict(post: Post) -> dict:
    return {
        "id": post.id,
        "title": post.title,
        "content": post.content,
        "image_url": post.image_url,
        "view_count": post.view_count,
        "user_id": post.user_id,
        "author": _serialize_author(post.author),
        "created_at": post.created_at.isoformat() if post.created_at else None,
        "updated_at": post.updated_at.isoformat() if post.updated_at else None,
    }


async def _count_by_post(db: AsyncSession, column, post_ids: list[int]) -> dict[int, int]:
    if not post_ids:
        return {}
    q = (
        select(column, func.count())
        .where(column.in_(post_ids))
        .group_by(column)
    )
    result = await db.execute(q)
    return {post_id: count for post_id, count in result.all()}


async def get_post_or_404(db: AsyncSession, post_id: int, with_author: bool = False) -> Post:
    q = select(Post).where(Post.id == post_id)
    if with_author:
        q = q.options(joinedload(Post.author))
    result = await db.execute(q)
    post = result.unique().scalar_one_or_none()
    if post is None:
        raise ResourceNotFound("post", "id", post_id)
    return post


async def count_comments(db: AsyncSession, post_id: int) -> int:
    q = select(func.count()).select_from(Comment).where(Comment.post_id == post_id)
    return (await db.execute(q)).scalar_one()


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def create_post(db: AsyncSession, principal: Principal, data: PostCreate) -> dict:
    """Create a post authored by *principal* and return its dict."""
    post = Post(
        title=data.title,
        content=data.content,
        image_url=data.image_url,
        user_id=principal.subject_id,
    )
    db.add(post)
    await db.flush()
    await db.refresh(post)

    await cache.invalidate_posts()
    logger.info("User id=%s created post id=%s", principal.subject_id, post.id)
    return _post_to_dict(post)


async def get_posts(db: AsyncSession, page: int = 1, page_size: int = 10) -> PaginatedResponse:
    """
    Return a page of posts, newest first, with comment and like counts.

    Three statements on a cache miss: total count, the page itself with the
    author joined, and one grouped count per counter.
    """
    cache_key = cache.post_list_key(page, page_size)
    cached = await cache.get(cache_key)
    if cached:
        return PaginatedResponse(**cached)

    total: int = (await db.execute(select(func.count()).select_from(Post))).scalar_one()

    q = (
        select(Post)
        .options(joinedload(Post.author))
        .order_by(Post.created_at.desc(), Post.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    posts = (await db.execute(q)).unique().scalars().all()

    post_ids = [p.id for p in posts]
    comment_counts = await _count_by_post(db, Comment.post_id, post_ids)
    like_counts = await _count_by_post(db, Like.post_id, post_ids)

    items = [
        {
            "id": p.id,
            "title": p.title,
            "view_count": p.view_count,
            "user_id": p.user_id,
            "author": _serialize_author(p.author),
            "comment_count": comment_counts.get(p.id, 0),
            "like_count": like_counts.get(p.id, 0),
            "created_at": p.created_at.isoformat() if p.created_at else None,
        }
        for p in posts
    ]
    response = PaginatedResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )
    await cache.set(cache_key, response.model_dump(), ttl=settings.CACHE_TTL_LIST)
    return response


async def get_post_detail(db: AsyncSession, post_id: int, viewer_id: int | None = None) -> dict:
    """
    Return the detail dict for *post_id* and bump its view counter.

    ``user_liked`` reflects *viewer_id*; it is False for anonymous viewers.
    """
    post = await get_post_or_404(db, post_id, with_author=True)

    # Atomic increment; updated_at is pinned so reads do not count as edits.
    await db.execute(
        update(Post)
        .where(Post.id == post_id)
        .values(view_count=Post.view_count + 1, updated_at=Post.updated_at)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(post, ["view_count", "updated_at"])

    data = _post_to_dict(post)
    data["comment_count"] = await count_comments(db, post_id)
    data["like_count"] = await like_service.count_likes(db, post_id)
    data["user_liked"] = (
        await like_service.has_liked(db, viewer_id, post_id) if viewer_id is not None else False
    )
    return data


async def update_post(
    db: AsyncSession,
    principal: Principal,
    post_id: int,
    data: PostUpdate,
) -> dict:
    """Apply the fields set in *data* to a post the principal authored."""
    post = await get_post_or_404(db, post_id, with_author=True)
    assert_owner(post.user_id, principal.subject_id)

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(post, field, value)

    await db.flush()
    await db.refresh(post, ["updated_at"])
    await cache.invalidate_posts()
    return _post_to_dict(post)


async def delete_post(db: AsyncSession, principal: Principal, post_id: int) -> None:
    """Delete a post the principal authored, with its comments and likes."""
    post = await get_post_or_404(db, post_id)
    assert_owner(post.user_id, principal.subject_id)

    await db.delete(post)
    await db.flush()
    await cache.invalidate_likes(post_id)
    logger.info("User id=%s deleted post id=%s", principal.subject_id, post_id)
