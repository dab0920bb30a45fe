"""
Comment service: comments on posts.

Any authenticated member may comment; only the author may edit or delete
a comment.  Mutations follow the same order as posts: load the comment
(``ResourceNotFound``), check ownership (``Unauthorized``), then write.
Every write clears the cached feed pages, which embed comment counts.
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from community.auth import assert_owner
from community.cache import cache
from community.errors import ResourceNotFound
from community.models import Comment, Post
from community.schemas import CommentCreate
from community.tokens import Principal

logger = logging.getLogger(__name__)


def _comment_to_dict(comment: Comment) -> dict:
    author = comment.author
    return {
        "id": comment.id,
        "post_id": comment.post_id,
        "user_id": comment.user_id,
        "content": comment.content,
        "author": (
            {"id": author.id, "nickname": author.nickname, "profile_img": author.profile_img}
            if author is not None
            else None
        ),
        "created_at": comment.created_at.isoformat() if comment.created_at else None,
        "updated_at": comment.updated_at.isoformat() if comment.updated_at else None,
    }


async def _get_comment_or_404(db: AsyncSession, comment_id: int) -> Comment:
    q = select(Comment).where(Comment.id == comment_id).options(joinedload(Comment.author))
    result = await db.execute(q)
    comment = result.unique().scalar_one_or_none()
    if comment is None:
        raise ResourceNotFound("comment", "id", comment_id)
    return comment


async def create_comment(db: AsyncSession, principal: Principal, data: CommentCreate) -> dict:
    """Add a comment by *principal* to ``data.post_id``."""
    if await db.get(Post, data.post_id) is None:
        raise ResourceNotFound("post", "id", data.post_id)

    comment = Comment(
        content=data.content,
        post_id=data.post_id,
        user_id=principal.subject_id,
    )
    db.add(comment)
    await db.flush()
    await db.refresh(comment)

    await cache.invalidate_posts()
    return _comment_to_dict(comment)


async def get_comments(db: AsyncSession, post_id: int) -> list[dict]:
    """Comments of *post_id*, newest first."""
    if await db.get(Post, post_id) is None:
        raise ResourceNotFound("post", "id", post_id)

    q = (
        select(Comment)
        .where(Comment.post_id == post_id)
        .options(joinedload(Comment.author))
        .order_by(Comment.created_at.desc(), Comment.id.desc())
    )
    result = await db.execute(q)
    return [_comment_to_dict(c) for c in result.unique().scalars().all()]


async def update_comment(
    db: AsyncSession,
    principal: Principal,
    comment_id: int,
    content: str,
) -> dict:
    comment = await _get_comment_or_404(db, comment_id)
    assert_owner(comment.user_id, principal.subject_id)

    comment.content = content
    await db.flush()
    await db.refresh(comment, ["updated_at"])
    return _comment_to_dict(comment)


async def delete_comment(db: AsyncSession, principal: Principal, comment_id: int) -> None:
    comment = await _get_comment_or_404(db, comment_id)
    assert_owner(comment.user_id, principal.subject_id)

    await db.delete(comment)
    await db.flush()
    await cache.invalidate_posts()
    logger.info("User id=%s deleted comment id=%s", principal.subject_id, comment_id)
