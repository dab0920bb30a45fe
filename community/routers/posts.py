from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from community.auth import require_principal
from community.database import get_db
from community.dependencies import PaginationParams
from community.schemas import (
    CommentResponse,
    LikeCount,
    LikeStats,
    PaginatedResponse,
    PostCreate,
    PostDetail,
    PostResponse,
    PostUpdate,
)
from community.services import comment_service, like_service, post_service
from community.tokens import Principal

router = APIRouter(prefix="/api/v1/posts", tags=["posts"])

@router.get("", response_model=PaginatedResponse)
async def list_posts(
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.get_posts(db, pagination.page, pagination.page_size)

@router.post("", status_code=201, response_model=PostResponse)
async def create_post(
    data: PostCreate,
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.create_post(db, principal, data)

@router.get("/{post_id}", response_model=PostDetail)
async def get_post(
    post_id: int,
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.get_post_detail(db, post_id, principal.subject_id)

@router.put("/{post_id}", response_model=PostResponse)
async def update_post(
    post_id: int,
    data: PostUpdate,
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.update_post(db, principal, post_id, data)

@router.delete("/{post_id}", status_code=204)
async def delete_post(
    post_id: int,
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    await post_service.delete_post(db, principal, post_id)

@router.get("/{post_id}/comments", response_model=list[CommentResponse])
async def list_comments(post_id: int, db: AsyncSession = Depends(get_db)):
    return await comment_service.get_comments(db, post_id)

@router.post("/{post_id}/like", status_code=201, response_model=LikeCount)
async def add_like(
    post_id: int,
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    await like_service.add_like(db, principal.subject_id, post_id)
    return {"post_id": post_id, "like_count": await like_service.count_likes(db, post_id)}

@router.delete("/{post_id}/like", response_model=LikeCount)
async def remove_like(
    post_id: int,
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    await like_service.remove_like(db, principal.subject_id, post_id)
    return {"post_id": post_id, "like_count": await like_service.count_likes(db, post_id)}

@router.get("/{post_id}/likes", response_model=LikeStats)
async def get_like_stats(
    post_id: int,
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    return await like_service.get_like_stats(db, post_id, principal.subject_id)
