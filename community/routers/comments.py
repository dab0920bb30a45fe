from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from community.auth import require_principal
from community.database import get_db
from community.schemas import CommentCreate, CommentResponse, CommentUpdate
from community.services import comment_service
from community.tokens import Principal

router = APIRouter(prefix="/api/v1/comments", tags=["comments"])

@router.post("", status_code=201, response_model=CommentResponse)
async def create_comment(
    data: CommentCreate,
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.create_comment(db, principal, data)

@router.put("/{comment_id}", response_model=CommentResponse)
async def update_comment(
    comment_id: int,
    data: CommentUpdate,
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.update_comment(db, principal, comment_id, data.content)

@router.delete("/{comment_id}", status_code=204)
async def delete_comment(
    comment_id: int,
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    await comment_service.delete_comment(db, principal, comment_id)
