from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from community.auth import require_principal
from community.database import get_db
from community.schemas import (
    LoginRequest,
    PasswordChange,
    SignupRequest,
    SignupResponse,
    TokenResponse,
    UserResponse,
    UserUpdate,
)
from community.services import user_service
from community.tokens import Principal

router = APIRouter(prefix="/api/v1/users", tags=["users"])

@router.post("/signup", status_code=201, response_model=SignupResponse)
async def signup(data: SignupRequest, db: AsyncSession = Depends(get_db)):
    user_id = await user_service.signup(db, data)
    return {"user_id": user_id}

@router.post("/login", response_model=TokenResponse)
async def login(data: LoginRequest, db: AsyncSession = Depends(get_db)):
    return await user_service.login(db, data)

@router.get("/me", response_model=UserResponse)
async def get_me(
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.get_user(db, principal.subject_id)

@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    data: UserUpdate,
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.update_user(db, principal, user_id, data)

@router.put("/{user_id}/password", status_code=204)
async def change_password(
    user_id: int,
    data: PasswordChange,
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    await user_service.change_password(db, principal, user_id, data)

@router.delete("", status_code=204)
async def delete_user(
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    await user_service.delete_user(db, principal.subject_id)
