from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from datetime import datetime


# --- Auth / User ---

class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    nickname: str = Field(min_length=1, max_length=30)
    profile_img: str | None = Field(None, max_length=500)


class SignupResponse(BaseModel):
    user_id: int


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until the token expires
    user_id: int


class UserUpdate(BaseModel):
    nickname: str = Field(min_length=1, max_length=30)
    profile_img: str | None = Field(None, max_length=500)


class PasswordChange(BaseModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)


class UserResponse(BaseModel):
    id: int
    email: str
    nickname: str
    profile_img: str | None = None
    role: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# --- Post ---

class PostCreate(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    content: str = Field(min_length=1)
    image_url: str | None = Field(None, max_length=500)


class PostUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=100)
    content: str | None = Field(None, min_length=1)
    image_url: str | None = Field(None, max_length=500)

    @field_validator("title", "content")
    @classmethod
    def not_null(cls, value: str | None) -> str:
        # Omit a field to leave it unchanged; null would clear a required column.
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class AuthorSummary(BaseModel):
    id: int
    nickname: str
    profile_img: str | None = None


class PostResponse(BaseModel):
    id: int
    title: str
    content: str
    image_url: str | None
    view_count: int
    user_id: int
    author: AuthorSummary | None = None
    created_at: datetime
    updated_at: datetime | None = None


class PostListItem(BaseModel):
    id: int
    title: str
    view_count: int
    user_id: int
    author: AuthorSummary | None = None
    comment_count: int
    like_count: int
    created_at: datetime


class PostDetail(PostResponse):
    comment_count: int
    like_count: int
    user_liked: bool


# --- Comment ---

class CommentCreate(BaseModel):
    post_id: int
    content: str = Field(min_length=1, max_length=1000)


class CommentUpdate(BaseModel):
    content: str = Field(min_length=1, max_length=1000)


class CommentResponse(BaseModel):
    id: int
    post_id: int
    user_id: int
    content: str
    author: AuthorSummary | None = None
    created_at: datetime
    updated_at: datetime | None = None


# --- Like ---

class LikeCount(BaseModel):
    post_id: int
    like_count: int


class LikeStats(LikeCount):
    user_liked: bool


# --- Pagination ---

class PaginatedResponse(BaseModel):
    items: list  # Will be typed in router
    total: int
    page: int
    page_size: int
    pages: int
