"""
User service: registration, login and account management.

Passwords only ever pass through ``PasswordHasher``; bcrypt is CPU bound,
so hashing and verification run in Starlette's threadpool to keep the
event loop responsive.  Login issues a bearer token from ``TokenCodec``
and stores nothing server side.
"""
import logging
from functools import lru_cache

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from community.auth import assert_owner
from community.cache import cache
from community.errors import DuplicateResource, ResourceNotFound, Unauthorized
from community.models import Like, Post, User
from community.passwords import PasswordHasher, password_hasher
from community.schemas import LoginRequest, PasswordChange, SignupRequest, UserUpdate
from community.tokens import Principal, Role, TokenCodec, token_codec

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def _dummy_hash(hasher: PasswordHasher) -> str:
    # Verified against when the email is unknown so both login failures
    # cost one bcrypt round trip.
    return hasher.hash("dummy-password-for-timing")


def _verify_against_dummy(hasher: PasswordHasher, password: str) -> None:
    # Runs in the threadpool; the first call also pays for building the dummy hash.
    hasher.verify(password, _dummy_hash(hasher))


def _user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "nickname": user.nickname,
        "profile_img": user.profile_img,
        "role": user.role,
        "created_at": user.created_at,
    }


async def _get_user_or_404(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise ResourceNotFound("user", "id", user_id)
    return user


async def _nickname_taken(db: AsyncSession, nickname: str) -> bool:
    result = await db.execute(select(User.id).where(User.nickname == nickname))
    return result.first() is not None


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def signup(
    db: AsyncSession,
    data: SignupRequest,
    hasher: PasswordHasher = password_hasher,
) -> int:
    """
    Register a new member and return its id.

    The email / nickname pre-checks give precise error messages; the unique
    constraints on both columns still decide races between two signups.
    """
    existing = await db.execute(select(User.id).where(User.email == data.email))
    if existing.first() is not None:
        raise DuplicateResource("user", "email", data.email)
    if await _nickname_taken(db, data.nickname):
        raise DuplicateResource("user", "nickname", data.nickname)

    password_hash = await run_in_threadpool(hasher.hash, data.password)
    user = User(
        email=data.email,
        nickname=data.nickname,
        password_hash=password_hash,
        profile_img=data.profile_img,
        role=Role.MEMBER.value,
    )
    try:
        async with db.begin_nested():
            db.add(user)
    except IntegrityError as exc:
        raise DuplicateResource("user", "email or nickname", data.email) from exc

    logger.info("Registered user id=%s", user.id)
    return user.id


async def login(
    db: AsyncSession,
    data: LoginRequest,
    codec: TokenCodec = token_codec,
    hasher: PasswordHasher = password_hasher,
) -> dict:
    """
    Verify credentials and issue a bearer token.

    Unknown email and wrong password both raise the same ``Unauthorized``
    so the response does not reveal which emails are registered.
    """
    result = await db.execute(select(User).where(User.email == data.email))
    user = result.scalar_one_or_none()

    if user is None:
        await run_in_threadpool(_verify_against_dummy, hasher, data.password)
        logger.info("Login failed: unknown email")
        raise Unauthorized("Invalid email or password")

    if not await run_in_threadpool(hasher.verify, data.password, user.password_hash):
        logger.info("Login failed for user id=%s", user.id)
        raise Unauthorized("Invalid email or password")

    if hasher.needs_rehash(user.password_hash):
        # Hashes made with another work factor are upgraded while the password is at hand.
        user.password_hash = await run_in_threadpool(hasher.hash, data.password)
        await db.flush()
        logger.info("Rehashed password for user id=%s with %d rounds", user.id, hasher.rounds)

    token = codec.issue(user.id, user.role)
    return {
        "token": token,
        "token_type": "bearer",
        "expires_in": int(codec.ttl.total_seconds()),
        "user_id": user.id,
    }


async def get_user(db: AsyncSession, user_id: int) -> dict:
    return _user_to_dict(await _get_user_or_404(db, user_id))


async def update_user(
    db: AsyncSession,
    principal: Principal,
    user_id: int,
    data: UserUpdate,
) -> dict:
    """Change nickname / profile image of the principal's own account."""
    user = await _get_user_or_404(db, user_id)
    assert_owner(user.id, principal.subject_id)

    if user.nickname != data.nickname and await _nickname_taken(db, data.nickname):
        raise DuplicateResource("user", "nickname", data.nickname)

    user.nickname = data.nickname
    user.profile_img = data.profile_img
    try:
        async with db.begin_nested():
            await db.flush()
    except IntegrityError as exc:
        raise DuplicateResource("user", "nickname", data.nickname) from exc
    return _user_to_dict(user)


async def change_password(
    db: AsyncSession,
    principal: Principal,
    user_id: int,
    data: PasswordChange,
    hasher: PasswordHasher = password_hasher,
) -> None:
    """
    Replace the password after re-checking the current one.

    Tokens issued before the change stay valid until they expire.
    """
    user = await _get_user_or_404(db, user_id)
    assert_owner(user.id, principal.subject_id)

    if not await run_in_threadpool(hasher.verify, data.current_password, user.password_hash):
        raise Unauthorized("Current password does not match")

    user.password_hash = await run_in_threadpool(hasher.hash, data.new_password)
    await db.flush()
    logger.info("Password changed for user id=%s", user.id)


async def delete_user(db: AsyncSession, user_id: int) -> None:
    """
    Delete the account; posts, comments and likes go with it (ON DELETE CASCADE).

    The cascade bypasses the services, so the like counts of every post the
    user wrote or liked are cleared from the cache here.
    """
    user = await _get_user_or_404(db, user_id)

    affected = await db.execute(
        select(Post.id).where(Post.user_id == user_id)
        .union(select(Like.post_id).where(Like.user_id == user_id))
    )
    post_ids = affected.scalars().all()

    await db.delete(user)
    await db.flush()
    await cache.invalidate_likes(*post_ids)
    logger.info("Deleted user id=%s (%d post(s) affected)", user_id, len(post_ids))
