import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from community.auth import AuthenticationMiddleware, AuthorizationMiddleware
from community.cache import cache
from community.config import settings
from community.errors import CommunityError, error_response
from community.routers import comments, posts, users
from community.tokens import token_codec

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup; the app works without Redis.
    await cache.connect()
    yield
    # Shutdown
    await cache.disconnect()

app = FastAPI(
    title="Community API",
    description="Community forum backend: members, posts, comments and likes",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware; the last one added runs first:
# CORS -> authentication (token -> principal) -> route policy -> routers.
app.add_middleware(AuthorizationMiddleware)
app.add_middleware(AuthenticationMiddleware, codec=token_codec)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(CommunityError)
async def community_error_handler(request: Request, exc: CommunityError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %s (%s)", request.method, request.url.path, exc.status_code, exc.code)
    return error_response(exc)

# Routers
app.include_router(users.router)
app.include_router(posts.router)
app.include_router(comments.router)

@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
