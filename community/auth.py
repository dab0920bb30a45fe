"""
Request authentication and authorization.

Two pure ASGI middlewares run in front of the routers:

1. ``AuthenticationMiddleware`` turns ``Authorization: Bearer <token>``
   into a ``Principal`` stored on the request state.  A missing, garbled
   or expired token never rejects the request here; the request simply
   continues without a principal.
2. ``AuthorizationMiddleware`` looks the path up in the route-policy
   table and rejects the request with ``Unauthorized`` / ``Forbidden``
   before any handler runs.

Ownership (``assert_owner``) is data-dependent and is checked inside the
service functions once the target resource has been loaded.

Both middlewares are pure ASGI rather than ``BaseHTTPMiddleware`` so the
state they write is visible to the handler without a child task.
"""
import logging
import re
from dataclasses import dataclass, field

from fastapi import Request
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

from community.errors import CommunityError, Forbidden, TokenError, Unauthorized, error_response
from community.tokens import Principal, Role, TokenCodec

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "

PRINCIPAL_KEY = "principal"
AUTH_ERROR_KEY = "auth_error"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

def extract_bearer_token(header_value: str | None) -> str | None:
    """Return the token of a well-formed ``Bearer <token>`` header, else None."""
    if not header_value or not header_value.startswith(BEARER_PREFIX):
        return None
    token = header_value[len(BEARER_PREFIX):].strip()
    return token or None


def authenticate(headers: Headers, codec: TokenCodec) -> tuple[Principal | None, TokenError | None]:
    """
    Resolve the principal carried by *headers*.

    Returns ``(principal, None)`` on success, ``(None, error)`` when a
    bearer token was supplied but failed verification, and ``(None, None)``
    when no usable bearer token was supplied at all.
    """
    token = extract_bearer_token(headers.get("authorization"))
    if token is None:
        return None, None
    try:
        return codec.verify(token), None
    except TokenError as exc:
        logger.debug("Bearer token rejected (%s): %s", exc.code, exc.message)
        return None, exc


class AuthenticationMiddleware:
    def __init__(self, app: ASGIApp, codec: TokenCodec) -> None:
        self.app = app
        self.codec = codec

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        principal, error = authenticate(Headers(scope=scope), self.codec)
        state = scope.setdefault("state", {})
        state[PRINCIPAL_KEY] = principal
        state[AUTH_ERROR_KEY] = error
        await self.app(scope, receive, send)


# ---------------------------------------------------------------------------
# Route-level policy
# ---------------------------------------------------------------------------

class Policy:
    """Base class for route policies."""


@dataclass(frozen=True)
class Public(Policy):
    pass


@dataclass(frozen=True)
class AuthenticatedAny(Policy):
    pass


@dataclass(frozen=True)
class RequireRole(Policy):
    role: Role


def authorize(policy: Policy, principal: Principal | None, auth_error: TokenError | None = None) -> None:
    """
    Raise if *principal* does not satisfy *policy*.

    ``Unauthorized`` when a principal is required but absent; its message
    names the token failure when one was recorded.  ``Forbidden`` when a
    principal is present but lacks the required role.
    """
    if isinstance(policy, Public):
        return
    if principal is None:
        if auth_error is not None:
            raise Unauthorized(auth_error.message)
        raise Unauthorized()
    if isinstance(policy, RequireRole) and not principal.has_role(policy.role):
        raise Forbidden()


def _compile_pattern(pattern: str) -> re.Pattern:
    """
    Translate an Ant-style path pattern into a regex.

    ``*`` matches within one path segment, a trailing ``/**`` matches the
    prefix itself and anything below it.
    """
    if pattern.endswith("/**"):
        prefix = pattern[:-3]
        body = re.escape(prefix).replace(r"\*", "[^/]*")
        return re.compile(f"^{body}(/.*)?$")
    body = re.escape(pattern).replace(r"\*\*", ".*").replace(r"\*", "[^/]*")
    return re.compile(f"^{body}/?$")


@dataclass(frozen=True)
class RouteRule:
    pattern: str
    policy: Policy
    methods: frozenset[str] | None = None
    _regex: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_regex", _compile_pattern(self.pattern))

    def matches(self, method: str, path: str) -> bool:
        if self.methods is not None and method.upper() not in self.methods:
            return False
        return self._regex.match(path) is not None


ROUTE_POLICIES: tuple[RouteRule, ...] = (
    RouteRule("/api/v1/users/signup", Public(), frozenset({"POST"})),
    RouteRule("/api/v1/users/login", Public(), frozenset({"POST"})),
    RouteRule("/api/v1/users/**", RequireRole(Role.MEMBER)),
    RouteRule("/api/v1/posts/**", AuthenticatedAny()),
    RouteRule("/api/v1/comments/**", AuthenticatedAny()),
)


def resolve_policy(method: str, path: str, rules=ROUTE_POLICIES) -> Policy:
    """Return the policy of the first rule matching the request; Public if none."""
    for rule in rules:
        if rule.matches(method, path):
            return rule.policy
    return Public()


class AuthorizationMiddleware:
    def __init__(self, app: ASGIApp, rules: tuple[RouteRule, ...] = ROUTE_POLICIES) -> None:
        self.app = app
        self.rules = rules

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        state = scope.get("state", {})
        policy = resolve_policy(scope["method"], scope["path"], self.rules)
        try:
            authorize(policy, state.get(PRINCIPAL_KEY), state.get(AUTH_ERROR_KEY))
        except CommunityError as exc:
            logger.info("%s %s rejected: %s", scope["method"], scope["path"], exc.code)
            response = error_response(exc)
            await response(scope, receive, send)
            return
        await self.app(scope, receive, send)


# ---------------------------------------------------------------------------
# Ownership
# ---------------------------------------------------------------------------

def assert_owner(resource_author_id: int, principal_id: int) -> None:
    """Raise ``Unauthorized`` unless the principal authored the resource."""
    if resource_author_id != principal_id:
        raise Unauthorized("You are not the owner of this resource")


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

def get_principal(request: Request) -> Principal | None:
    return getattr(request.state, PRINCIPAL_KEY, None)


def require_principal(request: Request) -> Principal:
    principal = get_principal(request)
    if principal is None:
        raise Unauthorized()
    return principal
