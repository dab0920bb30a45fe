"""
Typed failures raised by the auth core and the service layer.

Every error carries a stable machine-readable ``code`` and the HTTP
``status_code`` it maps to, so the exception handler in ``main`` and the
authorization middleware render all of them the same way::

    {"message": "<code>", "error": "<text>", "data": null}

Client-caused conditions (401/403/404/409) keep their message.
``HashingError`` is a server fault; its message is not sent to clients.
"""
from starlette.responses import JSONResponse


class CommunityError(Exception):
    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self.args[0])

    @property
    def public_message(self) -> str:
        """Text that is safe to show to the client."""
        return self.message


# ---------------------------------------------------------------------------
# Token codec
# ---------------------------------------------------------------------------

class TokenError(CommunityError):
    status_code = 401
    code = "invalid_token"
    default_message = "Invalid token"


class TokenMalformed(TokenError):
    """Structurally broken token, or a signature that does not match."""

    code = "malformed_token"
    default_message = "Malformed token"


class TokenExpired(TokenError):
    """Signature verified but the token is past its expiry."""

    code = "token_expired"
    default_message = "Token has expired"


class TokenInvalid(TokenError):
    """Any other verification failure (algorithm, claims)."""

    code = "invalid_token"
    default_message = "Invalid token"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

class Unauthorized(CommunityError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication failed. A valid token is required."


class Forbidden(CommunityError):
    status_code = 403
    code = "access_denied"
    default_message = "You do not have permission to access this resource."


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------

class ResourceNotFound(CommunityError):
    status_code = 404
    code = "resource_not_found"
    default_message = "Resource not found"

    def __init__(self, resource: str, field: str = "id", value: object = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} not found with {field}: {value}")


class DuplicateLike(CommunityError):
    status_code = 409
    code = "duplicate_like"

    def __init__(self, user_id: int, post_id: int) -> None:
        self.user_id = user_id
        self.post_id = post_id
        super().__init__(f"User {user_id} already liked post {post_id}")


class DuplicateResource(CommunityError):
    status_code = 409
    code = "duplicate_resource"

    def __init__(self, resource: str, field: str, value: object) -> None:
        self.resource = resource
        self.field = field
        super().__init__(f"{resource} already exists with {field}: {value}")


# ---------------------------------------------------------------------------
# Server faults
# ---------------------------------------------------------------------------

class HashingError(CommunityError):
    status_code = 500
    code = "internal_error"
    default_message = "Password hashing failed"

    @property
    def public_message(self) -> str:
        return "Internal server error"


def error_response(exc: CommunityError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.code, "error": exc.public_message, "data": None},
    )
