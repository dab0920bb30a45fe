"""
Token codec: issues and verifies signed, self-contained bearer tokens.

Tokens are JWTs signed with an HMAC algorithm and a server-held secret::

    {"sub": "42", "role": "MEMBER", "iat": 1700000000, "exp": 1700086400}

Nothing about an issued token is stored server side.  A token stays valid
until ``exp``; the only way to invalidate tokens early is to restart with
a different secret, which invalidates all of them.

The expected algorithm is pinned on decode, so a token whose header names
``none`` or any other algorithm is rejected regardless of its signature.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

import jwt

from community.config import settings
from community.errors import TokenExpired, TokenInvalid, TokenMalformed

logger = logging.getLogger(__name__)

# Symmetric algorithms only: an asymmetric entry here would let a public key
# double as an HMAC secret.
SUPPORTED_ALGORITHMS: frozenset[str] = frozenset({"HS256", "HS384", "HS512"})

ROLE_CLAIM = "role"


class Role(str, Enum):
    MEMBER = "MEMBER"


@dataclass(frozen=True)
class Principal:
    """Authenticated identity derived from a verified token for one request."""

    subject_id: int
    role: str

    def has_role(self, role: Role | str) -> bool:
        # Role is a str enum, so it compares equal to its value.
        return self.role == role


@dataclass(frozen=True)
class TokenConfig:
    secret: str
    algorithm: str = "HS256"
    ttl: timedelta = timedelta(days=1)

    def __post_init__(self) -> None:
        if not self.secret:
            raise ValueError("Token signing secret must not be empty")
        if self.algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(
                f"Unsupported token algorithm {self.algorithm!r}; "
                f"expected one of {sorted(SUPPORTED_ALGORITHMS)}"
            )

    @classmethod
    def from_settings(cls, s=settings) -> "TokenConfig":
        return cls(
            secret=s.JWT_SECRET,
            algorithm=s.JWT_ALGORITHM,
            ttl=timedelta(seconds=s.JWT_EXPIRATION_SECONDS),
        )


class TokenCodec:
    def __init__(self, config: TokenConfig) -> None:
        self._config = config

    @property
    def ttl(self) -> timedelta:
        return self._config.ttl

    def issue(self, subject_id: int, role: Role | str, ttl: timedelta | None = None) -> str:
        """Sign a token for *subject_id* expiring ``ttl`` (default from config) from now."""
        now = datetime.now(timezone.utc)
        role_value = role.value if isinstance(role, Role) else role
        payload = {
            "sub": str(subject_id),
            ROLE_CLAIM: role_value,
            "iat": now,
            "exp": now + (ttl if ttl is not None else self._config.ttl),
        }
        return jwt.encode(payload, self._config.secret, algorithm=self._config.algorithm)

    def verify(self, token: str) -> Principal:
        """
        Decode *token* and return its Principal.

        Raises
        ------
        TokenExpired
            The signature is valid but ``exp`` has passed.
        TokenMalformed
            The token cannot be parsed or its signature does not match.
        TokenInvalid
            Anything else: disallowed algorithm, missing or ill-typed claims.
        """
        try:
            claims = jwt.decode(
                token,
                self._config.secret,
                algorithms=[self._config.algorithm],
                options={"require": ["sub", "iat", "exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except jwt.DecodeError as exc:
            # InvalidSignatureError is a DecodeError subclass.
            raise TokenMalformed(f"Malformed token: {exc}") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenInvalid(f"Invalid token: {exc}") from exc

        subject = claims["sub"]
        if not isinstance(subject, str) or not (subject.isascii() and subject.isdigit()):
            raise TokenInvalid("Token subject is not a user id")
        role = claims.get(ROLE_CLAIM)
        if not isinstance(role, str) or not role:
            raise TokenInvalid("Token carries no role")

        return Principal(subject_id=int(subject), role=role)


# Process-wide codec built once from settings; read-only afterwards.
token_codec = TokenCodec(TokenConfig.from_settings())
