"""
Credential hashing backed by bcrypt.

bcrypt embeds the algorithm version, cost and salt in the hash string
(``$2b$12$<22-char salt><31-char digest>``), so ``verify`` needs nothing
but the stored hash.  bcrypt only reads the first 72 bytes of its input;
passwords are truncated to that limit explicitly because recent bcrypt
releases raise on longer input instead of truncating silently.
"""
import logging
import re

import bcrypt

from community.config import settings
from community.errors import HashingError

logger = logging.getLogger(__name__)

BCRYPT_MAX_BYTES = 72

_BCRYPT_HASH_RE = re.compile(r"^\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}$")


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


class PasswordHasher:
    """
    One-way password hashing with a tunable work factor.

    Args:
        rounds: bcrypt cost (log2 of the key-expansion rounds, 4..31).
    """

    def __init__(self, rounds: int = 12) -> None:
        if not 4 <= rounds <= 31:
            raise ValueError(f"bcrypt rounds must be between 4 and 31, got {rounds}")
        self._rounds = rounds

    @property
    def rounds(self) -> int:
        return self._rounds

    def hash(self, password: str) -> str:
        """Return a salted bcrypt hash of *password*; a new salt every call."""
        try:
            salt = bcrypt.gensalt(rounds=self._rounds)
            return bcrypt.hashpw(_encode(password), salt).decode("ascii")
        except ValueError as exc:
            logger.exception("bcrypt failed to hash a password")
            raise HashingError() from exc

    def verify(self, password: str, password_hash: str) -> bool:
        """
        Check *password* against a stored bcrypt hash in constant time.

        Returns False for anything that is not shaped like a bcrypt hash.
        Raises ``HashingError`` when the hash looks like bcrypt but its
        parameters are unusable (e.g. an out-of-range cost), which points
        at corrupted storage rather than a wrong password.
        """
        if not password_hash or not _BCRYPT_HASH_RE.match(password_hash):
            return False
        try:
            return bcrypt.checkpw(_encode(password), password_hash.encode("ascii"))
        except ValueError as exc:
            logger.error("Stored password hash is corrupt")
            raise HashingError("Stored password hash is corrupt") from exc

    def needs_rehash(self, password_hash: str) -> bool:
        """True when *password_hash* was produced with a different cost."""
        match = _BCRYPT_HASH_RE.match(password_hash or "")
        if match is None:
            return True
        return int(password_hash[4:6]) != self._rounds


# Module-level singleton configured from settings at startup.
password_hasher = PasswordHasher(rounds=settings.BCRYPT_ROUNDS)
