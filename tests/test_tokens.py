"""
Token codec tests: issue/verify round trips, expiry, tampering and
algorithm pinning.
"""
import base64
import json
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from community.errors import TokenError, TokenExpired, TokenInvalid, TokenMalformed
from community.tokens import Principal, Role, TokenCodec, TokenConfig

SECRET = "unit-test-secret-key-that-is-long-enough"

codec = TokenCodec(TokenConfig(secret=SECRET, algorithm="HS256", ttl=timedelta(hours=1)))


def _b64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def _claims(**overrides) -> dict:
    now = datetime.now(timezone.utc)
    claims = {"sub": "7", "role": "MEMBER", "iat": now, "exp": now + timedelta(minutes=5)}
    claims.update(overrides)
    return {k: v for k, v in claims.items() if v is not None}


# ---------------------------------------------------------------------------
# Round trip
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "subject_id, role, ttl",
    [
        (1, Role.MEMBER, timedelta(seconds=30)),
        (42, "MEMBER", timedelta(hours=1)),
        (987654321, "GUEST", timedelta(days=7)),
    ],
)
def test_issue_then_verify_round_trip(subject_id, role, ttl):
    principal = codec.verify(codec.issue(subject_id, role, ttl))
    assert principal == Principal(subject_id=subject_id, role=str(getattr(role, "value", role)))


def test_default_ttl_comes_from_config():
    token = codec.issue(5, Role.MEMBER)
    claims = jwt.decode(token, SECRET, algorithms=["HS256"])
    assert claims["exp"] - claims["iat"] == 3600
    assert claims["sub"] == "5"
    assert claims["role"] == "MEMBER"


def test_token_has_three_segments():
    assert codec.issue(1, Role.MEMBER).count(".") == 2


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------

def test_expired_token_raises_token_expired():
    token = codec.issue(1, Role.MEMBER, ttl=timedelta(seconds=-1))
    with pytest.raises(TokenExpired):
        codec.verify(token)


def test_expired_is_not_reported_as_invalid():
    token = codec.issue(1, Role.MEMBER, ttl=timedelta(seconds=-1))
    with pytest.raises(TokenError) as exc_info:
        codec.verify(token)
    assert type(exc_info.value) is TokenExpired
    assert exc_info.value.code == "token_expired"


# ---------------------------------------------------------------------------
# Tampering
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("position", [0, 5, 20, 40])
def test_flipped_signature_byte_is_rejected(position: int):
    header, payload, signature = codec.issue(3, Role.MEMBER).split(".")
    # The final base64 character carries padding bits, so flip within the body.
    replacement = "A" if signature[position] != "A" else "B"
    tampered_sig = signature[:position] + replacement + signature[position + 1:]
    with pytest.raises((TokenMalformed, TokenInvalid)):
        codec.verify(f"{header}.{payload}.{tampered_sig}")


def test_modified_claims_are_rejected():
    header, _, signature = codec.issue(3, Role.MEMBER).split(".")
    forged_payload = _b64({"sub": "1", "role": "MEMBER", "iat": 0, "exp": 9999999999})
    with pytest.raises(TokenMalformed):
        codec.verify(f"{header}.{forged_payload}.{signature}")


def test_token_signed_with_other_secret_is_rejected():
    other = TokenCodec(TokenConfig(secret="another-secret-key-that-is-long-enough"))
    with pytest.raises(TokenMalformed):
        codec.verify(other.issue(3, Role.MEMBER))


@pytest.mark.parametrize("garbage", ["garbage", "a.b", "a.b.c", "", "....", "Bearer x.y.z"])
def test_garbage_is_malformed(garbage: str):
    with pytest.raises(TokenMalformed):
        codec.verify(garbage)


# ---------------------------------------------------------------------------
# Algorithm pinning
# ---------------------------------------------------------------------------

def test_none_algorithm_is_rejected():
    header = _b64({"alg": "none", "typ": "JWT"})
    payload = _b64({"sub": "1", "role": "MEMBER", "iat": 0, "exp": 9999999999})
    with pytest.raises(TokenInvalid):
        codec.verify(f"{header}.{payload}.")


def test_other_hmac_algorithm_is_rejected():
    token = jwt.encode(_claims(), SECRET, algorithm="HS512")
    with pytest.raises(TokenInvalid):
        codec.verify(token)


@pytest.mark.parametrize("algorithm", ["none", "RS256", "ES256", ""])
def test_config_only_accepts_hmac_algorithms(algorithm: str):
    with pytest.raises(ValueError):
        TokenConfig(secret=SECRET, algorithm=algorithm)


def test_config_rejects_empty_secret():
    with pytest.raises(ValueError):
        TokenConfig(secret="")


def test_config_is_immutable():
    config = TokenConfig(secret=SECRET)
    with pytest.raises(AttributeError):
        config.secret = "changed"


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "overrides",
    [
        {"sub": "not-a-number"},
        {"sub": "\u00b2"},
        {"sub": "\u0663"},
        {"sub": "-5"},
        {"role": None},
        {"role": ""},
        {"role": 5},
        {"sub": None},
        {"exp": None},
        {"iat": None},
    ],
)
def test_bad_claims_are_invalid(overrides: dict):
    token = jwt.encode(_claims(**overrides), SECRET, algorithm="HS256")
    with pytest.raises(TokenInvalid):
        codec.verify(token)


def test_issued_in_the_future_is_invalid():
    future = datetime.now(timezone.utc) + timedelta(hours=1)
    token = jwt.encode(_claims(iat=future, exp=future + timedelta(hours=1)), SECRET, algorithm="HS256")
    with pytest.raises(TokenInvalid):
        codec.verify(token)
