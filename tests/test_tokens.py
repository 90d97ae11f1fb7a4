"""Token codec tests."""
from datetime import timedelta

import pytest

from app.core.config import settings
from app.core.tokens import TokenCodec
from app.utils.errors import InvalidTokenError


def _codec(**overrides):
    values = dict(
        algorithm="HS256",
        issuer="auth-backend",
        audience="auth-frontend",
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=7),
        leeway_seconds=0,
        secret="access-secret",
        refresh_secret="refresh-secret",
    )
    values.update(overrides)
    return TokenCodec(**values)


def test_access_token_round_trip_carries_standard_claims():
    codec = _codec()
    token = codec.sign_access({"sub": 42, "email": "a@example.com", "sid": "s-1"}, "jti-1")

    claims = codec.verify_access(token)
    assert claims["sub"] == "42"
    assert claims["email"] == "a@example.com"
    assert claims["jti"] == "jti-1"
    assert claims["type"] == "access"
    assert claims["iss"] == "auth-backend"
    assert claims["aud"] == "auth-frontend"
    assert claims["exp"] - claims["iat"] == 15 * 60


def test_refresh_token_is_rejected_as_access_token():
    codec = _codec()
    refresh = codec.sign_refresh({"sub": 1, "email": "a@example.com"}, "jti-2")

    with pytest.raises(InvalidTokenError):
        codec.verify_access(refresh)
    assert codec.verify_refresh(refresh)["type"] == "refresh"


def test_access_and_refresh_use_separate_secrets():
    codec = _codec()
    other = _codec(refresh_secret="another-refresh-secret")
    refresh = codec.sign_refresh({"sub": 1, "email": "a@example.com"}, "jti-3")

    with pytest.raises(InvalidTokenError):
        other.verify_refresh(refresh)


def test_wrong_audience_is_rejected():
    token = _codec(audience="someone-else").sign_access({"sub": 1, "email": "a@example.com"}, "jti-4")
    with pytest.raises(InvalidTokenError):
        _codec().verify_access(token)


def test_expired_token_is_rejected():
    codec = _codec(access_ttl=timedelta(seconds=-60))
    token = codec.sign_access({"sub": 1, "email": "a@example.com"}, "jti-5")
    with pytest.raises(InvalidTokenError):
        codec.verify_access(token)


def test_missing_token_is_rejected():
    with pytest.raises(InvalidTokenError):
        _codec().verify_access("")


@pytest.mark.parametrize(
    "overrides",
    [
        {"algorithm": "HS512"},
        {"refresh_secret": None},
        {"algorithm": "RS256"},
        {"leeway_seconds": 301},
    ],
)
def test_invalid_configuration_fails_fast(overrides):
    with pytest.raises(ValueError):
        _codec(**overrides)


def test_codec_from_test_settings():
    codec = TokenCodec.from_settings(settings)
    assert codec.algorithm == "HS256"
    assert codec.access_ttl == timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
