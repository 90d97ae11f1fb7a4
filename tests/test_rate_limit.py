"""Sliding-window limiter keyed on the connecting address."""
import pytest
from fastapi import HTTPException
from starlette.requests import Request

from app.core.config import settings
from app.dependencies.rate_limit import SlidingWindowLimiter, strict_rate_limit
from tests.conftest import PASSWORD, bearer


def _request(host: str, path: str = "/auth/login", headers=None) -> Request:
    return Request({
        "type": "http",
        "method": "POST",
        "scheme": "http",
        "server": ("testserver", 80),
        "path": path,
        "query_string": b"",
        "headers": headers or [],
        "client": (host, 50000),
    })


@pytest.fixture
def limits_on(monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", True)
    strict_rate_limit.reset()
    yield
    strict_rate_limit.reset()


async def test_forwarded_header_does_not_reset_the_window(async_client, limits_on):
    statuses = []
    for i in range(11):
        r = await async_client.post(
            "/auth/login",
            json={"email": "nobody@example.com", "password": "WrongPassw0rd!"},
            headers={"X-Forwarded-For": f"10.0.0.{i}"},
        )
        statuses.append(r.status_code)

    assert statuses == [401] * 10 + [429]


async def test_forwarded_header_is_not_recorded_as_login_ip(async_client, make_user, limits_on):
    user = make_user()
    r = await async_client.post(
        "/auth/login",
        json={"email": user.email, "password": PASSWORD},
        headers={"X-Forwarded-For": "203.0.113.9"},
    )
    assert r.status_code == 200

    r = await async_client.get("/users/me/security", headers=bearer(r.json()["data"]))
    assert r.json()["data"]["last_login_ip"] == "127.0.0.1"


async def test_limit_applies_per_address(limits_on):
    limiter = SlidingWindowLimiter(limit=2, window_seconds=60)
    spoofed = [(b"x-forwarded-for", b"198.51.100.1")]

    assert await limiter(_request("10.1.1.1"))
    assert await limiter(_request("10.1.1.1", headers=spoofed))
    with pytest.raises(HTTPException) as exc:
        await limiter(_request("10.1.1.1"))
    assert exc.value.status_code == 429
    assert await limiter(_request("10.1.1.2"))


async def test_idle_keys_are_dropped_after_the_window(limits_on):
    now = [0.0]
    limiter = SlidingWindowLimiter(limit=5, window_seconds=60, clock=lambda: now[0])
    for i in range(5):
        await limiter(_request(f"10.0.0.{i}"))
    assert len(limiter._buckets) == 5

    now[0] = 61.0
    await limiter(_request("10.0.0.99"))
    assert list(limiter._buckets) == ["10.0.0.99:/auth/login"]
