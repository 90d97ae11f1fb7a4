"""Session tracking: listing, revocation, sweeping and enrichment."""
from datetime import timedelta

import httpx
import pytest

from app.core.security import utcnow
from app.models.session import UserSession
from app.services.geolocation_service import GeolocationService
from app.services.session_service import SessionTracker, location_display
from app.utils.user_agent import parse_user_agent
from tests.conftest import bearer

CHROME_ON_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
SAFARI_ON_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)


async def test_login_creates_session_and_list_marks_current(async_client, make_user, login):
    user = make_user()
    first = await login(user.email)
    second = await login(user.email)

    r = await async_client.get("/users/me/sessions", headers={**bearer(first), "User-Agent": CHROME_ON_WINDOWS})
    assert r.status_code == 200
    sessions = r.json()["data"]
    assert {s["id"] for s in sessions} == {first["session_id"], second["session_id"]}

    current = [s for s in sessions if s["is_current"]]
    assert [s["id"] for s in current] == [first["session_id"]]
    assert sessions[0]["id"] == first["session_id"]  # just touched
    for s in sessions:
        assert s["session_token"].endswith("...")
        assert len(s["session_token"]) == 11
        assert s["location_display"] == "Lima, Peru"


async def test_revoking_a_session_kills_its_tokens(async_client, make_user, login):
    user = make_user()
    keep = await login(user.email)
    drop = await login(user.email)

    r = await async_client.delete(f"/users/me/sessions/{drop['session_id']}", headers=bearer(keep))
    assert r.status_code == 200

    r = await async_client.get("/users/me", headers=bearer(drop))
    assert r.status_code == 401
    r = await async_client.post("/auth/refresh", json={"refresh_token": drop["tokens"]["refresh_token"]})
    assert r.status_code == 401
    assert r.json()["code"] == "INVALID_REFRESH"

    r = await async_client.get("/users/me", headers=bearer(keep))
    assert r.status_code == 200

    r = await async_client.delete(f"/users/me/sessions/{drop['session_id']}", headers=bearer(keep))
    assert r.status_code == 404
    assert r.json()["code"] == "SESSION_NOT_FOUND"


async def test_revoke_other_sessions_keeps_current(async_client, make_user, login):
    user = make_user()
    current = await login(user.email)
    others = [await login(user.email) for _ in range(2)]

    r = await async_client.delete("/users/me/sessions", headers=bearer(current))
    assert r.status_code == 200
    assert r.json()["data"]["revoked"] == 2

    for other in others:
        r = await async_client.get("/users/me", headers=bearer(other))
        assert r.status_code == 401
    r = await async_client.get("/users/me/sessions", headers=bearer(current))
    assert [s["id"] for s in r.json()["data"]] == [current["session_id"]]


async def test_sessions_of_other_users_cannot_be_revoked(async_client, make_user, login):
    alice = await login(make_user().email)
    bob = await login(make_user().email)

    r = await async_client.delete(f"/users/me/sessions/{bob['session_id']}", headers=bearer(alice))
    assert r.status_code == 404
    r = await async_client.get("/users/me", headers=bearer(bob))
    assert r.status_code == 200


def test_sweep_expired_is_idempotent(db_session, make_user):
    user = make_user()
    now = utcnow()
    for expires_at in (now - timedelta(days=1), now + timedelta(days=1)):
        db_session.add(UserSession(
            user_id=user.id, session_token=f"token-{expires_at.timestamp()}",
            created_at=now, last_accessed_at=now, expires_at=expires_at,
        ))
    db_session.commit()

    assert SessionTracker.sweep_expired(db_session) == 1
    assert SessionTracker.sweep_expired(db_session) == 0
    stats = SessionTracker.stats(db_session)
    assert stats["active_sessions"] == 1
    assert stats["total_sessions"] == 2


@pytest.mark.parametrize(
    "ua, device_type, browser, os_name",
    [
        (CHROME_ON_WINDOWS, "desktop", "Chrome 120.0.0.0", "Windows 10/11"),
        (SAFARI_ON_IPHONE, "mobile", "Safari 17.1", "iOS 17.1"),
        ("curl/8.4.0", "api_client", "cURL", "Unknown"),
        ("", "unknown", "Unknown", "Unknown"),
    ],
)
def test_parse_user_agent(ua, device_type, browser, os_name):
    parsed = parse_user_agent(ua)
    assert parsed["device_type"] == device_type
    assert parsed["browser"] == browser
    assert parsed["os"] == os_name


def test_location_display():
    assert location_display({"city": "Lima", "country": "Peru"}) == "Lima, Peru"
    assert location_display({"country": "Peru"}) == "Peru"
    assert location_display(None) == "Unknown"


async def test_geolocation_maps_api_response():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/8.8.8.8"
        return httpx.Response(200, json={
            "ip": "8.8.8.8",
            "isp": {"asn": "AS15169", "org": "Google LLC", "isp": "Google LLC"},
            "location": {"country": "United States", "country_code": "US", "city": "Mountain View", "state": "California"},
            "risk": {"is_datacenter": True, "risk_score": 5},
        })

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        location = await GeolocationService(client, api_url="https://geo.test").lookup("8.8.8.8")

    assert location["city"] == "Mountain View"
    assert location["region"] == "California"
    assert location["is_datacenter"] is True
    assert location["risk_score"] == 5


async def test_geolocation_falls_back_on_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        service = GeolocationService(client, api_url="https://geo.test")
        location = await service.lookup("8.8.8.8")
        local = await service.lookup("127.0.0.1")

    assert location["country_code"] == "XX"
    assert local["city"] == "Localhost"
