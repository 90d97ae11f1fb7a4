"""Profile, security info and account deletion."""
from tests.conftest import PASSWORD, bearer


async def test_get_and_update_profile(async_client, make_user, login):
    user = make_user(display_name="Before")
    data = await login(user.email)

    r = await async_client.get("/users/me", headers=bearer(data))
    assert r.status_code == 200
    assert r.json()["data"]["display_name"] == "Before"
    assert "password_hash" not in r.json()["data"]

    r = await async_client.patch(
        "/users/me", json={"display_name": "After", "avatar_url": "https://img.example.com/a.png"}, headers=bearer(data)
    )
    assert r.status_code == 200
    assert r.json()["data"]["display_name"] == "After"
    assert r.json()["data"]["avatar_url"] == "https://img.example.com/a.png"


async def test_profile_requires_authentication(async_client):
    r = await async_client.get("/users/me")
    assert r.status_code == 401

    r = await async_client.get("/users/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["code"] == "INVALID_TOKEN"


async def test_security_info(async_client, make_user, login):
    user = make_user()
    await async_client.post("/auth/login", json={"email": user.email, "password": "WrongPass1!"})
    data = await login(user.email)

    r = await async_client.get("/users/me/security", headers=bearer(data))
    assert r.status_code == 200
    info = r.json()["data"]
    assert info["failed_login_attempts"] == 0
    assert info["is_locked"] is False
    assert info["last_login_ip"] == "127.0.0.1"
    assert info["two_factor_enabled"] is False


async def test_delete_account_revokes_everything(async_client, make_user, login, db_session):
    user = make_user()
    data = await login(user.email)
    other = await login(user.email)

    r = await async_client.delete("/users/me", headers=bearer(data))
    assert r.status_code == 200

    for tokens in (data, other):
        r = await async_client.get("/users/me", headers=bearer(tokens))
        assert r.status_code == 401
        r = await async_client.post("/auth/refresh", json={"refresh_token": tokens["tokens"]["refresh_token"]})
        assert r.status_code == 401

    r = await async_client.post("/auth/login", json={"email": user.email, "password": PASSWORD})
    assert r.status_code == 403
    assert r.json()["code"] == "ACCOUNT_SUSPENDED"

    db_session.refresh(user)
    assert user.deleted_at is not None
    assert user.status == "inactive"
