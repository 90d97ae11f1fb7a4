"""Account lockout behaviour, at the guard and through the login endpoint."""
from datetime import timedelta

import pytest

from app.core.security import utcnow
from app.services.lockout import LockoutGuard
from app.utils.errors import AccountLockedError
from tests.conftest import PASSWORD


def test_guard_locks_after_max_attempts(db_session, make_user):
    guard = LockoutGuard(max_attempts=3, lockout_duration=timedelta(minutes=15))
    user = make_user()
    now = utcnow()

    for _ in range(2):
        guard.register_failure(db_session, user, now)
    assert user.failed_login_attempts == 2
    assert not guard.is_locked(user, now)

    guard.register_failure(db_session, user, now)
    assert user.failed_login_attempts == 3
    assert user.locked_until == now + timedelta(minutes=15)
    with pytest.raises(AccountLockedError) as exc:
        guard.ensure_not_locked(user, now)
    assert exc.value.remaining_minutes == 15


def test_failures_while_locked_change_nothing(db_session, make_user):
    guard = LockoutGuard(max_attempts=1)
    user = make_user()
    now = utcnow()
    guard.register_failure(db_session, user, now)
    locked_until = user.locked_until

    guard.register_failure(db_session, user, now + timedelta(minutes=1))
    assert user.failed_login_attempts == 1
    assert user.locked_until == locked_until


def test_failure_after_expired_lock_starts_new_window_at_one(db_session, make_user):
    guard = LockoutGuard(max_attempts=5)
    user = make_user(failed_login_attempts=5, locked_until=utcnow() - timedelta(minutes=1))

    guard.register_failure(db_session, user)
    assert user.failed_login_attempts == 1
    assert user.locked_until is None


def test_success_clears_counters(db_session, make_user):
    guard = LockoutGuard()
    user = make_user(failed_login_attempts=3)

    guard.register_success(db_session, user, "10.1.2.3")
    assert user.failed_login_attempts == 0
    assert user.locked_until is None
    assert user.last_login_ip == "10.1.2.3"
    assert user.last_login_at is not None


def test_remaining_minutes_rounds_up():
    class Locked:
        locked_until = utcnow() + timedelta(minutes=4, seconds=1)

    assert LockoutGuard.remaining_minutes(Locked()) == 5


async def test_sixth_attempt_is_locked_even_with_correct_password(async_client, make_user, db_session):
    user = make_user()

    for _ in range(5):
        r = await async_client.post("/auth/login", json={"email": user.email, "password": "WrongPass1!"})
        assert r.status_code == 401
        assert r.json()["code"] == "INVALID_CREDENTIALS"

    r = await async_client.post("/auth/login", json={"email": user.email, "password": PASSWORD})
    assert r.status_code == 423
    body = r.json()
    assert body["code"] == "ACCOUNT_LOCKED"
    assert body["details"]["remaining_minutes"] == 15

    db_session.refresh(user)
    assert user.failed_login_attempts == 5


async def test_unknown_email_does_not_reveal_existence(async_client):
    r = await async_client.post("/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})
    assert r.status_code == 401
    assert r.json()["code"] == "INVALID_CREDENTIALS"
