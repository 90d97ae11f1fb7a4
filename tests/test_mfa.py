"""TOTP setup/verification and single-use backup codes."""
import pyotp
import pytest

from app.core.config import settings
from app.services.mfa_service import MFAService
from app.utils.errors import InvalidVerificationCodeError, TwoFactorNotInitializedError
from tests.conftest import PASSWORD, bearer


@pytest.fixture
def mfa():
    return MFAService(issuer_name="Auth Backend")


def test_setup_returns_secret_qr_and_backup_codes(db_session, make_user, mfa):
    user = make_user()
    result = mfa.setup(db_session, user)

    assert result["otpauth_url"].startswith("otpauth://totp/")
    assert "issuer=Auth%20Backend" in result["otpauth_url"]
    assert result["qrcode_data_url"].startswith("data:image/png;base64,")
    assert len(result["backup_codes"]) == 10
    assert user.two_factor_secret == result["secret"]
    assert user.two_factor_enabled is False
    assert mfa.remaining_backup_codes(db_session, user) == 10


def test_verify_enables_two_factor(db_session, make_user, mfa):
    user = make_user()
    secret = mfa.setup(db_session, user)["secret"]

    assert mfa.verify(db_session, user, "abcdef") is False
    assert user.two_factor_enabled is False
    assert mfa.verify(db_session, user, pyotp.TOTP(secret).now()) is True
    assert user.two_factor_enabled is True


def test_verify_without_setup_fails(db_session, make_user, mfa):
    with pytest.raises(TwoFactorNotInitializedError):
        mfa.verify(db_session, make_user(), "123456")


def test_backup_code_is_single_use(db_session, make_user, mfa):
    user = make_user()
    codes = mfa.setup(db_session, user)["backup_codes"]

    assert mfa.consume_backup_code(db_session, user, codes[0].lower()) is True
    assert mfa.consume_backup_code(db_session, user, codes[0]) is False
    assert mfa.remaining_backup_codes(db_session, user) == 9


def test_disable_requires_current_totp(db_session, make_user, mfa):
    user = make_user()
    setup = mfa.setup(db_session, user)
    mfa.verify(db_session, user, pyotp.TOTP(setup["secret"]).now())

    with pytest.raises(InvalidVerificationCodeError):
        mfa.disable(db_session, user, setup["backup_codes"][0])

    mfa.disable(db_session, user, pyotp.TOTP(setup["secret"]).now())
    assert user.two_factor_enabled is False
    assert user.two_factor_secret is None
    assert mfa.remaining_backup_codes(db_session, user) == 0


async def test_login_with_two_factor(async_client, make_user, login, db_session):
    user = make_user()
    data = await login(user.email)

    r = await async_client.post("/users/me/2fa/setup", headers=bearer(data))
    assert r.status_code == 200
    setup = r.json()["data"]
    totp = pyotp.TOTP(setup["secret"])

    r = await async_client.post("/users/me/2fa/verify", json={"code": totp.now()}, headers=bearer(data))
    assert r.status_code == 200
    assert r.json()["data"]["two_factor_enabled"] is True

    # Correct password without a second factor counts as one failure
    r = await async_client.post("/auth/login", json={"email": user.email, "password": PASSWORD})
    assert r.status_code == 401
    assert r.json()["code"] == "TOTP_REQUIRED"
    db_session.refresh(user)
    assert user.failed_login_attempts == 1

    data = await login(user.email, totp_code=totp.now())
    assert data["tokens"]["access_token"]
    db_session.refresh(user)
    assert user.failed_login_attempts == 0

    backup = setup["backup_codes"][0]
    assert (await login(user.email, backup_code=backup))["tokens"]
    r = await async_client.post(
        "/auth/login", json={"email": user.email, "password": PASSWORD, "backup_code": backup}
    )
    assert r.status_code == 401
    assert r.json()["code"] == "TOTP_REQUIRED"


async def test_enrolled_user_needs_second_factor_when_enrollment_is_off(
    async_client, make_user, login, db_session, mfa, monkeypatch
):
    user = make_user()
    setup = mfa.setup(db_session, user)
    assert mfa.verify(db_session, user, pyotp.TOTP(setup["secret"]).now())
    monkeypatch.setattr(settings, "TWO_FACTOR_ENABLED", False)

    r = await async_client.post("/auth/login", json={"email": user.email, "password": PASSWORD})
    assert r.status_code == 401
    assert r.json()["code"] == "TOTP_REQUIRED"

    data = await login(user.email, totp_code=pyotp.TOTP(setup["secret"]).now())
    r = await async_client.post("/users/me/2fa/setup", headers=bearer(data))
    assert r.status_code == 403
    assert r.json()["code"] == "TWO_FACTOR_UNAVAILABLE"
