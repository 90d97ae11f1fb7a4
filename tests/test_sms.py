"""Phone verification through Twilio Verify, with a fake provider."""
import asyncio

import pytest

from app.services.sms_service import SMSService, format_phone_number, validate_phone_number
from app.utils.errors import InvalidPhoneFormatError, InvalidVerificationCodeError, VerificationThrottledError
from tests.conftest import bearer
from tests.fakes import FakeRedis, FakeSMSProvider

PHONE = "+15551234567"


@pytest.fixture
def provider():
    return FakeSMSProvider()


@pytest.fixture
def sms(provider):
    return SMSService(FakeRedis(), provider, resend_interval=60, ttl_seconds=600, max_attempts=3)


def test_phone_formatting():
    assert format_phone_number("+1 (555) 123-4567") == PHONE
    assert format_phone_number("987654321", default_country_code="+51") == "+51987654321"
    assert validate_phone_number(PHONE)
    assert not validate_phone_number("+12")


async def test_second_send_within_interval_is_throttled(sms, provider):
    assert await sms.send_verification_code(PHONE) is True

    with pytest.raises(VerificationThrottledError):
        await sms.send_verification_code(PHONE)
    assert provider.sent == [PHONE]


async def test_concurrent_sends_reach_provider_once(sms, provider):
    results = await asyncio.gather(
        sms.send_verification_code(PHONE), sms.send_verification_code(PHONE), return_exceptions=True
    )

    assert provider.sent == [PHONE]
    assert sorted(type(r).__name__ for r in results) == ["VerificationThrottledError", "bool"]


async def test_failed_send_releases_resend_window():
    class Flaky(FakeSMSProvider):
        def send(self, phone):
            if not self.sent:
                self.sent.append("failed")
                raise RuntimeError("provider down")
            return super().send(phone)

    provider = Flaky()
    service = SMSService(FakeRedis(), provider, resend_interval=60)

    assert await service.send_verification_code(PHONE) is False
    assert await service.send_verification_code(PHONE) is True
    assert provider.sent == ["failed", PHONE]


async def test_invalid_number_is_rejected_before_sending(sms, provider):
    with pytest.raises(InvalidPhoneFormatError):
        await sms.send_verification_code("+12")
    assert provider.sent == []


async def test_verify_code_and_attempt_limit(sms, provider):
    await sms.send_verification_code(PHONE)

    for _ in range(3):
        assert await sms.verify_code(PHONE, "000000") is False
    with pytest.raises(InvalidVerificationCodeError):
        await sms.verify_code(PHONE, "123456")
    # The pending verification is gone after the limit
    assert await sms.verify_code(PHONE, "123456") is False


async def test_verify_code_success_clears_pending_verification(sms):
    await sms.send_verification_code(PHONE)
    assert await sms.verify_code(PHONE, "123456") is True
    assert await sms.verify_code(PHONE, "123456") is False


async def test_unconfigured_provider_skips_sending():
    class Unconfigured(FakeSMSProvider):
        @property
        def configured(self):
            return False

    service = SMSService(FakeRedis(), Unconfigured())
    assert await service.send_verification_code(PHONE) is False


async def test_phone_verification_endpoints(async_client, make_user, login, sms_provider):
    user = make_user()
    data = await login(user.email)

    r = await async_client.post("/users/me/phone/verify", json={"code": "123456"}, headers=bearer(data))
    assert r.status_code == 400
    assert r.json()["code"] == "NO_PHONE_TO_VERIFY"

    r = await async_client.post("/users/me/phone", json={"phone": "+1 555 123 4567"}, headers=bearer(data))
    assert r.status_code == 200
    assert r.json()["data"] == {"phone": PHONE, "sent": True}

    r = await async_client.post("/users/me/phone", json={"phone": PHONE}, headers=bearer(data))
    assert r.status_code == 429
    assert r.json()["code"] == "VERIFICATION_THROTTLED"
    assert sms_provider.sent == [PHONE]

    r = await async_client.post("/users/me/phone/verify", json={"code": "999999"}, headers=bearer(data))
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_VERIFICATION_CODE"

    r = await async_client.post("/users/me/phone/verify", json={"code": "123456"}, headers=bearer(data))
    assert r.status_code == 200
    assert r.json()["data"]["verified"] is True

    r = await async_client.get("/users/me", headers=bearer(data))
    assert r.json()["data"]["phone_verified"] is True
