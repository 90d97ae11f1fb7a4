# app/services/sms_service.py
import json
import logging
import re
import time
from typing import Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError
from starlette.concurrency import run_in_threadpool
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from app.core.config import settings
from app.core.constants import SMS_RESEND_LOCK_KEY, SMS_VERIFICATION_KEY
from app.utils.errors import InvalidPhoneFormatError, InvalidVerificationCodeError, VerificationThrottledError

logger = logging.getLogger(__name__)

_E164 = re.compile(r"^\+[1-9]\d{9,14}$")


def format_phone_number(phone: str, default_country_code: str = settings.SMS_DEFAULT_COUNTRY_CODE) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if not (phone or "").strip().startswith("+"):
        return f"{default_country_code}{digits}"
    return f"+{digits}"


def validate_phone_number(phone: str) -> bool:
    return bool(_E164.match(format_phone_number(phone)))


class TwilioVerifyProvider:
    """Thin wrapper over the Twilio Verify v2 API."""

    def __init__(
        self,
        account_sid: Optional[str] = settings.TWILIO_ACCOUNT_SID,
        auth_token: Optional[str] = settings.TWILIO_AUTH_TOKEN,
        service_sid: Optional[str] = settings.TWILIO_VERIFY_SERVICE_SID,
    ):
        self.service_sid = service_sid
        self.client = Client(account_sid, auth_token) if account_sid and auth_token else None

    @property
    def configured(self) -> bool:
        return bool(self.client and self.service_sid)

    def send(self, phone: str) -> str:
        verification = self.client.verify.v2.services(self.service_sid).verifications.create(
            to=phone, channel="sms"
        )
        return verification.sid

    def check(self, phone: str, code: str) -> str:
        result = self.client.verify.v2.services(self.service_sid).verification_checks.create(
            to=phone, code=code
        )
        return result.status


class SMSService:
    def __init__(
        self,
        redis: aioredis.Redis,
        provider: Optional[TwilioVerifyProvider] = None,
        resend_interval: int = settings.SMS_RESEND_INTERVAL_SECONDS,
        ttl_seconds: int = settings.SMS_VERIFICATION_TTL_SECONDS,
        max_attempts: int = settings.SMS_MAX_VERIFY_ATTEMPTS,
    ):
        self.redis = redis
        self.provider = provider or TwilioVerifyProvider()
        self.resend_interval = resend_interval
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts

    @staticmethod
    def _key(phone: str) -> str:
        return SMS_VERIFICATION_KEY.format(phone=phone)

    async def send_verification_code(self, phone: str, user_id: Optional[int] = None) -> bool:
        """Start a verification. Raises only for bad input or throttling; delivery failures return False."""
        if not validate_phone_number(phone):
            raise InvalidPhoneFormatError()
        if not self.provider.configured:
            logger.warning("Twilio Verify not configured. Skipping SMS.")
            return False

        formatted = format_phone_number(phone)
        key = self._key(formatted)
        lock_key = SMS_RESEND_LOCK_KEY.format(phone=formatted)
        # Only one send per resend interval reaches the provider
        if not await self.redis.set(lock_key, "1", nx=True, ex=self.resend_interval):
            raise VerificationThrottledError()

        try:
            sid = await run_in_threadpool(self.provider.send, formatted)
        except TwilioRestException as e:
            logger.error(f"Twilio error sending verification to {formatted}: {e}")
            await self._release(lock_key)
            return False
        except Exception as e:
            logger.error(f"Unexpected error sending verification to {formatted}: {e}")
            await self._release(lock_key)
            return False

        data = {"phone": formatted, "verification_sid": sid, "created_at": time.time(), "attempts": 0}
        try:
            await self.redis.setex(key, self.ttl_seconds, json.dumps(data))
        except RedisError as e:
            logger.error(f"Could not record SMS verification for {formatted}: {e}")
        logger.info(f"SMS verification sent to {formatted}" + (f" for user {user_id}" if user_id else ""))
        return True

    async def _release(self, lock_key: str) -> None:
        try:
            await self.redis.delete(lock_key)
        except RedisError as e:
            logger.error(f"Could not release SMS resend lock {lock_key}: {e}")

    async def verify_code(self, phone: str, code: str) -> bool:
        if not self.provider.configured:
            logger.warning("Twilio Verify not configured. Skipping verification.")
            return False

        formatted = format_phone_number(phone)
        key = self._key(formatted)
        stored = await self.redis.get(key)
        if not stored:
            return False

        data = json.loads(stored)
        if data.get("attempts", 0) >= self.max_attempts:
            await self.redis.delete(key)
            raise InvalidVerificationCodeError("Maximum verification attempts exceeded")

        try:
            status = await run_in_threadpool(self.provider.check, formatted, code)
        except Exception as e:
            logger.error(f"Failed to check SMS code for {formatted}: {e}")
            status = "error"

        if status == "approved":
            await self.redis.delete(key)
            logger.info(f"SMS verification successful for {formatted}")
            return True

        data["attempts"] = data.get("attempts", 0) + 1
        await self.redis.setex(key, self.ttl_seconds, json.dumps(data))
        logger.warning(f"SMS verification failed for {formatted} (status: {status})")
        return False
