"""In-process doubles for Redis and the outbound providers."""
import time
from typing import Any, Dict, List, Optional, Set

from app.services.oauth_service import OAuthIdentity, ProviderValidation


class FakeRedis:
    """Dict-backed stand-in for the subset of ``redis.asyncio.Redis`` in use."""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.sets: Dict[str, Set[str]] = {}
        self.expiry: Dict[str, float] = {}

    def _alive(self, key: str) -> bool:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self.values.pop(key, None)
            self.sets.pop(key, None)
            self.expiry.pop(key, None)
            return False
        return key in self.values or key in self.sets

    def _set(self, key, value, ex=None, px=None):
        self.values[key] = value
        self.expiry.pop(key, None)
        if ex is not None:
            self.expiry[key] = time.monotonic() + ex
        elif px is not None:
            self.expiry[key] = time.monotonic() + px / 1000
        return True

    def _delete(self, *keys):
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self.values.pop(key, None)
            self.sets.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    def _sadd(self, key, *members):
        self._alive(key)
        bucket = self.sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    def _srem(self, key, *members):
        bucket = self.sets.get(key, set())
        before = len(bucket)
        bucket.difference_update(members)
        return before - len(bucket)

    def _pexpire(self, key, ms):
        if not self._alive(key):
            return False
        self.expiry[key] = time.monotonic() + ms / 1000
        return True

    async def get(self, key):
        return self.values.get(key) if self._alive(key) else None

    async def set(self, key, value, ex=None, px=None, nx=False):
        if nx and self._alive(key):
            return None
        return self._set(key, value, ex=ex, px=px)

    async def setex(self, key, seconds, value):
        return self._set(key, value, ex=seconds)

    async def delete(self, *keys):
        return self._delete(*keys)

    async def exists(self, *keys):
        return sum(1 for key in keys if self._alive(key))

    async def sadd(self, key, *members):
        return self._sadd(key, *members)

    async def srem(self, key, *members):
        return self._srem(key, *members)

    async def smembers(self, key):
        return set(self.sets.get(key, set())) if self._alive(key) else set()

    async def expire(self, key, seconds):
        return self._pexpire(key, seconds * 1000)

    async def pexpire(self, key, ms):
        return self._pexpire(key, ms)

    async def ping(self):
        return True

    async def close(self):
        return None

    def pipeline(self, transaction: bool = True):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, redis: FakeRedis):
        self.redis = redis
        self.commands: List[tuple] = []

    def set(self, key, value, ex=None, px=None):
        self.commands.append((self.redis._set, (key, value), {"ex": ex, "px": px}))
        return self

    def delete(self, *keys):
        self.commands.append((self.redis._delete, keys, {}))
        return self

    def sadd(self, key, *members):
        self.commands.append((self.redis._sadd, (key, *members), {}))
        return self

    def srem(self, key, *members):
        self.commands.append((self.redis._srem, (key, *members), {}))
        return self

    def pexpire(self, key, ms):
        self.commands.append((self.redis._pexpire, (key, ms), {}))
        return self

    async def execute(self):
        results = [fn(*args, **kwargs) for fn, args, kwargs in self.commands]
        self.commands = []
        return results


class RecordingEmailSender:
    """Matches the ``send_email`` signature and keeps every message."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    def __call__(self, to_email, subject, body, html=None):
        self.sent.append({"to": to_email, "subject": subject, "body": body, "html": html})
        return True

    def last_token(self) -> Optional[str]:
        if not self.sent:
            return None
        return self.sent[-1]["body"].split("token=")[1].split()[0]


class FakeSMSProvider:
    def __init__(self, approved_code: str = "123456"):
        self.approved_code = approved_code
        self.sent: List[str] = []
        self.checked: List[tuple] = []

    @property
    def configured(self) -> bool:
        return True

    def send(self, phone: str) -> str:
        self.sent.append(phone)
        return f"VE{len(self.sent):032d}"

    def check(self, phone: str, code: str) -> str:
        self.checked.append((phone, code))
        return "approved" if code == self.approved_code else "pending"


class FakeProviderValidator:
    """Approves every identity unless its provider id is listed as invalid."""

    def __init__(self, invalid_ids: Optional[Set[str]] = None):
        self.invalid_ids = invalid_ids or set()
        self.calls: List[OAuthIdentity] = []

    async def validate(self, identity: OAuthIdentity, require_token: bool = False) -> ProviderValidation:
        self.calls.append(identity)
        if identity.provider_id in self.invalid_ids:
            return ProviderValidation(False, error="not found")
        if require_token and not (identity.access_token or identity.id_token):
            return ProviderValidation(False, error="token required")
        return ProviderValidation(True, identity.email, identity.username)


class StaticGeolocation:
    def __init__(self, location: Optional[Dict[str, Any]] = None):
        self.location = location or {
            "country": "Peru", "country_code": "PE", "city": "Lima",
            "is_vpn": False, "is_tor": False, "is_proxy": False, "risk_score": 0,
        }
        self.lookups: List[Optional[str]] = []

    async def lookup(self, ip_address):
        self.lookups.append(ip_address)
        return dict(self.location)
