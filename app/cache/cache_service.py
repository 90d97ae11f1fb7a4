from typing import Optional, Any, Dict
import logging
import json
from redis import asyncio as aioredis
from redis.exceptions import RedisError
from app.core.constants import ACCESS_SESSION_KEY, USER_JTI_SET_KEY

logger = logging.getLogger(__name__)


class AccessSessionCache:
    """Live access-token registry keyed by jti.

    Each issuance writes ``jwt:session:<jti>`` with the access-token TTL and
    adds the jti to ``jwt:user:<id>:jtis``, whose TTL is pushed forward on
    every issuance. A jti-bearing token without an entry here is revoked.
    Writes and deletes propagate Redis errors; lookups fail closed.
    """

    def __init__(self, client: aioredis.Redis, ttl_seconds: int):
        self.client = client
        self.ttl_ms = int(ttl_seconds * 1000)

    @staticmethod
    def _session_key(jti: str) -> str:
        return ACCESS_SESSION_KEY.format(jti=jti)

    @staticmethod
    def _user_key(user_id: Any) -> str:
        return USER_JTI_SET_KEY.format(user_id=user_id)

    async def put(self, jti: str, payload: Dict[str, Any], ttl_seconds: Optional[int] = None) -> None:
        ttl_ms = int(ttl_seconds * 1000) if ttl_seconds else self.ttl_ms
        user_key = self._user_key(payload["user_id"])
        pipe = self.client.pipeline(transaction=False)
        pipe.set(self._session_key(jti), json.dumps(payload), px=ttl_ms)
        pipe.sadd(user_key, jti)
        pipe.pexpire(user_key, ttl_ms)
        await pipe.execute()

    async def exists(self, jti: str) -> bool:
        try:
            return bool(await self.client.exists(self._session_key(jti)))
        except RedisError as e:
            logger.error(f"Access session lookup failed for {jti}: {e}")
            return False

    async def get(self, jti: str) -> Optional[Dict[str, Any]]:
        try:
            raw = await self.client.get(self._session_key(jti))
        except RedisError as e:
            logger.error(f"Access session read failed for {jti}: {e}")
            return None
        return json.loads(raw) if raw else None

    async def delete(self, jti: str, user_id: Any = None) -> None:
        pipe = self.client.pipeline(transaction=False)
        pipe.delete(self._session_key(jti))
        if user_id is not None:
            pipe.srem(self._user_key(user_id), jti)
        await pipe.execute()

    async def delete_all_for_user(self, user_id: Any) -> int:
        user_key = self._user_key(user_id)
        jtis = await self.client.smembers(user_key)
        pipe = self.client.pipeline(transaction=False)
        for jti in jtis:
            pipe.delete(self._session_key(jti))
        pipe.delete(user_key)
        await pipe.execute()
        return len(jtis)

    async def delete_for_session(self, user_id: Any, session_id: str) -> int:
        """Drop the live jtis of one tracked session."""
        user_key = self._user_key(user_id)
        revoked = 0
        for jti in await self.client.smembers(user_key):
            entry = await self.get(jti)
            if entry is None:
                await self.client.srem(user_key, jti)
            elif entry.get("session_id") == session_id:
                await self.delete(jti, user_id)
                revoked += 1
        return revoked
