"""Per-IP, per-path sliding-window rate limiter for sensitive endpoints."""
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from fastapi import HTTPException, Request, status

from app.core.config import settings
from app.utils.helpers import get_client_ip


class SlidingWindowLimiter:
    def __init__(
        self,
        limit: Optional[int] = None,
        window_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock
        # key -> timestamps inside the current window
        self._buckets: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    async def __call__(self, request: Request) -> bool:
        if not settings.RATE_LIMIT_ENABLED:
            return True

        limit = self.limit or settings.RATE_LIMIT_REQUESTS
        window = self.window_seconds or settings.RATE_LIMIT_PERIOD_SECONDS
        now = self.clock()
        if now - self._last_sweep >= window:
            self._sweep(now - window)
            self._last_sweep = now

        key = f"{get_client_ip(request)}:{request.url.path}"
        bucket = self._buckets.setdefault(key, deque())
        while bucket and bucket[0] <= now - window:
            bucket.popleft()

        if len(bucket) >= limit:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please slow down.",
                headers={"Retry-After": str(window)},
            )

        bucket.append(now)
        return True

    def _sweep(self, cutoff: float) -> None:
        """Forget keys whose newest hit fell out of the window."""
        for key in [k for k, bucket in self._buckets.items() if not bucket or bucket[-1] <= cutoff]:
            del self._buckets[key]

    def reset(self) -> None:
        self._buckets.clear()


rate_limit = SlidingWindowLimiter()
# Credential endpoints get a tighter budget than the global default
strict_rate_limit = SlidingWindowLimiter(limit=10, window_seconds=60)
