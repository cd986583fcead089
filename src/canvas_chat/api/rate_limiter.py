"""Rate limiter implementation using a sliding window per caller and path."""

import asyncio
import time
from typing import Dict, List, Optional

from fastapi import Request
from structlog import get_logger

from .auth import caller_key

logger = get_logger()


class RateLimitExceeded(Exception):
    """Exception raised when rate limit is exceeded."""

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after


class RateLimiter:
    """Sliding-window rate limiter keyed by arbitrary strings."""

    def __init__(self, rate_limit: int = 50, time_window: int = 60):
        self.rate_limit = rate_limit
        self.time_window = time_window  # in seconds
        self.requests: Dict[str, List[float]] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None
        logger.info("rate_limiter_initialized", rate_limit=rate_limit, time_window=time_window)

    async def start(self) -> None:
        """Start the periodic cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._periodic_cleanup())

    async def stop(self) -> None:
        """Stop the periodic cleanup task."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    def _prune(self, key: str, now: float) -> List[float]:
        cutoff_time = now - self.time_window
        timestamps = [ts for ts in self.requests.get(key, []) if ts > cutoff_time]
        if timestamps:
            self.requests[key] = timestamps
        else:
            self.requests.pop(key, None)
        return timestamps

    async def _periodic_cleanup(self) -> None:
        """Periodically drop timestamps that fell out of the window."""
        while True:
            try:
                await asyncio.sleep(self.time_window)
                async with self._lock:
                    now = time.time()
                    for key in list(self.requests.keys()):
                        self._prune(key, now)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("rate_limiter_cleanup_error", error=str(e))

    async def check_rate_limit(self, key: str) -> None:
        """Record a request for ``key``, raising RateLimitExceeded past the budget."""
        await self.start()
        now = time.time()

        async with self._lock:
            timestamps = self._prune(key, now)
            if len(timestamps) >= self.rate_limit:
                retry_after = max(1, int(timestamps[0] + self.time_window - now) + 1)
                logger.warning(
                    "rate_limit_exceeded",
                    key=key,
                    current_requests=len(timestamps),
                    rate_limit=self.rate_limit,
                )
                raise RateLimitExceeded(
                    f"Rate limit of {self.rate_limit} requests per {self.time_window} seconds exceeded",
                    retry_after=retry_after,
                )
            self.requests.setdefault(key, []).append(now)

    async def get_remaining_requests(self, key: str) -> int:
        """Get remaining requests for the key."""
        async with self._lock:
            return max(0, self.rate_limit - len(self._prune(key, time.time())))


async def rate_limit_middleware(request: Request, rate_limiter: Optional[RateLimiter] = None) -> None:
    """Apply ``rate_limiter`` to a request, keyed by caller and path."""
    if rate_limiter is None:
        return

    client_ip = request.client.host if request.client else "unknown"
    key = f"{caller_key(request.headers, client_ip)}:{request.url.path}"
    await rate_limiter.check_rate_limit(key)
