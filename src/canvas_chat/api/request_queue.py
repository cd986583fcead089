"""Per-conversation serialization of message exchanges."""

import asyncio
import contextlib
from typing import Any, Awaitable, Callable, Dict
from uuid import UUID

import structlog

logger = structlog.get_logger()


class ExchangeQueue:
    """Runs at most one exchange per conversation at a time.

    Waiters on the same conversation are served in arrival order, and a
    semaphore caps how many exchanges run across all conversations. There is
    no timeout: once an exchange starts it runs to completion.
    """

    def __init__(self, max_concurrent: int = 10) -> None:
        self.max_concurrent = max_concurrent
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.active_requests = 0
        self._lock = asyncio.Lock()
        self._conversation_locks: Dict[UUID, asyncio.Lock] = {}
        self._waiters: Dict[UUID, int] = {}
        logger.info("exchange_queue_initialized", max_concurrent=max_concurrent)

    async def _register(self, conversation_id: UUID) -> asyncio.Lock:
        async with self._lock:
            lock = self._conversation_locks.setdefault(conversation_id, asyncio.Lock())
            self._waiters[conversation_id] = self._waiters.get(conversation_id, 0) + 1
            return lock

    async def _unregister(self, conversation_id: UUID) -> None:
        async with self._lock:
            self._waiters[conversation_id] -= 1
            if self._waiters[conversation_id] == 0:
                del self._waiters[conversation_id]
                del self._conversation_locks[conversation_id]

    @contextlib.asynccontextmanager
    async def acquire(self, conversation_id: UUID):
        """Hold the conversation's slot for the duration of the block."""
        lock = await self._register(conversation_id)
        try:
            async with lock, self.semaphore:
                async with self._lock:
                    self.active_requests += 1
                try:
                    yield
                finally:
                    async with self._lock:
                        self.active_requests -= 1
        finally:
            await self._unregister(conversation_id)

    async def run(
        self,
        conversation_id: UUID,
        task: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Run ``task`` once every earlier exchange on the conversation finished."""
        async with self.acquire(conversation_id):
            return await task(*args, **kwargs)

    async def pending(self, conversation_id: UUID) -> int:
        """Number of exchanges running or waiting on a conversation."""
        async with self._lock:
            return self._waiters.get(conversation_id, 0)

    async def is_full(self) -> bool:
        """Check if every concurrency slot is taken."""
        async with self._lock:
            return self.active_requests >= self.max_concurrent
