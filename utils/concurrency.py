"""
Concurrency helpers: per-key mutual exclusion and bounded waits on
blocking dependencies.
"""

import asyncio
import logging
from collections.abc import Awaitable
from contextlib import asynccontextmanager
from typing import TypeVar

from models.errors import UpstreamTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class KeyedLock:
    """One asyncio.Lock per key (e.g. product id); no global lock."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self.lock_for(key)
        async with lock:
            yield

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


async def call_with_timeout(awaitable: Awaitable[T], timeout: float | None, what: str) -> T:
    """Await ``awaitable`` for at most ``timeout`` seconds.

    Raises:
        UpstreamTimeoutError: the dependency did not answer in time.
    """
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning(f"Upstream call '{what}' exceeded {timeout}s")
        raise UpstreamTimeoutError(f"{what} timed out after {timeout}s") from e
