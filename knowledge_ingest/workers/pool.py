"""
Client Pool

Fixed-size pool of reusable backend clients with idle-time eviction.
Owned by the worker process and injected into the services that need
clients, instead of module-level client caches.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _IdleClient(Generic[T]):
    client: T
    released_at: float


class ClientPool(Generic[T]):
    """
    Bounded pool handing out clients built by ``factory``.

    At most ``max_size`` clients exist at any time; callers beyond that
    wait for a release. Idle clients older than ``ttl_seconds`` are closed
    on the next checkout. The most recently released client is reused
    first, so a quiet pool shrinks naturally.

    Usage::

        pool = ClientPool(lambda: AsyncOpenAI(), max_size=8, ttl_seconds=300,
                          close=lambda c: c.close())
        async with pool.acquire() as client:
            await client.embeddings.create(...)
        await pool.close()
    """

    def __init__(
        self,
        factory: Callable[[], T],
        *,
        max_size: int,
        ttl_seconds: float,
        close: Callable[[T], Awaitable[None]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")

        self._factory = factory
        self._close = close
        self._clock = clock
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._idle: list[_IdleClient[T]] = []
        self._slots = asyncio.Semaphore(max_size)
        self._in_use = 0
        self._closed = False

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @property
    def in_use(self) -> int:
        return self._in_use

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[T]:
        """Check out a client for the duration of the ``async with`` block."""
        if self._closed:
            raise RuntimeError("ClientPool is closed")

        async with self._slots:
            client = await self._checkout()
            self._in_use += 1
            try:
                yield client
            finally:
                self._in_use -= 1
                if self._closed:
                    await self._dispose(client)
                else:
                    self._idle.append(_IdleClient(client, self._clock()))

    async def close(self) -> None:
        """Close every idle client; clients in use are closed on release."""
        self._closed = True
        idle, self._idle = self._idle, []
        for entry in idle:
            await self._dispose(entry.client)
        logger.info("Client pool closed (%d idle clients released)", len(idle))

    async def _checkout(self) -> T:
        await self._evict_expired()
        if self._idle:
            return self._idle.pop().client
        return self._factory()

    async def _evict_expired(self) -> None:
        now = self._clock()
        expired = [e for e in self._idle if now - e.released_at > self._ttl]
        if not expired:
            return

        self._idle = [e for e in self._idle if now - e.released_at <= self._ttl]
        for entry in expired:
            await self._dispose(entry.client)
        logger.debug("Evicted %d idle clients past TTL", len(expired))

    async def _dispose(self, client: T) -> None:
        if self._close is None:
            return
        try:
            await self._close(client)
        except Exception:
            logger.warning("Failed to close pooled client", exc_info=True)
