"""
Request Coordinator

Shared gatekeeper for outbound provider traffic:
- single-flight dedupe of identical in-flight requests
- short-lived cache of settled values
- sliding-window rate budget
- per-tag request counters that reset every accounting window
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from ..cache import TTLCache

Producer = Callable[[], Awaitable[Any]]


class RequestCoordinator:
    """
    Coordinates provider requests for one process.

    Failures are propagated to every waiter of the failed flight and are
    never cached; the next call for the same key starts a new flight.
    """

    def __init__(
        self,
        cache: Optional[TTLCache] = None,
        max_requests: int = 10,
        window_seconds: float = 1.0,
        count_window_seconds: float = 60.0,
        default_ttl: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.cache = cache or TTLCache(default_ttl=default_ttl, clock=clock)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.count_window_seconds = count_window_seconds
        self.default_ttl = default_ttl
        self._clock = clock
        self._sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

        self._in_flight: Dict[str, asyncio.Future] = {}
        self._slots: Deque[float] = deque()
        self._slot_lock = asyncio.Lock()

        self._counts: Dict[str, int] = {}
        self._count_window_started = clock()

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "RequestCoordinator":
        cache = TTLCache(
            default_ttl=settings.quote_cache_ttl_seconds,
            max_size=settings.max_cache_size,
        )
        return cls(
            cache=cache,
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
            count_window_seconds=settings.request_count_window_seconds,
            default_ttl=settings.quote_cache_ttl_seconds,
            **kwargs,
        )

    # ==================== Single flight ====================

    async def dedupe(self, key: str, producer: Producer, ttl: Optional[float] = None) -> Any:
        """
        Return the value for ``key``, invoking ``producer`` at most once.

        A live cache entry short-circuits the call; a request already in
        flight for ``key`` is joined rather than repeated.
        """
        flight = self._in_flight.get(key)
        if flight is not None:
            return await asyncio.shield(flight)

        entry = await self.cache.get(key)
        if entry is not None:
            self.logger.debug(f"Cache hit for {key}")
            return entry.value

        # The cache lookup may have yielded; another caller could have started the flight.
        flight = self._in_flight.get(key)
        if flight is None:
            flight = asyncio.ensure_future(self._fly(key, producer, ttl))
            flight.add_done_callback(_consume_exception)
            self._in_flight[key] = flight

        return await asyncio.shield(flight)

    async def _fly(self, key: str, producer: Producer, ttl: Optional[float]) -> Any:
        try:
            value = await producer()
            await self.cache.set(key, value, self.default_ttl if ttl is None else ttl)
            return value
        finally:
            self._in_flight.pop(key, None)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    # ==================== Rate budget ====================

    async def wait_for_slot(self) -> None:
        """Block until the sliding window has room, then consume one slot."""
        while True:
            async with self._slot_lock:
                now = self._clock()
                while self._slots and now - self._slots[0] >= self.window_seconds:
                    self._slots.popleft()

                if len(self._slots) < self.max_requests:
                    self._slots.append(now)
                    return

                wait = self._slots[0] + self.window_seconds - now

            self.logger.debug(f"Rate budget exhausted, waiting {wait:.3f}s")
            await self._sleep(max(wait, 0.001))

    # ==================== Accounting ====================

    def _roll_count_window(self) -> None:
        now = self._clock()
        if now - self._count_window_started >= self.count_window_seconds:
            self._counts.clear()
            self._count_window_started = now

    def record_request(self, tag: str) -> int:
        """Count one request for ``tag`` and return the count in this window."""
        self._roll_count_window()
        self._counts[tag] = self._counts.get(tag, 0) + 1
        return self._counts[tag]

    def get_request_count(self, tag: str) -> int:
        self._roll_count_window()
        return self._counts.get(tag, 0)

    # ==================== Maintenance ====================

    async def invalidate_prefix(self, prefix: str) -> int:
        removed = await self.cache.invalidate_prefix(prefix)
        if removed:
            self.logger.debug(f"Invalidated {removed} cached entries with prefix {prefix}")
        return removed

    async def clear(self) -> None:
        await self.cache.clear()
        self._counts.clear()
        self._slots.clear()
        self._count_window_started = self._clock()

    def stats(self) -> Dict[str, Any]:
        self._roll_count_window()
        return {
            "cacheSize": self.cache.size(),
            "inFlight": len(self._in_flight),
            "windowUsage": len(self._slots),
            "maxRequests": self.max_requests,
            "requestCounts": dict(self._counts),
        }


def _consume_exception(future: asyncio.Future) -> None:
    # Waiters may all have gone away; mark the error as retrieved.
    if not future.cancelled():
        future.exception()
