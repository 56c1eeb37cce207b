import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float


class TTLCache:
    """In-memory TTL cache with LRU eviction.

    Entries hold settled values only; in-flight requests are tracked by the
    request coordinator, never stored here.
    """

    def __init__(
        self,
        default_ttl: float = 10.0,
        max_size: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._clock = clock
        self._cache: Dict[str, CacheEntry] = {}
        self._access_order: List[str] = []
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[CacheEntry]:
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None

            if self._clock() >= entry.expires_at:
                self._drop(key)
                return None

            # Update access order for LRU
            if key in self._access_order:
                self._access_order.remove(key)
            self._access_order.append(key)

            return entry

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        async with self._lock:
            ttl = self.default_ttl if ttl is None else ttl
            self._cache[key] = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl)

            if key in self._access_order:
                self._access_order.remove(key)
            self._access_order.append(key)

            # Evict oldest if over max size
            while len(self._cache) > self.max_size:
                oldest_key = self._access_order.pop(0)
                self._cache.pop(oldest_key, None)

    async def invalidate(self, key: str) -> None:
        async with self._lock:
            self._drop(key)

    async def invalidate_prefix(self, prefix: str) -> int:
        async with self._lock:
            doomed = [key for key in self._cache if key.startswith(prefix)]
            for key in doomed:
                self._drop(key)
            return len(doomed)

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()
            self._access_order.clear()

    def size(self) -> int:
        return len(self._cache)

    def keys(self) -> List[str]:
        return list(self._cache.keys())

    def _drop(self, key: str) -> None:
        self._cache.pop(key, None)
        if key in self._access_order:
            self._access_order.remove(key)
