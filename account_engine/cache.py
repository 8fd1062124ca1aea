import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """In-memory TTL cache with LRU eviction.

    Used for relay capabilities, which change rarely but are needed on
    every prepare. ``get_or_load`` runs at most one loader per key at a
    time; concurrent callers wait for that load instead of issuing their
    own relay request.
    """

    def __init__(self, default_ttl: float = 60, max_size: int = 256):
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._loading: Dict[str, asyncio.Lock] = {}

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if time.monotonic() > entry.expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.value

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        async with self._lock:
            expires_at = time.monotonic() + (ttl or self.default_ttl)
            self._entries[key] = CacheEntry(value=value, expires_at=expires_at)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """Cached value for ``key``, calling ``loader`` on a miss.

        Loader errors propagate and nothing is cached.
        """
        value = await self.get(key)
        if value is not None:
            return value

        lock = self._loading.setdefault(key, asyncio.Lock())
        async with lock:
            # Another caller may have filled the entry while we waited.
            value = await self.get(key)
            if value is None:
                value = await loader()
                await self.set(key, value, ttl)
        if not lock.locked():
            self._loading.pop(key, None)
        return value

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def size(self) -> int:
        return len(self._entries)
