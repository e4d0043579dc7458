"""
In-memory key/value cache with per-entry expiry.

Shared by the webhook path and the background loops, so every access goes
through an asyncio lock. The clock is injectable to make expiry testable.
"""
import asyncio
import time
from typing import Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """
    Async-safe TTL cache.

    A ttl of None means entries never expire on their own.
    """

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[K, Tuple[V, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    def _expiry(self, ttl_seconds: Optional[float]) -> Optional[float]:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        return None if ttl is None else self._clock() + ttl

    async def get(self, key: K) -> Optional[V]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    async def set(self, key: K, value: V, ttl_seconds: Optional[float] = None) -> None:
        async with self._lock:
            self._entries[key] = (value, self._expiry(ttl_seconds))

    async def swap(self, key: K, value: V) -> Optional[V]:
        """Store value and return the previous live value in one step."""
        async with self._lock:
            previous = self._entries.get(key)
            self._entries[key] = (value, self._expiry(None))
            if previous is None:
                return None
            old_value, expires_at = previous
            if expires_at is not None and self._clock() >= expires_at:
                return None
            return old_value

    async def delete(self, key: K) -> None:
        async with self._lock:
            self._entries.pop(key, None)
