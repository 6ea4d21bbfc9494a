from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    expires_at: float


class TTLCache(Generic[T]):
    """In-memory cache bounded by both a TTL and a max size.

    The clock is injectable so owners (and tests) can control expiry without
    patching the time module. Entries closest to expiry are evicted first;
    `on_evict` is called for every entry dropped by expiry, the size bound
    or `clear`.
    """

    def __init__(
        self,
        *,
        ttl_s: float,
        max_size: int,
        clock: Optional[Callable[[], float]] = None,
        on_evict: Optional[Callable[[str, T], None]] = None,
    ) -> None:
        self.ttl_s = ttl_s
        self.max_size = max_size
        self._clock = clock or time.monotonic
        self._on_evict = on_evict
        self._store: Dict[str, CacheEntry[T]] = {}

    def get(self, key: str) -> Optional[T]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.expires_at < self._clock():
            self._discard(key)
            return None
        return entry.value

    def set(self, key: str, value: T) -> None:
        if self.max_size <= 0:
            return
        now = self._clock()
        self._purge_expired(now)
        if key not in self._store and len(self._store) >= self.max_size:
            self._evict_oldest()
        self._store[key] = CacheEntry(value=value, expires_at=now + self.ttl_s)

    def clear(self) -> None:
        for key in list(self._store):
            self._discard(key)

    def __contains__(self, key: object) -> bool:
        entry = self._store.get(key)  # type: ignore[call-overload]
        return entry is not None and entry.expires_at >= self._clock()

    def __len__(self) -> int:
        self._purge_expired(self._clock())
        return len(self._store)

    def _purge_expired(self, now: float) -> None:
        expired_keys = [key for key, entry in self._store.items() if entry.expires_at < now]
        for key in expired_keys:
            self._discard(key)

    def _evict_oldest(self) -> None:
        if not self._store:
            return
        oldest_key = min(self._store.items(), key=lambda item: item[1].expires_at)[0]
        self._discard(oldest_key)

    def _discard(self, key: str) -> None:
        entry = self._store.pop(key, None)
        if entry is not None and self._on_evict is not None:
            self._on_evict(key, entry.value)


def make_cache_key(*parts: object) -> str:
    return "|".join(str(part) for part in parts)
