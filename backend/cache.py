"""In-memory response cache with per-entry time-to-live.

Entries are keyed by :func:`make_cache_key`, which serializes the request
parameters with sorted keys so the same request always maps to the same key
regardless of the order its parameters were assembled in.
"""

from __future__ import annotations

import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

from backend.logger import get_logger
from backend.schemas import CacheStats

logger = get_logger("cache")

DEFAULT_TTL_SECONDS = 5 * 60


def make_cache_key(endpoint: str, params: Dict[str, Any]) -> str:
    """Return a deterministic key for ``endpoint`` called with ``params``."""
    encoded = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return f"{endpoint}:{encoded}"


@runtime_checkable
class CacheBackend(Protocol):
    """What the order client needs from a cache.

    :class:`ResponseCache` is the in-memory implementation; anything with the
    same methods (a Redis or on-disk store, say) can be passed instead.
    """

    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, payload: Any, ttl: Optional[float] = None) -> None: ...

    def invalidate(self, key: str) -> bool: ...

    def invalidate_all(self) -> None: ...

    def stats(self) -> CacheStats: ...


@dataclass
class CacheEntry:
    payload: Any
    inserted_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.inserted_at < self.ttl


class ResponseCache:
    """Bounded key/value cache; expired entries are dropped when looked up.

    ``clock`` returns seconds and defaults to :func:`time.monotonic`; tests
    pass a fake clock to move time forward.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        # Detail batches run in worker threads and share this cache.
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug("Cache miss: %s", key)
                return None
            if not entry.is_valid(self._clock()):
                del self._entries[key]
                logger.debug("Cache expired: %s", key)
                return None
            logger.debug("Cache hit: %s", key)
            return entry.payload

    def set(self, key: str, payload: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        with self._lock:
            # Re-inserting a key moves it to the back of the eviction order.
            self._entries.pop(key, None)
            if len(self._entries) >= self.max_entries:
                self._purge_expired_locked()
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Cache full, evicted %s", evicted)
            self._entries[key] = CacheEntry(payload=payload, inserted_at=self._clock(), ttl=ttl)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_all(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Cache cleared (%d entries)", count)

    def purge_expired(self) -> int:
        """Drop every expired entry now and return how many were removed."""
        with self._lock:
            return self._purge_expired_locked()

    def _purge_expired_locked(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Purged %d expired cache entries", len(expired))
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(size=len(self._entries), keys=list(self._entries.keys()))

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and entry.is_valid(self._clock())

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["DEFAULT_TTL_SECONDS", "CacheBackend", "CacheEntry", "ResponseCache", "make_cache_key"]
